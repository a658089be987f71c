"""Super-admin discount tier overrides per tenant."""

from fastapi import APIRouter, Depends

from tenant_licensing.api.deps import get_discount_tier_service
from tenant_licensing.core.auth import TenantUser, require_super_admin
from tenant_licensing.schemas.discount_tiers import DiscountTiersRequest, DiscountTiersResponse
from tenant_licensing.schemas.licenses import TierSchema
from tenant_licensing.services.discount_tier_service import DiscountTierService

router = APIRouter()


@router.get("/{tenant_id}/discount-tiers", response_model=DiscountTiersResponse)
async def get_tenant_discount_tiers(
    tenant_id: str,
    user: TenantUser = Depends(require_super_admin),
    service: DiscountTierService = Depends(get_discount_tier_service),
):
    tiers = await service.get_tiers(tenant_id)
    return DiscountTiersResponse(
        tenant_id=tenant_id,
        tiers=[TierSchema(**t.to_dict()) for t in tiers],
        is_default=tiers == service.table.default_tiers,
    )


@router.put("/{tenant_id}/discount-tiers", response_model=DiscountTiersResponse)
async def update_tenant_discount_tiers(
    tenant_id: str,
    body: DiscountTiersRequest,
    user: TenantUser = Depends(require_super_admin),
    service: DiscountTierService = Depends(get_discount_tier_service),
):
    tiers, warnings = await service.set_tiers(tenant_id, body.tiers)
    return DiscountTiersResponse(
        tenant_id=tenant_id,
        tiers=[TierSchema(**t.to_dict()) for t in tiers],
        warnings=warnings,
    )


@router.delete("/{tenant_id}/discount-tiers", response_model=DiscountTiersResponse)
async def delete_tenant_discount_tiers(
    tenant_id: str,
    user: TenantUser = Depends(require_super_admin),
    service: DiscountTierService = Depends(get_discount_tier_service),
):
    """Remove the tenant override; the default tiers apply again."""
    tiers = await service.reset_tiers(tenant_id)
    return DiscountTiersResponse(
        tenant_id=tenant_id,
        tiers=[TierSchema(**t.to_dict()) for t in tiers],
        is_default=True,
    )
