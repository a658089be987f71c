"""Tenant discount tier overrides (super admin)."""

from collections.abc import Iterable, Mapping

import structlog

from tenant_licensing.core.exceptions import NotFoundError
from tenant_licensing.domain.discounts import DiscountTier, DiscountTierTable, parse_tiers
from tenant_licensing.ledger.store import TenantDirectory

logger = structlog.get_logger(__name__)


class DiscountTierService:
    def __init__(self, directory: TenantDirectory, table: DiscountTierTable):
        self.directory = directory
        self.table = table

    async def get_tiers(self, tenant_id: str) -> tuple[DiscountTier, ...]:
        tenant = await self.directory.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return self.table.get_effective_tiers(tenant.settings)

    async def set_tiers(self, tenant_id: str, raw_tiers: Iterable[Mapping]) -> tuple[list[DiscountTier], list[str]]:
        """Validate and store a tenant's custom tiers.

        Returns the stored tiers and any warnings (duplicate thresholds).

        Raises:
            ValidationError: empty list, missing values, or out-of-range bounds
            NotFoundError: tenant does not exist
        """
        tiers = parse_tiers(raw_tiers)
        tenant = await self.directory.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        settings, warnings = self.table.with_tiers(tenant.settings, tiers)
        await self.directory.save_settings(tenant_id, settings)

        for warning in warnings:
            logger.warning("discount_tier_duplicate_threshold", tenant_id=tenant_id, warning=warning)
        logger.info("discount_tiers_updated", tenant_id=tenant_id, tier_count=len(tiers))
        return tiers, warnings

    async def reset_tiers(self, tenant_id: str) -> tuple[DiscountTier, ...]:
        """Drop the tenant override. Returns the defaults now in effect."""
        tenant = await self.directory.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        settings = self.table.without_tiers(tenant.settings)
        await self.directory.save_settings(tenant_id, settings)
        logger.info("discount_tiers_reset", tenant_id=tenant_id)
        return self.table.default_tiers
