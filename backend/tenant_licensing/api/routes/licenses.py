"""Tenant license routes -- pricing, checkout, seats, refund, renewal."""

import math
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query

from tenant_licensing.api.deps import get_ledger, get_orchestrator
from tenant_licensing.checkout.orchestrator import CheckoutOrchestrator, Requester
from tenant_licensing.core.auth import REFUND_ROLES, TenantUser, require_tenant_manager
from tenant_licensing.core.config import get_settings
from tenant_licensing.core.exceptions import ForbiddenError
from tenant_licensing.ledger.ledger import LicenseLedger
from tenant_licensing.schemas.licenses import (
    AssignmentResponse,
    AssignRequest,
    CheckoutRequest,
    CheckoutResponse,
    LicenseDetailResponse,
    LicenseListResponse,
    LicenseResponse,
    Pagination,
    PricingResponse,
    RefundRequest,
    RefundResponse,
    RenewResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def _requester(user: TenantUser) -> Requester:
    return Requester(user_id=user.user_id, tenant_id=user.tenant_id, email=user.email)


@router.get("/pricing", response_model=PricingResponse)
async def get_license_pricing(
    course_id: str = Query(..., min_length=1),
    license_type: str = Query("seats"),
    seats: int | None = Query(None),
    user: TenantUser = Depends(require_tenant_manager),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Price a license for a course using the tenant's effective discount tiers."""
    course, pricing = await orchestrator.quote_for_course(user.tenant_id, course_id, license_type, seats)
    return PricingResponse.from_quote(pricing, course.id, course.title, course.currency)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_license_checkout(
    body: CheckoutRequest,
    user: TenantUser = Depends(require_tenant_manager),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Create a Stripe checkout session (card or bank transfer) for a license."""
    result = await orchestrator.create_license_checkout(
        _requester(user),
        body.course_id,
        body.license_type,
        body.seats,
    )
    return CheckoutResponse(
        session_id=result.session_id,
        url=result.url,
        license_id=result.license.id if result.license else None,
        amount=float(result.quote.total_price),
        currency=result.currency,
        pricing=PricingResponse.from_quote(result.quote, body.course_id, result.course_title, result.currency),
    )


@router.get("", response_model=LicenseListResponse)
async def list_licenses(
    status: str | None = Query(None, pattern="^(active|pending|expired|refunded|failed)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: TenantUser = Depends(require_tenant_manager),
    ledger: LicenseLedger = Depends(get_ledger),
):
    records, total = await ledger.list_licenses(user.tenant_id, status=status, page=page, limit=limit)
    now = datetime.now(UTC)
    soon = get_settings().expiring_soon_days
    return LicenseListResponse(
        licenses=[LicenseResponse.from_record(r, soon, now) for r in records],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get("/{license_id}", response_model=LicenseDetailResponse)
async def get_license(
    license_id: str,
    user: TenantUser = Depends(require_tenant_manager),
    ledger: LicenseLedger = Depends(get_ledger),
):
    record, assignments = await ledger.get_with_assignments(license_id, user.tenant_id)
    base = LicenseResponse.from_record(record, get_settings().expiring_soon_days, datetime.now(UTC))
    return LicenseDetailResponse(
        **base.model_dump(),
        assignments=[AssignmentResponse.from_record(a) for a in assignments],
    )


@router.post("/{license_id}/assign", response_model=AssignmentResponse, status_code=201)
async def assign_seat(
    license_id: str,
    body: AssignRequest,
    user: TenantUser = Depends(require_tenant_manager),
    ledger: LicenseLedger = Depends(get_ledger),
):
    assignment = await ledger.assign(license_id, user.tenant_id, body.user_id, assigned_by_id=user.user_id)
    return AssignmentResponse.from_record(assignment)


@router.delete("/{license_id}/assignments/{user_id}", status_code=204)
async def unassign_seat(
    license_id: str,
    user_id: str,
    user: TenantUser = Depends(require_tenant_manager),
    ledger: LicenseLedger = Depends(get_ledger),
):
    await ledger.unassign(license_id, user.tenant_id, user_id)


@router.post("/{license_id}/refund", response_model=RefundResponse)
async def request_license_refund(
    license_id: str,
    body: RefundRequest | None = None,
    user: TenantUser = Depends(require_tenant_manager),
    ledger: LicenseLedger = Depends(get_ledger),
):
    """Refund a license and release all of its seats. Tenant admins only."""
    if user.role not in REFUND_ROLES:
        raise ForbiddenError("Only tenant administrators can request refunds")

    reason = body.reason if body else None
    record = await ledger.refund(license_id, user.tenant_id, reason=reason, refunded_by=user.user_id)
    return RefundResponse(
        id=record.id,
        status=record.status.value,
        refund_id=record.stripe_refund_id,
        refund_amount=float(record.refund_amount) if record.refund_amount is not None else None,
        refunded_at=record.refunded_at,
    )


@router.post("/{license_id}/renew", response_model=RenewResponse)
async def renew_license(
    license_id: str,
    user: TenantUser = Depends(require_tenant_manager),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Create a renewal checkout. The license is extended when payment confirms."""
    result = await orchestrator.create_renewal_checkout(_requester(user), license_id)
    return RenewResponse(
        session_id=result.session_id,
        url=result.url,
        amount=float(result.quote.total_price),
        currency=result.currency,
    )
