"""LicenseLedger -- owns the lifecycle of tenant course licenses.

State machine (see ``domain.licenses.TRANSITIONS``):

    PENDING --confirm_payment--> COMPLETED --refund--> REFUNDED
       |                            |  ^
       +--fail_payment--> FAILED    |  +--confirm_renewal--+
                                    +--expire_due--> EXPIRED

Every transition is a compare-and-set against the store, so redelivered or
out-of-order payment events never overwrite a later state. Admin operations
(assign, unassign, refund, get) are always scoped to the caller's tenant.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import structlog

from tenant_licensing.billing.gateway import PaymentGateway
from tenant_licensing.core.exceptions import (
    AlreadyAssignedError,
    BadRequestError,
    InvalidStateError,
    NoPaymentError,
    NoSeatsAvailableError,
    NotFoundError,
)
from tenant_licensing.domain.licenses import AssignmentRecord, LicenseRecord, LicenseStatus
from tenant_licensing.domain.pricing import PricingQuote
from tenant_licensing.ledger.store import LicenseStore, TenantDirectory
from tenant_licensing.metrics.cloudwatch import emit_business_event
from tenant_licensing.notifications import sink as notifications
from tenant_licensing.notifications.sink import NotificationSink, notify_safely

logger = structlog.get_logger(__name__)

# Status filter values accepted by list_licenses
STATUS_FILTERS: dict[str, list[LicenseStatus]] = {
    "active": [LicenseStatus.COMPLETED],
    "pending": [LicenseStatus.PENDING],
    "expired": [LicenseStatus.EXPIRED],
    "refunded": [LicenseStatus.REFUNDED],
    "failed": [LicenseStatus.FAILED],
}

_RENEWABLE = (LicenseStatus.COMPLETED, LicenseStatus.EXPIRED)


class LicenseLedger:
    """Stateful license operations over a ``LicenseStore``.

    Args:
        store: License and assignment persistence
        directory: Tenant / course / membership lookups
        gateway: Payment gateway used for admin-initiated refunds
        notifier: Notification sink (failures are logged, never raised)
        license_duration_days: Validity of a purchase or renewal; None = never expires
    """

    def __init__(
        self,
        store: LicenseStore,
        directory: TenantDirectory,
        gateway: PaymentGateway,
        notifier: NotificationSink,
        license_duration_days: int | None = 365,
    ):
        self.store = store
        self.directory = directory
        self.gateway = gateway
        self.notifier = notifier
        self.license_duration_days = license_duration_days

    def _expiry_from(self, start: datetime) -> datetime | None:
        if self.license_duration_days is None:
            return None
        return start + timedelta(days=self.license_duration_days)

    # ── Creation and payment ─────────────────────────────────────────

    async def open_pending(
        self,
        tenant_id: str,
        course_id: str,
        purchased_by_id: str,
        pricing: PricingQuote,
        currency: str,
        checkout_session_id: str,
        now: datetime | None = None,
    ) -> LicenseRecord:
        """Create the PENDING license row for a checkout session."""
        record = LicenseRecord(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            course_id=course_id,
            purchased_by_id=purchased_by_id,
            license_type=pricing.license_type,
            seats_total=pricing.seats,
            seats_used=0,
            amount=pricing.total_price,
            currency=currency,
            status=LicenseStatus.PENDING,
            stripe_checkout_session_id=checkout_session_id,
            created_at=now or datetime.now(UTC),
        )
        created = await self.store.create(record)
        logger.info(
            "license_pending_created",
            license_id=created.id,
            tenant_id=tenant_id,
            course_id=course_id,
            license_type=pricing.license_type.value,
            seats=pricing.seats,
            session_id=checkout_session_id,
        )
        return created

    async def confirm_payment(
        self,
        checkout_session_id: str,
        payment_intent_id: str | None = None,
        invoice_id: str | None = None,
        now: datetime | None = None,
    ) -> LicenseRecord | None:
        """PENDING -> COMPLETED for the license tagged with ``checkout_session_id``.

        Returns the activated license, or None when nothing changed (unknown
        session, already completed, or a concurrent confirmation won).
        """
        now = now or datetime.now(UTC)
        record = await self.store.find_by_checkout_session(checkout_session_id)
        if record is None:
            logger.warning("license_confirmation_unmatched", session_id=checkout_session_id)
            return None
        if record.status is not LicenseStatus.PENDING:
            logger.info(
                "license_confirmation_ignored",
                license_id=record.id,
                status=record.status.value,
                session_id=checkout_session_id,
            )
            return None

        existing = await self.store.find_active(record.tenant_id, record.course_id, now)
        if existing is not None and existing.id != record.id:
            # Two checkouts raced past the existence check; the payment is real so
            # the license is still activated.
            logger.warning(
                "duplicate_active_license",
                license_id=record.id,
                existing_license_id=existing.id,
                tenant_id=record.tenant_id,
                course_id=record.course_id,
            )

        fields = {
            "stripe_payment_intent_id": payment_intent_id,
            "purchased_at": now,
            "expires_at": self._expiry_from(now),
        }
        if invoice_id:
            fields["stripe_invoice_id"] = invoice_id

        activated = await self.store.transition(record.id, [LicenseStatus.PENDING], LicenseStatus.COMPLETED, **fields)
        if activated is None:
            logger.info("license_confirmation_lost_race", license_id=record.id)
            return None

        logger.info(
            "license_activated",
            license_id=activated.id,
            tenant_id=activated.tenant_id,
            course_id=activated.course_id,
            license_type=activated.license_type.value,
            seats=activated.seats_total,
        )
        await notify_safely(
            self.notifier,
            activated.purchased_by_id,
            notifications.LICENSE_ACTIVATED,
            {"license_id": activated.id, "course_id": activated.course_id},
        )
        await emit_business_event("license_activated", tenant_id=activated.tenant_id)
        return activated

    async def fail_payment(
        self,
        payment_intent_id: str | None = None,
        checkout_session_id: str | None = None,
    ) -> LicenseRecord | None:
        """PENDING -> FAILED. Licenses in any other state are left untouched."""
        record = None
        if checkout_session_id:
            record = await self.store.find_by_checkout_session(checkout_session_id)
        if record is None and payment_intent_id:
            record = await self.store.find_by_payment_intent(payment_intent_id)
        if record is None:
            logger.warning(
                "license_failure_unmatched",
                payment_intent_id=payment_intent_id,
                session_id=checkout_session_id,
            )
            return None

        failed = await self.store.transition(
            record.id,
            [LicenseStatus.PENDING],
            LicenseStatus.FAILED,
            stripe_payment_intent_id=payment_intent_id or record.stripe_payment_intent_id,
        )
        if failed is None:
            logger.info("license_failure_ignored", license_id=record.id, status=record.status.value)
            return None

        logger.info("license_payment_failed", license_id=failed.id, tenant_id=failed.tenant_id)
        return failed

    async def confirm_renewal(
        self,
        license_id: str,
        checkout_session_id: str,
        payment_intent_id: str | None = None,
        invoice_id: str | None = None,
        now: datetime | None = None,
    ) -> LicenseRecord | None:
        """Extend an existing license after a renewal payment.

        ``expires_at`` moves to ``max(expires_at, now) + duration``, EXPIRED
        licenses are reactivated. A second confirmation for the same renewal
        session is a no-op.
        """
        now = now or datetime.now(UTC)
        record = await self.store.get(license_id)
        if record is None:
            logger.warning("license_renewal_unmatched", license_id=license_id, session_id=checkout_session_id)
            return None
        if record.last_renewal_session_id == checkout_session_id:
            logger.info("license_renewal_already_applied", license_id=license_id, session_id=checkout_session_id)
            return None
        if record.status not in _RENEWABLE:
            logger.error(
                "license_renewal_invalid_state",
                license_id=license_id,
                status=record.status.value,
                session_id=checkout_session_id,
            )
            return None

        if record.status is LicenseStatus.EXPIRED:
            existing = await self.store.find_active(record.tenant_id, record.course_id, now)
            if existing is not None and existing.id != record.id:
                logger.warning(
                    "duplicate_active_license",
                    license_id=record.id,
                    existing_license_id=existing.id,
                    tenant_id=record.tenant_id,
                    course_id=record.course_id,
                )

        base = max(record.expires_at, now) if record.expires_at else now
        fields = {
            "status": LicenseStatus.COMPLETED,
            "expires_at": self._expiry_from(base),
            "renewed_at": now,
            "renewal_count": record.renewal_count + 1,
            "last_renewal_session_id": checkout_session_id,
        }
        if payment_intent_id:
            fields["stripe_payment_intent_id"] = payment_intent_id
        if invoice_id:
            fields["stripe_invoice_id"] = invoice_id

        renewed = await self.store.update_if_status(
            record.id,
            _RENEWABLE,
            expected={"renewal_count": record.renewal_count},
            **fields,
        )
        if renewed is None:
            logger.info("license_renewal_lost_race", license_id=record.id, session_id=checkout_session_id)
            return None

        logger.info(
            "license_renewed",
            license_id=renewed.id,
            tenant_id=renewed.tenant_id,
            renewal_count=renewed.renewal_count,
            expires_at=renewed.expires_at.isoformat() if renewed.expires_at else None,
        )
        await notify_safely(
            self.notifier,
            renewed.purchased_by_id,
            notifications.LICENSE_RENEWED,
            {"license_id": renewed.id, "course_id": renewed.course_id},
        )
        await emit_business_event("license_renewed", tenant_id=renewed.tenant_id)
        return renewed

    # ── Refunds ──────────────────────────────────────────────────────

    async def refund(
        self,
        license_id: str,
        tenant_id: str,
        reason: str | None = None,
        refunded_by: str | None = None,
        now: datetime | None = None,
    ) -> LicenseRecord:
        """Refund a COMPLETED license through the gateway and release every seat.

        Raises:
            NotFoundError: no such license for this tenant
            InvalidStateError: license is not COMPLETED
            NoPaymentError: no payment intent was recorded
            PaymentGatewayError: the gateway refused or timed out
        """
        now = now or datetime.now(UTC)
        record = await self.store.get(license_id, tenant_id)
        if record is None:
            raise NotFoundError("License not found")
        if record.status is not LicenseStatus.COMPLETED:
            raise InvalidStateError("Only completed licenses can be refunded")
        if not record.stripe_payment_intent_id:
            raise NoPaymentError("No payment found for this license")

        refund = await self.gateway.create_refund(
            record.stripe_payment_intent_id,
            reason="requested_by_customer",
            metadata={
                "licenseId": record.id,
                "tenantId": record.tenant_id,
                "refundedBy": refunded_by or "",
                "reason": reason or "",
            },
        )
        amount = Decimal(refund.amount_cents) / 100 if refund.amount_cents else record.amount

        refunded = await self.store.refund_and_release(
            record.id,
            [LicenseStatus.COMPLETED],
            stripe_refund_id=refund.refund_id,
            refunded_at=now,
            refund_reason=reason,
            refund_amount=amount,
            is_partial_refund=False,
        )
        if refunded is None:
            # charge.refunded for this payment may have landed while the gateway call was in flight
            current = await self.store.get(record.id, tenant_id)
            if (
                current is not None
                and current.status is LicenseStatus.REFUNDED
                and current.stripe_payment_intent_id == record.stripe_payment_intent_id
            ):
                logger.info(
                    "license_refund_already_applied",
                    license_id=current.id,
                    refund_id=refund.refund_id,
                    recorded_refund_id=current.stripe_refund_id,
                )
                return current
            raise InvalidStateError("License was modified during refund")

        logger.info(
            "license_refunded",
            license_id=refunded.id,
            tenant_id=refunded.tenant_id,
            refund_id=refund.refund_id,
            refunded_by=refunded_by,
        )
        await self._after_refund(refunded)
        return refunded

    async def refund_from_gateway(
        self,
        payment_intent_id: str,
        refund_id: str | None,
        amount_refunded_cents: int,
        is_partial: bool,
        now: datetime | None = None,
    ) -> LicenseRecord | None:
        """Apply a refund issued on the gateway side (``charge.refunded``)."""
        now = now or datetime.now(UTC)
        record = await self.store.find_by_payment_intent(payment_intent_id)
        if record is None:
            logger.warning("license_refund_unmatched", payment_intent_id=payment_intent_id)
            return None
        if record.status is LicenseStatus.REFUNDED:
            logger.info("license_refund_already_applied", license_id=record.id)
            return None

        refunded = await self.store.refund_and_release(
            record.id,
            [LicenseStatus.COMPLETED, LicenseStatus.EXPIRED],
            stripe_refund_id=refund_id,
            refunded_at=now,
            refund_reason="Refunded via payment provider",
            refund_amount=Decimal(amount_refunded_cents) / 100,
            is_partial_refund=is_partial,
        )
        if refunded is None:
            logger.info("license_refund_ignored", license_id=record.id, status=record.status.value)
            return None

        logger.info(
            "license_refunded_by_gateway",
            license_id=refunded.id,
            tenant_id=refunded.tenant_id,
            refund_id=refund_id,
            is_partial=is_partial,
        )
        await self._after_refund(refunded)
        return refunded

    async def _after_refund(self, record: LicenseRecord) -> None:
        await notify_safely(
            self.notifier,
            record.purchased_by_id,
            notifications.LICENSE_REFUNDED,
            {"license_id": record.id, "course_id": record.course_id, "amount": str(record.refund_amount)},
        )
        await emit_business_event("license_refunded", tenant_id=record.tenant_id)

    # ── Seats ────────────────────────────────────────────────────────

    async def assign(
        self,
        license_id: str,
        tenant_id: str,
        user_id: str,
        assigned_by_id: str,
        now: datetime | None = None,
    ) -> AssignmentRecord:
        """Assign a seat of a SEATS license to a tenant member.

        Raises:
            NotFoundError: license missing, or user not a member of the tenant
            InvalidStateError: license not active
            BadRequestError: unlimited license
            NoSeatsAvailableError: every seat is taken
            AlreadyAssignedError: user already holds a seat
        """
        now = now or datetime.now(UTC)
        record = await self.store.get(license_id, tenant_id)
        if record is None:
            raise NotFoundError("License not found")
        if not record.is_active(now):
            raise InvalidStateError("License is not active")
        if record.is_unlimited:
            raise BadRequestError("Unlimited licenses do not require seat assignment")
        if record.seats_used >= (record.seats_total or 0):
            raise NoSeatsAvailableError("No seats available")
        if not await self.directory.is_member(tenant_id, user_id):
            raise NotFoundError("User not found in this organization")
        if await self.store.get_assignment(record.id, user_id) is not None:
            raise AlreadyAssignedError(record.id, user_id)

        assignment = await self.store.assign_seat(record.id, user_id, assigned_by_id, now)
        if assignment is None:
            # Lost the conditional increment to a concurrent writer
            current = await self.store.get(record.id)
            if current is None or not current.is_active(now):
                raise InvalidStateError("License is not active")
            raise NoSeatsAvailableError("No seats available")

        logger.info(
            "license_seat_assigned",
            license_id=record.id,
            tenant_id=tenant_id,
            user_id=user_id,
            assigned_by=assigned_by_id,
        )
        await notify_safely(
            self.notifier,
            user_id,
            notifications.LICENSE_SEAT_ASSIGNED,
            {"license_id": record.id, "course_id": record.course_id},
        )
        return assignment

    async def unassign(self, license_id: str, tenant_id: str, user_id: str) -> None:
        """Release the seat held by ``user_id``.

        Raises:
            NotFoundError: license or assignment missing
            BadRequestError: unlimited license
        """
        record = await self.store.get(license_id, tenant_id)
        if record is None:
            raise NotFoundError("License not found")
        if record.is_unlimited:
            raise BadRequestError("Unlimited licenses do not have seat assignments")
        if not await self.store.release_seat(record.id, user_id):
            raise NotFoundError("Assignment not found")

        logger.info("license_seat_unassigned", license_id=record.id, tenant_id=tenant_id, user_id=user_id)
        await notify_safely(
            self.notifier,
            user_id,
            notifications.LICENSE_SEAT_UNASSIGNED,
            {"license_id": record.id, "course_id": record.course_id},
        )

    async def has_access(
        self,
        user_id: str,
        course_id: str,
        tenant_id: str,
        now: datetime | None = None,
    ) -> bool:
        now = now or datetime.now(UTC)
        active = await self.store.find_active(tenant_id, course_id, now)
        if active is None:
            return False
        if active.is_unlimited:
            return True
        return await self.store.find_assigned_license(tenant_id, course_id, user_id, now) is not None

    # ── Queries ──────────────────────────────────────────────────────

    async def get(self, license_id: str, tenant_id: str) -> LicenseRecord:
        record = await self.store.get(license_id, tenant_id)
        if record is None:
            raise NotFoundError("License not found")
        return record

    async def find_active(
        self, tenant_id: str, course_id: str, now: datetime | None = None
    ) -> LicenseRecord | None:
        """The COMPLETED, non-expired license for (tenant, course), if any."""
        return await self.store.find_active(tenant_id, course_id, now or datetime.now(UTC))

    async def get_with_assignments(
        self, license_id: str, tenant_id: str
    ) -> tuple[LicenseRecord, list[AssignmentRecord]]:
        record = await self.get(license_id, tenant_id)
        if record.is_unlimited:
            return record, []
        return record, await self.store.list_assignments(record.id)

    async def list_licenses(
        self,
        tenant_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[LicenseRecord], int]:
        statuses = STATUS_FILTERS.get(status) if status else None
        return await self.store.list_for_tenant(tenant_id, statuses, limit, (page - 1) * limit)

    # ── Expiry ───────────────────────────────────────────────────────

    async def expire_due(self, now: datetime | None = None) -> list[LicenseRecord]:
        """Persist COMPLETED -> EXPIRED for licenses past ``expires_at``."""
        now = now or datetime.now(UTC)
        expired = await self.store.expire_due(now)
        for record in expired:
            logger.info("license_expired", license_id=record.id, tenant_id=record.tenant_id)
        return expired

    async def find_expiring_between(
        self, start: datetime, end: datetime, statuses: Sequence[LicenseStatus] = (LicenseStatus.COMPLETED,)
    ) -> list[LicenseRecord]:
        found: list[LicenseRecord] = []
        for status in statuses:
            found.extend(await self.store.find_expiring_between(status, start, end))
        return found
