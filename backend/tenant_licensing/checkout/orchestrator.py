"""CheckoutOrchestrator -- license checkouts and payment event reconciliation.

Outbound: quote -> gateway checkout session -> PENDING ledger row.
Inbound: verified Stripe event -> typed ``GatewayEvent`` -> ledger transition.
Events tagged for other flows (course purchases, tenant subscriptions) are
ignored here.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from tenant_licensing.billing.gateway import CheckoutSessionRequest, PaymentGateway
from tenant_licensing.core.exceptions import (
    BadRequestError,
    InvalidSeatCountError,
    InvalidStateError,
    LicenseExistsError,
    NotFoundError,
    ValidationError,
)
from tenant_licensing.domain.checkout_events import (
    ChargeRefunded,
    CheckoutMetadata,
    FlowKind,
    GatewayEvent,
    PaymentConfirmed,
    PaymentFailed,
    decode_event,
)
from tenant_licensing.domain.discounts import DiscountTierTable
from tenant_licensing.domain.licenses import CourseRecord, LicenseRecord, LicenseStatus, TenantRecord
from tenant_licensing.domain.pricing import UNLIMITED_MULTIPLIER, LicenseType, PricingQuote, quote
from tenant_licensing.ledger.ledger import LicenseLedger
from tenant_licensing.ledger.store import TenantDirectory, WebhookEventRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Requester:
    """The authenticated tenant user starting a checkout."""

    user_id: str
    tenant_id: str
    email: str | None = None


@dataclass(frozen=True)
class CheckoutResult:
    session_id: str
    url: str
    quote: PricingQuote
    currency: str
    course_title: str = ""
    license: LicenseRecord | None = None


def parse_license_type(value: str | LicenseType) -> LicenseType:
    try:
        return LicenseType(value)
    except ValueError as exc:
        raise ValidationError('License type must be "unlimited" or "seats"') from exc


def check_seat_count(license_type: LicenseType, seats: int | None) -> None:
    """Explicit non-positive seat counts are invalid for seats licenses."""
    if license_type is LicenseType.SEATS and seats is not None and seats < 1:
        raise InvalidSeatCountError(seats)


class CheckoutOrchestrator:
    def __init__(
        self,
        ledger: LicenseLedger,
        directory: TenantDirectory,
        gateway: PaymentGateway,
        tier_table: DiscountTierTable,
        frontend_url: str,
        events: WebhookEventRegistry | None = None,
        unlimited_multiplier: int = UNLIMITED_MULTIPLIER,
    ):
        self.ledger = ledger
        self.directory = directory
        self.gateway = gateway
        self.tier_table = tier_table
        self.frontend_url = frontend_url.rstrip("/")
        self.events = events
        self.unlimited_multiplier = unlimited_multiplier

    async def _load_tenant(self, tenant_id: str) -> TenantRecord:
        tenant = await self.directory.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return tenant

    async def _load_course(self, course_id: str) -> CourseRecord:
        course = await self.directory.get_course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    def _quote(self, tenant: TenantRecord, course: CourseRecord, license_type: LicenseType, seats: int | None) -> PricingQuote:
        tiers = self.tier_table.get_effective_tiers(tenant.settings)
        return quote(course.price, license_type, seats, tiers, unlimited_multiplier=self.unlimited_multiplier)

    async def quote_for_course(
        self,
        tenant_id: str,
        course_id: str,
        license_type: str | LicenseType = LicenseType.SEATS,
        seats: int | None = None,
    ) -> tuple[CourseRecord, PricingQuote]:
        """Price a license for ``course_id`` with the tenant's effective tiers. No side effects."""
        license_type = parse_license_type(license_type)
        check_seat_count(license_type, seats)
        tenant = await self._load_tenant(tenant_id)
        course = await self._load_course(course_id)
        return course, self._quote(tenant, course, license_type, seats)

    async def ensure_customer(self, tenant: TenantRecord, email: str | None) -> str:
        """Return the tenant's gateway customer id, creating it on first use."""
        if tenant.stripe_customer_id:
            return tenant.stripe_customer_id

        logger.info("stripe_customer_creating", tenant_id=tenant.id)
        customer_id = await self.gateway.create_customer(
            email=email,
            name=tenant.name,
            metadata={"tenantId": tenant.id, "tenantName": tenant.name},
        )
        stored = await self.directory.claim_customer_id(tenant.id, customer_id)
        if stored != customer_id:
            logger.warning("stripe_customer_already_set", tenant_id=tenant.id, customer_id=stored)
        return stored

    async def create_license_checkout(
        self,
        requester: Requester,
        course_id: str,
        license_type: str | LicenseType,
        seats: int | None = None,
        now: datetime | None = None,
    ) -> CheckoutResult:
        """Start a license purchase.

        Raises:
            ValidationError / InvalidSeatCountError: bad license type or seat count
            NotFoundError: tenant or course missing
            BadRequestError: course not purchasable
            LicenseExistsError: an active license for this course already exists
            PaymentGatewayError: customer or session creation failed
        """
        now = now or datetime.now(UTC)
        license_type = parse_license_type(license_type)
        check_seat_count(license_type, seats)

        course = await self._load_course(course_id)
        if course.status != "published":
            raise BadRequestError("Course is not available for purchase")
        if course.is_free:
            raise BadRequestError("This course is free. No license purchase required.")
        tenant = await self._load_tenant(requester.tenant_id)

        if await self.ledger.find_active(tenant.id, course.id, now) is not None:
            raise LicenseExistsError("Your organization already has an active license for this course")

        pricing = self._quote(tenant, course, license_type, seats)
        customer_id = await self.ensure_customer(tenant, requester.email)

        metadata = CheckoutMetadata(
            flow=FlowKind.B2B_LICENSE,
            tenant_id=tenant.id,
            course_id=course.id,
            user_id=requester.user_id,
            license_type=license_type,
            seats=pricing.seats,
        )
        if license_type is LicenseType.UNLIMITED:
            description = f'Unlimited license for "{course.title}"'
        else:
            description = f'{pricing.seats} seat license for "{course.title}"'

        session = await self.gateway.create_checkout_session(
            CheckoutSessionRequest(
                amount_cents=pricing.total_cents,
                currency=course.currency,
                product_name=course.title,
                description=description,
                metadata=metadata.to_stripe(),
                success_url=f"{self.frontend_url}/admin/licenses/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/admin/licenses?course={course.slug}",
                customer_id=customer_id,
                customer_email=requester.email,
            )
        )

        record = await self.ledger.open_pending(
            tenant_id=tenant.id,
            course_id=course.id,
            purchased_by_id=requester.user_id,
            pricing=pricing,
            currency=course.currency,
            checkout_session_id=session.session_id,
            now=now,
        )
        logger.info(
            "license_checkout_created",
            tenant_id=tenant.id,
            course_id=course.id,
            license_type=license_type.value,
            seats=pricing.seats,
            session_id=session.session_id,
        )
        return CheckoutResult(
            session_id=session.session_id,
            url=session.url,
            quote=pricing,
            currency=course.currency,
            course_title=course.title,
            license=record,
        )

    async def create_renewal_checkout(
        self,
        requester: Requester,
        license_id: str,
        now: datetime | None = None,
    ) -> CheckoutResult:
        """Start a renewal checkout for an existing license.

        The license row is not touched until the renewal payment confirms.
        """
        now = now or datetime.now(UTC)
        record = await self.ledger.get(license_id, requester.tenant_id)
        if record.status not in (LicenseStatus.COMPLETED, LicenseStatus.EXPIRED):
            raise InvalidStateError("Only active or expired licenses can be renewed")

        if not record.is_active(now):
            active = await self.ledger.find_active(record.tenant_id, record.course_id, now)
            if active is not None and active.id != record.id:
                raise LicenseExistsError("Your organization already has an active license for this course")

        course = await self.directory.get_course(record.course_id)
        if course is None:
            raise BadRequestError("Course not found for this license")
        tenant = await self._load_tenant(requester.tenant_id)

        pricing = self._quote(tenant, course, record.license_type, record.seats_total)
        customer_id = await self.ensure_customer(tenant, requester.email)

        metadata = CheckoutMetadata(
            flow=FlowKind.B2B_LICENSE,
            tenant_id=tenant.id,
            course_id=course.id,
            user_id=requester.user_id,
            license_type=record.license_type,
            seats=record.seats_total,
            renewal_license_id=record.id,
        )
        if record.is_unlimited:
            description = f'Renewal: Unlimited license for "{course.title}"'
        else:
            description = f'Renewal: {record.seats_total} seat license for "{course.title}"'

        session = await self.gateway.create_checkout_session(
            CheckoutSessionRequest(
                amount_cents=pricing.total_cents,
                currency=course.currency,
                product_name=course.title,
                description=description,
                metadata=metadata.to_stripe(),
                success_url=f"{self.frontend_url}/admin/licenses/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/admin/licenses/{record.id}",
                customer_id=customer_id,
                customer_email=requester.email,
            )
        )
        logger.info(
            "license_renewal_checkout_created",
            license_id=record.id,
            tenant_id=tenant.id,
            session_id=session.session_id,
        )
        return CheckoutResult(
            session_id=session.session_id,
            url=session.url,
            quote=pricing,
            currency=course.currency,
            course_title=course.title,
        )

    # ── Inbound events ───────────────────────────────────────────────

    async def process_webhook(self, event: dict, now: datetime | None = None) -> bool:
        """Claim, decode and apply one verified Stripe event.

        Returns False for duplicates. Processing failures are logged and not
        raised so the gateway does not redeliver forever.
        """
        event_id = event["id"]
        event_type = event["type"]
        if self.events is not None and not await self.events.claim(event_id, event_type):
            logger.info("stripe_duplicate_event_ignored", event_id=event_id)
            return False

        logger.info("stripe_webhook_received", event_id=event_id, event_type=event_type)
        try:
            decoded = decode_event(event)
            if decoded is not None:
                await self.handle_event(decoded, now=now)
        except Exception:
            logger.exception("stripe_webhook_processing_failed", event_id=event_id, event_type=event_type)
        return True

    async def handle_event(self, event: GatewayEvent, now: datetime | None = None) -> None:
        """Dispatch a typed gateway event to the ledger. Safe to call repeatedly."""
        metadata = event.metadata
        if metadata is None or metadata.flow is not FlowKind.B2B_LICENSE:
            logger.debug(
                "gateway_event_other_flow",
                event_id=event.event_id,
                flow=metadata.flow.value if metadata else None,
            )
            return

        if isinstance(event, PaymentConfirmed):
            await self.on_payment_confirmed(event, now=now)
        elif isinstance(event, PaymentFailed):
            await self.on_payment_failed(event)
        elif isinstance(event, ChargeRefunded):
            await self.on_charge_refunded(event, now=now)

    async def on_payment_confirmed(self, event: PaymentConfirmed, now: datetime | None = None) -> None:
        metadata = event.metadata
        if metadata.renewal_license_id:
            await self.ledger.confirm_renewal(
                metadata.renewal_license_id,
                event.checkout_session_id,
                payment_intent_id=event.payment_intent_id,
                invoice_id=event.invoice_id,
                now=now,
            )
        else:
            await self.ledger.confirm_payment(
                event.checkout_session_id,
                payment_intent_id=event.payment_intent_id,
                invoice_id=event.invoice_id,
                now=now,
            )

        if event.customer_id and metadata.tenant_id:
            tenant = await self.directory.get_tenant(metadata.tenant_id)
            if tenant is not None and not tenant.stripe_customer_id:
                await self.directory.claim_customer_id(tenant.id, event.customer_id)
                logger.info("tenant_stripe_customer_backfilled", tenant_id=tenant.id)

    async def on_payment_failed(self, event: PaymentFailed) -> None:
        if event.metadata.renewal_license_id:
            # The existing license stays as it was
            logger.info(
                "license_renewal_payment_failed",
                license_id=event.metadata.renewal_license_id,
                session_id=event.checkout_session_id,
            )
            return
        await self.ledger.fail_payment(
            payment_intent_id=event.payment_intent_id,
            checkout_session_id=event.checkout_session_id,
        )

    async def on_charge_refunded(self, event: ChargeRefunded, now: datetime | None = None) -> None:
        if not event.payment_intent_id:
            logger.warning("charge_refunded_without_payment_intent", charge_id=event.charge_id)
            return
        await self.ledger.refund_from_gateway(
            event.payment_intent_id,
            refund_id=event.refund_id,
            amount_refunded_cents=event.amount_refunded_cents,
            is_partial=event.is_partial,
            now=now,
        )
