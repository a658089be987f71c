"""Typed checkout metadata and gateway events.

Checkout sessions carry string-keyed metadata. It is decoded once at the
webhook boundary into a ``CheckoutMetadata`` with an explicit ``FlowKind`` and
wrapped in a typed event before dispatch.
"""

from dataclasses import dataclass
from enum import Enum

from tenant_licensing.domain.pricing import LicenseType


class FlowKind(str, Enum):
    COURSE_PURCHASE = "course_purchase"
    B2B_LICENSE = "b2b_license"
    TENANT_SUBSCRIPTION = "tenant_subscription"


@dataclass(frozen=True)
class CheckoutMetadata:
    flow: FlowKind
    tenant_id: str | None = None
    course_id: str | None = None
    user_id: str | None = None
    license_type: LicenseType | None = None
    seats: int | None = None
    renewal_license_id: str | None = None

    def to_stripe(self) -> dict[str, str]:
        """Flatten to Stripe metadata (string values only, absent keys omitted)."""
        metadata = {"type": self.flow.value}
        if self.tenant_id:
            metadata["tenantId"] = self.tenant_id
        if self.course_id:
            metadata["courseId"] = self.course_id
        if self.user_id:
            metadata["userId"] = self.user_id
        if self.license_type:
            metadata["licenseType"] = self.license_type.value
            metadata["seats"] = str(self.seats) if self.seats is not None else "unlimited"
        if self.renewal_license_id:
            metadata["renewalLicenseId"] = self.renewal_license_id
        return metadata

    @classmethod
    def from_stripe(cls, metadata: dict | None) -> "CheckoutMetadata | None":
        """Decode Stripe metadata. Returns None when the flow tag is missing or unknown."""
        metadata = metadata or {}
        try:
            flow = FlowKind(metadata.get("type"))
        except ValueError:
            return None

        license_type = None
        if metadata.get("licenseType") in {t.value for t in LicenseType}:
            license_type = LicenseType(metadata["licenseType"])

        seats = None
        raw_seats = metadata.get("seats")
        if raw_seats and raw_seats.isdigit():
            seats = int(raw_seats)

        return cls(
            flow=flow,
            tenant_id=metadata.get("tenantId"),
            course_id=metadata.get("courseId"),
            user_id=metadata.get("userId"),
            license_type=license_type,
            seats=seats,
            renewal_license_id=metadata.get("renewalLicenseId"),
        )


@dataclass(frozen=True)
class PaymentConfirmed:
    event_id: str
    metadata: CheckoutMetadata | None
    checkout_session_id: str
    payment_intent_id: str | None
    invoice_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    metadata: CheckoutMetadata | None
    payment_intent_id: str | None
    checkout_session_id: str | None


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    metadata: CheckoutMetadata | None
    charge_id: str
    payment_intent_id: str | None
    refund_id: str | None
    amount_cents: int
    amount_refunded_cents: int

    @property
    def is_partial(self) -> bool:
        return self.amount_refunded_cents < self.amount_cents


GatewayEvent = PaymentConfirmed | PaymentFailed | ChargeRefunded

_CONFIRMED_TYPES = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
_SESSION_FAILED_TYPES = {"checkout.session.async_payment_failed", "checkout.session.expired"}


def _object_id(value) -> str | None:
    """Stripe expandable fields are either an id string or an object with ``id``."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def decode_event(event: dict) -> GatewayEvent | None:
    """Decode a Stripe event into a typed gateway event.

    Returns None for event types this service does not consume.
    """
    event_id = event["id"]
    event_type = event["type"]
    data = event["data"]["object"]
    metadata = CheckoutMetadata.from_stripe(data.get("metadata"))

    if event_type in _CONFIRMED_TYPES:
        # Bank-transfer sessions complete with payment_status "unpaid" and
        # confirm later through async_payment_succeeded.
        if event_type == "checkout.session.completed" and data.get("payment_status") == "unpaid":
            return None
        return PaymentConfirmed(
            event_id=event_id,
            metadata=metadata,
            checkout_session_id=data["id"],
            payment_intent_id=_object_id(data.get("payment_intent")),
            invoice_id=_object_id(data.get("invoice")),
            customer_id=_object_id(data.get("customer")),
        )

    if event_type in _SESSION_FAILED_TYPES:
        return PaymentFailed(
            event_id=event_id,
            metadata=metadata,
            payment_intent_id=_object_id(data.get("payment_intent")),
            checkout_session_id=data["id"],
        )

    if event_type == "payment_intent.payment_failed":
        return PaymentFailed(
            event_id=event_id,
            metadata=metadata,
            payment_intent_id=data["id"],
            checkout_session_id=None,
        )

    if event_type == "charge.refunded":
        refunds = (data.get("refunds") or {}).get("data") or []
        return ChargeRefunded(
            event_id=event_id,
            metadata=metadata,
            charge_id=data["id"],
            payment_intent_id=_object_id(data.get("payment_intent")),
            refund_id=refunds[0]["id"] if refunds else None,
            amount_cents=int(data.get("amount") or 0),
            amount_refunded_cents=int(data.get("amount_refunded") or 0),
        )

    return None
