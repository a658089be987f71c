"""License lifecycle states and the plain records the ledger works with."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from tenant_licensing.domain.pricing import LicenseType


class LicenseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    FAILED = "failed"


# Valid stored-status transitions. Renewal reactivates EXPIRED -> COMPLETED.
TRANSITIONS: dict[LicenseStatus, list[LicenseStatus]] = {
    LicenseStatus.PENDING: [LicenseStatus.COMPLETED, LicenseStatus.FAILED],
    LicenseStatus.COMPLETED: [LicenseStatus.REFUNDED, LicenseStatus.EXPIRED],
    LicenseStatus.EXPIRED: [LicenseStatus.COMPLETED, LicenseStatus.REFUNDED],
    LicenseStatus.REFUNDED: [],  # Terminal
    LicenseStatus.FAILED: [],  # Terminal
}


def can_transition(current: LicenseStatus, target: LicenseStatus) -> bool:
    return target in TRANSITIONS.get(current, [])


@dataclass(frozen=True)
class LicenseRecord:
    id: str
    tenant_id: str
    course_id: str
    purchased_by_id: str
    license_type: LicenseType
    seats_total: int | None
    seats_used: int
    amount: Decimal
    currency: str
    status: LicenseStatus
    stripe_checkout_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    stripe_invoice_id: str | None = None
    purchased_at: datetime | None = None
    expires_at: datetime | None = None
    renewed_at: datetime | None = None
    renewal_count: int = 0
    last_renewal_session_id: str | None = None
    stripe_refund_id: str | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None
    refund_amount: Decimal | None = None
    is_partial_refund: bool = False
    created_at: datetime | None = None

    @property
    def is_unlimited(self) -> bool:
        return self.license_type is LicenseType.UNLIMITED

    @property
    def available_seats(self) -> int | None:
        if self.is_unlimited:
            return None
        return (self.seats_total or 0) - self.seats_used

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.status is LicenseStatus.EXPIRED:
            return True
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return self.expires_at <= now

    def is_expiring_soon(self, days: int, now: datetime | None = None) -> bool:
        if self.expires_at is None or self.is_expired(now):
            return False
        now = now or datetime.now(UTC)
        return self.expires_at <= now + timedelta(days=days)

    def effective_status(self, now: datetime | None = None) -> LicenseStatus:
        """Stored status with time-based expiry applied."""
        if self.status is LicenseStatus.COMPLETED and self.is_expired(now):
            return LicenseStatus.EXPIRED
        return self.status

    def is_active(self, now: datetime | None = None) -> bool:
        """COMPLETED and not past ``expires_at``."""
        return self.effective_status(now) is LicenseStatus.COMPLETED


@dataclass(frozen=True)
class AssignmentRecord:
    id: str
    license_id: str
    user_id: str
    assigned_by_id: str
    assigned_at: datetime


@dataclass(frozen=True)
class TenantRecord:
    id: str
    name: str
    stripe_customer_id: str | None = None
    settings: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CourseRecord:
    id: str
    title: str
    slug: str
    price: Decimal
    currency: str
    status: str = "published"
    is_free: bool = False

    @property
    def is_purchasable(self) -> bool:
        return self.status == "published" and not self.is_free
