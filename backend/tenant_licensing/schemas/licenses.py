"""License Pydantic schemas for API requests and responses."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from tenant_licensing.domain.licenses import AssignmentRecord, LicenseRecord
from tenant_licensing.domain.pricing import PricingQuote


class TierSchema(BaseModel):
    min_seats: int
    discount_percent: float


class PricingResponse(BaseModel):
    course_id: str
    course_title: str
    course_price: float
    license_type: str
    seats: int | None
    price_per_seat: float
    total_price: float
    discount_percent: float
    savings: float
    currency: str
    tiers: list[TierSchema]

    @classmethod
    def from_quote(cls, pricing: PricingQuote, course_id: str, course_title: str, currency: str) -> "PricingResponse":
        return cls(
            course_id=course_id,
            course_title=course_title,
            course_price=float(pricing.course_price),
            license_type=pricing.license_type.value,
            seats=pricing.seats,
            price_per_seat=float(pricing.price_per_seat),
            total_price=float(pricing.total_price),
            discount_percent=float(pricing.discount_percent),
            savings=float(pricing.savings),
            currency=currency,
            tiers=[TierSchema(**tier.to_dict()) for tier in pricing.tiers],
        )


class CheckoutRequest(BaseModel):
    course_id: str = Field(validation_alias=AliasChoices("course_id", "courseId"))
    license_type: str = Field(validation_alias=AliasChoices("license_type", "licenseType"))
    seats: int | None = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: str
    license_id: str | None = None
    amount: float
    currency: str
    pricing: PricingResponse


class RenewResponse(BaseModel):
    session_id: str
    url: str
    amount: float
    currency: str


class AssignmentResponse(BaseModel):
    id: str
    license_id: str
    user_id: str
    assigned_by_id: str
    assigned_at: datetime

    @classmethod
    def from_record(cls, record: AssignmentRecord) -> "AssignmentResponse":
        return cls(
            id=record.id,
            license_id=record.license_id,
            user_id=record.user_id,
            assigned_by_id=record.assigned_by_id,
            assigned_at=record.assigned_at,
        )


class LicenseResponse(BaseModel):
    id: str
    course_id: str
    license_type: str
    seats_total: int | None
    seats_used: int
    available_seats: int | None
    amount: float
    currency: str
    status: str
    purchased_at: datetime | None
    expires_at: datetime | None
    renewed_at: datetime | None
    renewal_count: int
    is_expired: bool
    is_expiring_soon: bool
    refunded_at: datetime | None = None
    refund_amount: float | None = None

    @classmethod
    def from_record(cls, record: LicenseRecord, expiring_soon_days: int, now: datetime) -> "LicenseResponse":
        return cls(
            id=record.id,
            course_id=record.course_id,
            license_type=record.license_type.value,
            seats_total=record.seats_total,
            seats_used=record.seats_used,
            available_seats=record.available_seats,
            amount=float(record.amount),
            currency=record.currency,
            status=record.status.value,
            purchased_at=record.purchased_at,
            expires_at=record.expires_at,
            renewed_at=record.renewed_at,
            renewal_count=record.renewal_count,
            is_expired=record.is_expired(now),
            is_expiring_soon=record.is_expiring_soon(expiring_soon_days, now),
            refunded_at=record.refunded_at,
            refund_amount=float(record.refund_amount) if record.refund_amount is not None else None,
        )


class LicenseDetailResponse(LicenseResponse):
    assignments: list[AssignmentResponse] = []


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class LicenseListResponse(BaseModel):
    licenses: list[LicenseResponse]
    pagination: Pagination


class AssignRequest(BaseModel):
    user_id: str = Field(min_length=1, validation_alias=AliasChoices("user_id", "userId"))


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    id: str
    status: str
    refund_id: str | None
    refund_amount: float | None
    refunded_at: datetime | None
