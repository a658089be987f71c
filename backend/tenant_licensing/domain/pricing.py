"""License price quotes.

Pure function -- deterministic, no I/O. Money is carried as ``Decimal`` and
rounded half-up to cents at every step, in this order:

    price_per_seat = round2(course_price * (100 - discount) / 100)
    total_price    = round2(price_per_seat * seats)
    savings        = round2(course_price * seats - total_price)

Rounding the per-seat price before multiplying keeps quotes identical to the
ones already issued.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from tenant_licensing.domain.discounts import DiscountTier, resolve_discount

UNLIMITED_MULTIPLIER = 10

_CENTS = Decimal("0.01")


class LicenseType(str, Enum):
    UNLIMITED = "unlimited"
    SEATS = "seats"


@dataclass(frozen=True)
class PricingQuote:
    course_price: Decimal
    license_type: LicenseType
    seats: int | None
    price_per_seat: Decimal
    total_price: Decimal
    discount_percent: Decimal
    savings: Decimal
    tiers: tuple[DiscountTier, ...]

    @property
    def total_cents(self) -> int:
        return to_cents(self.total_price)


def round2(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float artefacts (99.99 -> Decimal("99.99"))
    return Decimal(str(value))


def to_cents(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quote(
    course_price,
    license_type: LicenseType | str,
    seats: int | None,
    tiers: Sequence[DiscountTier],
    unlimited_multiplier: int = UNLIMITED_MULTIPLIER,
) -> PricingQuote:
    """Compute a license price quote.

    Args:
        course_price: Single-seat course price (>= 0)
        license_type: "unlimited" or "seats"
        seats: Seat count; ``None`` means 1 for seats licenses, ignored for unlimited
        tiers: Volume discount tiers to apply to seats licenses
        unlimited_multiplier: Unlimited license price as a multiple of the course price

    Returns:
        PricingQuote
    """
    license_type = LicenseType(license_type)
    price = to_decimal(course_price)
    tiers = tuple(tiers)

    if license_type is LicenseType.UNLIMITED:
        total = round2(price * unlimited_multiplier)
        return PricingQuote(
            course_price=price,
            license_type=license_type,
            seats=None,
            price_per_seat=total,
            total_price=total,
            discount_percent=Decimal("0"),
            savings=Decimal("0"),
            tiers=tiers,
        )

    seat_count = 1 if seats is None else seats
    discount = resolve_discount(tiers, seat_count)

    price_per_seat = round2(price * (Decimal("100") - discount) / Decimal("100"))
    total = round2(price_per_seat * seat_count)
    savings = round2(price * seat_count - total)

    return PricingQuote(
        course_price=price,
        license_type=license_type,
        seats=seat_count,
        price_per_seat=price_per_seat,
        total_price=total,
        discount_percent=discount,
        savings=savings,
        tiers=tiers,
    )
