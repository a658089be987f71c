"""Volume discount tiers: lookup, validation, and tenant overrides.

Pure functions and value objects with no external dependencies. Tenant
overrides live in the tenant settings JSON under ``volume_discount_tiers``.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from tenant_licensing.core.exceptions import ValidationError

TIERS_SETTINGS_KEY = "volume_discount_tiers"


@dataclass(frozen=True)
class DiscountTier:
    """A (minimum seat count, discount percent) rule."""

    min_seats: int
    discount_percent: Decimal

    @classmethod
    def from_dict(cls, data: Mapping) -> "DiscountTier":
        """Build a tier from ``{"min_seats", "discount_percent"}`` (camelCase accepted)."""
        min_seats = data.get("min_seats", data.get("minSeats"))
        discount = data.get("discount_percent", data.get("discountPercent"))
        if min_seats is None or discount is None:
            raise ValidationError("Each tier must have min_seats and discount_percent")
        if isinstance(min_seats, bool) or isinstance(discount, bool):
            raise ValidationError("Tier values must be numeric")
        try:
            return cls(min_seats=int(min_seats), discount_percent=Decimal(str(discount)))
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise ValidationError("Tier values must be numeric") from exc

    def to_dict(self) -> dict:
        return {"min_seats": self.min_seats, "discount_percent": float(self.discount_percent)}


def resolve_discount(tiers: Iterable[DiscountTier], seat_count: int) -> Decimal:
    """Return the discount percent applicable to ``seat_count``.

    The tier with the highest ``min_seats`` that is still <= ``seat_count``
    wins; among tiers sharing that threshold the greatest discount wins.
    Empty tier list or no qualifying tier -> 0.
    """
    qualifying = [tier for tier in tiers if tier.min_seats <= seat_count]
    if not qualifying:
        return Decimal("0")
    best = max(qualifying, key=lambda tier: (tier.min_seats, tier.discount_percent))
    return best.discount_percent


def validate_tiers(tiers: Iterable[DiscountTier]) -> list[str]:
    """Validate tier bounds. Returns warnings for duplicated thresholds.

    Raises:
        ValidationError: min_seats < 1 or discount_percent outside [0, 100]
    """
    tiers = list(tiers)
    for tier in tiers:
        if tier.min_seats < 1:
            raise ValidationError("Each tier must have a positive min_seats value")
        if not Decimal("0") <= tier.discount_percent <= Decimal("100"):
            raise ValidationError("Each tier must have a discount_percent between 0 and 100")

    counts = Counter(tier.min_seats for tier in tiers)
    return [
        f"Duplicate tier threshold min_seats={min_seats}; the greatest discount applies"
        for min_seats, count in sorted(counts.items())
        if count > 1
    ]


def parse_tiers(raw: Iterable[Mapping]) -> list[DiscountTier]:
    return [DiscountTier.from_dict(item) for item in raw]


class DiscountTierTable:
    """Resolves effective discount tiers for a tenant.

    The process-wide default list is injected at construction instead of
    being read from global configuration.
    """

    def __init__(self, default_tiers: Iterable[DiscountTier]):
        self.default_tiers: tuple[DiscountTier, ...] = tuple(default_tiers)

    @classmethod
    def from_config(cls, raw_tiers: Iterable[Mapping]) -> "DiscountTierTable":
        return cls(parse_tiers(raw_tiers))

    resolve = staticmethod(resolve_discount)

    def get_effective_tiers(self, tenant_settings: Mapping | None) -> tuple[DiscountTier, ...]:
        """Tenant's custom tiers when explicitly set and non-empty, else the defaults."""
        raw = (tenant_settings or {}).get(TIERS_SETTINGS_KEY)
        if raw:
            return tuple(parse_tiers(raw))
        return self.default_tiers

    def with_tiers(self, tenant_settings: Mapping | None, tiers: list[DiscountTier]) -> tuple[dict, list[str]]:
        """Return new tenant settings carrying ``tiers`` plus any validation warnings."""
        if not tiers:
            raise ValidationError("Tiers must be a non-empty list")
        warnings = validate_tiers(tiers)
        settings = dict(tenant_settings or {})
        settings[TIERS_SETTINGS_KEY] = [tier.to_dict() for tier in tiers]
        return settings, warnings

    def without_tiers(self, tenant_settings: Mapping | None) -> dict:
        """Return new tenant settings with the override removed."""
        settings = dict(tenant_settings or {})
        settings.pop(TIERS_SETTINGS_KEY, None)
        return settings
