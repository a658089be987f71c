"""Tests for volume discount tier lookup, validation and tenant overrides."""

from decimal import Decimal

import pytest

from tenant_licensing.core.exceptions import ValidationError
from tenant_licensing.domain.discounts import (
    TIERS_SETTINGS_KEY,
    DiscountTier,
    DiscountTierTable,
    parse_tiers,
    resolve_discount,
    validate_tiers,
)

pytestmark = pytest.mark.unit


def tier(min_seats: int, discount: str | int) -> DiscountTier:
    return DiscountTier(min_seats=min_seats, discount_percent=Decimal(str(discount)))


# ============================================================================
# resolve
# ============================================================================


def test_resolve_empty_tiers_is_zero():
    assert resolve_discount([], 500) == Decimal("0")


def test_resolve_below_first_threshold_is_zero(default_tiers):
    assert resolve_discount(default_tiers, 9) == Decimal("0")


@pytest.mark.parametrize(
    "seats,expected",
    [(10, "10"), (19, "10"), (20, "20"), (49, "20"), (50, "30"), (1000, "30")],
)
def test_resolve_picks_highest_qualifying_threshold(default_tiers, seats, expected):
    assert resolve_discount(default_tiers, seats) == Decimal(expected)


def test_resolve_ignores_tier_order():
    tiers = [tier(50, 30), tier(10, 10), tier(20, 20)]
    assert resolve_discount(tiers, 25) == Decimal("20")


def test_resolve_duplicate_threshold_takes_greatest_discount():
    tiers = [tier(10, 5), tier(10, 15), tier(20, 12)]
    assert resolve_discount(tiers, 10) == Decimal("15")
    # A higher qualifying threshold still wins even with a smaller discount
    assert resolve_discount(tiers, 20) == Decimal("12")


def test_resolve_is_monotonic_for_increasing_tiers(default_tiers):
    discounts = [resolve_discount(default_tiers, seats) for seats in range(1, 121)]
    assert discounts == sorted(discounts)


# ============================================================================
# parsing and validation
# ============================================================================


def test_from_dict_accepts_camel_case():
    parsed = DiscountTier.from_dict({"minSeats": 5, "discountPercent": 7.5})
    assert parsed == tier(5, "7.5")


def test_from_dict_missing_value_raises():
    with pytest.raises(ValidationError):
        DiscountTier.from_dict({"min_seats": 5})


@pytest.mark.parametrize("raw", [{"min_seats": "ten", "discount_percent": 5}, {"min_seats": True, "discount_percent": 5}])
def test_from_dict_non_numeric_raises(raw):
    with pytest.raises(ValidationError):
        DiscountTier.from_dict(raw)


def test_to_dict_round_trips_through_parse():
    tiers = [tier(10, 10), tier(25, "12.5")]
    assert parse_tiers([t.to_dict() for t in tiers]) == tiers


@pytest.mark.parametrize(
    "bad",
    [tier(0, 10), tier(-3, 10), tier(5, -1), tier(5, "100.01")],
)
def test_validate_rejects_out_of_range(bad):
    with pytest.raises(ValidationError):
        validate_tiers([tier(10, 10), bad])


def test_validate_accepts_bounds():
    assert validate_tiers([tier(1, 0), tier(2, 100)]) == []


def test_validate_warns_on_duplicate_thresholds():
    warnings = validate_tiers([tier(10, 5), tier(10, 15), tier(20, 20)])
    assert len(warnings) == 1
    assert "min_seats=10" in warnings[0]


# ============================================================================
# DiscountTierTable
# ============================================================================


def test_effective_tiers_default_when_no_override(tier_table, default_tiers):
    assert tier_table.get_effective_tiers({}) == tuple(default_tiers)
    assert tier_table.get_effective_tiers(None) == tuple(default_tiers)


def test_effective_tiers_default_when_override_empty(tier_table, default_tiers):
    assert tier_table.get_effective_tiers({TIERS_SETTINGS_KEY: []}) == tuple(default_tiers)


def test_effective_tiers_uses_tenant_override(tier_table):
    settings = {TIERS_SETTINGS_KEY: [{"min_seats": 5, "discount_percent": 15}]}
    assert tier_table.get_effective_tiers(settings) == (tier(5, 15),)


def test_with_tiers_rejects_empty_list(tier_table):
    with pytest.raises(ValidationError, match="non-empty"):
        tier_table.with_tiers({}, [])


def test_with_tiers_keeps_other_settings(tier_table):
    settings, warnings = tier_table.with_tiers({"branding": {"color": "blue"}}, [tier(5, 15)])
    assert settings["branding"] == {"color": "blue"}
    assert settings[TIERS_SETTINGS_KEY] == [{"min_seats": 5, "discount_percent": 15.0}]
    assert warnings == []


def test_set_then_reset_returns_original_defaults(tier_table, default_tiers):
    original = {"branding": {"color": "blue"}}
    overridden, _ = tier_table.with_tiers(original, [tier(3, 50)])
    assert tier_table.get_effective_tiers(overridden) == (tier(3, 50),)

    reset = tier_table.without_tiers(overridden)
    assert reset == original
    assert tier_table.get_effective_tiers(reset) == tuple(default_tiers)


def test_from_config_parses_settings_defaults():
    table = DiscountTierTable.from_config([{"min_seats": 10, "discount_percent": 10}])
    assert table.default_tiers == (tier(10, 10),)
