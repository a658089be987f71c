"""Tests for DiscountTierService: tenant tier overrides and reset."""

from dataclasses import replace
from decimal import Decimal

import pytest

from tenant_licensing.core.exceptions import NotFoundError, ValidationError
from tenant_licensing.domain.discounts import TIERS_SETTINGS_KEY, DiscountTier
from tenant_licensing.services.discount_tier_service import DiscountTierService

from tests.conftest import TENANT_ID

pytestmark = pytest.mark.unit


@pytest.fixture
def service(directory, tier_table) -> DiscountTierService:
    return DiscountTierService(directory, tier_table)


async def test_get_tiers_defaults(service, default_tiers):
    assert await service.get_tiers(TENANT_ID) == tuple(default_tiers)


async def test_set_tiers_persists_override(service, directory):
    tiers, warnings = await service.set_tiers(TENANT_ID, [{"minSeats": 5, "discountPercent": 12.5}])

    assert tiers == [DiscountTier(5, Decimal("12.5"))]
    assert warnings == []
    assert directory.tenants[TENANT_ID].settings[TIERS_SETTINGS_KEY] == [{"min_seats": 5, "discount_percent": 12.5}]
    assert await service.get_tiers(TENANT_ID) == (DiscountTier(5, Decimal("12.5")),)


async def test_set_tiers_reports_duplicate_thresholds(service):
    _, warnings = await service.set_tiers(
        TENANT_ID,
        [{"min_seats": 10, "discount_percent": 5}, {"min_seats": 10, "discount_percent": 8}],
    )

    assert len(warnings) == 1


async def test_set_then_reset_restores_defaults(service, directory, default_tiers):
    directory.tenants[TENANT_ID] = replace(directory.tenants[TENANT_ID], settings={"branding": "dark"})
    await service.set_tiers(TENANT_ID, [{"min_seats": 2, "discount_percent": 40}])

    restored = await service.reset_tiers(TENANT_ID)

    assert restored == tuple(default_tiers)
    assert await service.get_tiers(TENANT_ID) == tuple(default_tiers)
    assert directory.tenants[TENANT_ID].settings == {"branding": "dark"}


@pytest.mark.parametrize(
    "raw",
    [
        [],
        [{"min_seats": 0, "discount_percent": 10}],
        [{"min_seats": 5, "discount_percent": 120}],
        [{"min_seats": 5}],
    ],
)
async def test_set_tiers_rejects_invalid(service, directory, raw):
    with pytest.raises(ValidationError):
        await service.set_tiers(TENANT_ID, raw)
    assert TIERS_SETTINGS_KEY not in directory.tenants[TENANT_ID].settings


async def test_unknown_tenant(service):
    with pytest.raises(NotFoundError):
        await service.get_tiers("missing")
    with pytest.raises(NotFoundError):
        await service.set_tiers("missing", [{"min_seats": 5, "discount_percent": 5}])
    with pytest.raises(NotFoundError):
        await service.reset_tiers("missing")
