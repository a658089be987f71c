"""Tests for license lifecycle transitions and time-based status."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from tenant_licensing.domain.licenses import TRANSITIONS, LicenseRecord, LicenseStatus, can_transition
from tenant_licensing.domain.pricing import LicenseType

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def record(**overrides) -> LicenseRecord:
    values = dict(
        id="lic-1",
        tenant_id="tenant-1",
        course_id="course-1",
        purchased_by_id="admin-1",
        license_type=LicenseType.SEATS,
        seats_total=5,
        seats_used=2,
        amount=Decimal("500.00"),
        currency="EUR",
        status=LicenseStatus.COMPLETED,
        expires_at=NOW + timedelta(days=20),
    )
    values.update(overrides)
    return LicenseRecord(**values)


def test_terminal_states_have_no_transitions():
    assert TRANSITIONS[LicenseStatus.REFUNDED] == []
    assert TRANSITIONS[LicenseStatus.FAILED] == []


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (LicenseStatus.PENDING, LicenseStatus.COMPLETED, True),
        (LicenseStatus.PENDING, LicenseStatus.FAILED, True),
        (LicenseStatus.PENDING, LicenseStatus.REFUNDED, False),
        (LicenseStatus.COMPLETED, LicenseStatus.REFUNDED, True),
        (LicenseStatus.COMPLETED, LicenseStatus.PENDING, False),
        (LicenseStatus.EXPIRED, LicenseStatus.COMPLETED, True),
        (LicenseStatus.REFUNDED, LicenseStatus.COMPLETED, False),
        (LicenseStatus.FAILED, LicenseStatus.PENDING, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_effective_status_expires_completed_license_past_expiry():
    stale = record(expires_at=NOW - timedelta(seconds=1))

    assert stale.status is LicenseStatus.COMPLETED
    assert stale.effective_status(NOW) is LicenseStatus.EXPIRED
    assert not stale.is_active(NOW)


def test_expiry_boundary_is_inclusive():
    assert record(expires_at=NOW).is_expired(NOW)


def test_no_expiry_never_expires():
    perpetual = record(expires_at=None)
    assert perpetual.is_active(NOW + timedelta(days=10_000))
    assert not perpetual.is_expiring_soon(30, NOW)


def test_effective_status_leaves_other_states_alone():
    refunded = record(status=LicenseStatus.REFUNDED, expires_at=NOW - timedelta(days=1))
    assert refunded.effective_status(NOW) is LicenseStatus.REFUNDED


def test_is_expiring_soon_window():
    assert record().is_expiring_soon(30, NOW)
    assert not record().is_expiring_soon(7, NOW)
    assert not record(expires_at=NOW - timedelta(days=1)).is_expiring_soon(30, NOW)


def test_available_seats():
    assert record().available_seats == 3
    unlimited = record(license_type=LicenseType.UNLIMITED, seats_total=None, seats_used=0)
    assert unlimited.available_seats is None
    assert unlimited.is_unlimited
