"""Shared test fixtures for all test groups.

Stores, directory, gateway and notification sink are the in-memory
implementations; SQL store tests build their own aiosqlite engine.
"""

import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from tenant_licensing.billing.gateway import RecordingGateway
from tenant_licensing.checkout.orchestrator import CheckoutOrchestrator, Requester
from tenant_licensing.domain.discounts import DiscountTier, DiscountTierTable
from tenant_licensing.domain.licenses import CourseRecord, LicenseRecord, LicenseStatus, TenantRecord
from tenant_licensing.domain.pricing import LicenseType
from tenant_licensing.ledger.ledger import LicenseLedger
from tenant_licensing.ledger.memory_store import (
    InMemoryLicenseStore,
    InMemoryTenantDirectory,
    InMemoryWebhookEventRegistry,
)
from tenant_licensing.notifications.sink import RecordingNotificationSink

TENANT_ID = "6f1c2a9e-4b7d-4c1e-9a3f-1d2e3f4a5b6c"
OTHER_TENANT_ID = "0b9e8d7c-6a5f-4e3d-8c2b-1a0f9e8d7c6b"
COURSE_ID = "3a4b5c6d-7e8f-4a0b-9c1d-2e3f4a5b6c7d"
DRAFT_COURSE_ID = "9f8e7d6c-5b4a-4c3d-8e2f-1a0b9c8d7e6f"
FREE_COURSE_ID = "1e2d3c4b-5a69-4788-9a6b-5c4d3e2f1a0b"

ADMIN_ID = "admin-1"
MEMBERS = ["learner-1", "learner-2", "learner-3", "learner-4"]

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def default_tiers() -> list[DiscountTier]:
    """10% at 10 seats, 20% at 20, 30% at 50."""
    return [
        DiscountTier(min_seats=10, discount_percent=Decimal("10")),
        DiscountTier(min_seats=20, discount_percent=Decimal("20")),
        DiscountTier(min_seats=50, discount_percent=Decimal("30")),
    ]


@pytest.fixture
def tier_table(default_tiers) -> DiscountTierTable:
    return DiscountTierTable(default_tiers)


@pytest.fixture
def tenant() -> TenantRecord:
    return TenantRecord(id=TENANT_ID, name="Acme Learning")


@pytest.fixture
def course() -> CourseRecord:
    return CourseRecord(
        id=COURSE_ID,
        title="Python Fundamentals",
        slug="python-fundamentals",
        price=Decimal("100.00"),
        currency="EUR",
    )


@pytest.fixture
def directory(tenant, course) -> InMemoryTenantDirectory:
    return InMemoryTenantDirectory(
        tenants=[tenant, TenantRecord(id=OTHER_TENANT_ID, name="Other Corp")],
        courses=[
            course,
            CourseRecord(
                id=DRAFT_COURSE_ID, title="Draft", slug="draft", price=Decimal("50"), currency="EUR", status="draft"
            ),
            CourseRecord(
                id=FREE_COURSE_ID, title="Free Intro", slug="free-intro", price=Decimal("0"), currency="EUR", is_free=True
            ),
        ],
        members=[(TENANT_ID, ADMIN_ID)] + [(TENANT_ID, user_id) for user_id in MEMBERS],
    )


@pytest.fixture
def store() -> InMemoryLicenseStore:
    return InMemoryLicenseStore()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def events() -> InMemoryWebhookEventRegistry:
    return InMemoryWebhookEventRegistry()


@pytest.fixture
def ledger(store, directory, gateway, notifier) -> LicenseLedger:
    return LicenseLedger(store, directory, gateway, notifier, license_duration_days=365)


@pytest.fixture
def orchestrator(ledger, directory, gateway, tier_table, events) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        ledger,
        directory,
        gateway,
        tier_table,
        frontend_url="https://app.example.com",
        events=events,
    )


@pytest.fixture
def requester() -> Requester:
    return Requester(user_id=ADMIN_ID, tenant_id=TENANT_ID, email="admin@acme.test")


@pytest.fixture
def make_license(store):
    """Factory inserting a license straight into the store (COMPLETED seats license by default)."""

    async def _make(**overrides) -> LicenseRecord:
        record = LicenseRecord(
            id=str(uuid.uuid4()),
            tenant_id=TENANT_ID,
            course_id=COURSE_ID,
            purchased_by_id=ADMIN_ID,
            license_type=LicenseType.SEATS,
            seats_total=3,
            seats_used=0,
            amount=Decimal("300.00"),
            currency="EUR",
            status=LicenseStatus.COMPLETED,
            stripe_checkout_session_id=f"cs_{uuid.uuid4().hex[:12]}",
            stripe_payment_intent_id=f"pi_{uuid.uuid4().hex[:12]}",
            purchased_at=NOW - timedelta(days=10),
            expires_at=NOW + timedelta(days=355),
            created_at=NOW - timedelta(days=10),
        )
        return await store.create(replace(record, **overrides))

    return _make
