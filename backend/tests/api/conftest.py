"""API test fixtures.

The real app from ``create_app()`` with its service providers overridden by
the in-memory ledger, orchestrator and tier service from the root conftest.
Requests go through httpx's ASGI transport so handlers share the test's
event loop.
"""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from tenant_licensing.api.deps import (
    get_discount_tier_service,
    get_gateway,
    get_ledger,
    get_orchestrator,
)
from tenant_licensing.core.auth import TENANT_ADMIN, TenantUser, require_auth
from tenant_licensing.main import create_app
from tenant_licensing.services.discount_tier_service import DiscountTierService

from tests.conftest import ADMIN_ID, TENANT_ID


class AuthState:
    """Mutable holder so a test can switch the calling user mid-test."""

    def __init__(self, user: TenantUser):
        self.user = user

    def act_as(self, user_id: str = ADMIN_ID, tenant_id: str | None = TENANT_ID, role: str | None = TENANT_ADMIN):
        self.user = TenantUser(
            user_id=user_id,
            tenant_id=tenant_id,
            role=role,
            email=f"{user_id}@acme.test",
            claims={"sub": user_id},
        )


@pytest.fixture
def auth() -> AuthState:
    state = AuthState(user=None)
    state.act_as()
    return state


@pytest.fixture
def app(auth, ledger, orchestrator, gateway, directory, tier_table):
    app = create_app()

    async def _current_user():
        return auth.user

    app.dependency_overrides[require_auth] = _current_user
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_discount_tier_service] = lambda: DiscountTierService(directory, tier_table)
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def active_license(make_license):
    """Factory for licenses that are active relative to the wall clock."""

    async def _make(**overrides):
        overrides.setdefault("expires_at", datetime.now(UTC) + timedelta(days=200))
        return await make_license(**overrides)

    return _make
