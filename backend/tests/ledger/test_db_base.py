"""Tests for licensing database initialization."""

import pytest
from sqlalchemy import inspect

from tenant_licensing.db import base

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
async def reset_engine():
    yield
    await base.close_db()


async def test_session_factory_requires_init():
    with pytest.raises(RuntimeError, match="not initialized"):
        base.get_session_factory()


async def test_init_db_creates_licensing_tables():
    await base.init_db("sqlite+aiosqlite:///:memory:")

    async with base._engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))

    assert {
        "tenants",
        "tenant_members",
        "courses",
        "tenant_course_licenses",
        "tenant_course_license_assignments",
        "stripe_webhook_events",
    } <= tables
    assert base.get_session_factory() is not None


async def test_init_db_without_create_tables():
    await base.init_db("sqlite+aiosqlite:///:memory:", create_tables=False)

    async with base._engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    assert tables == []


async def test_close_db_resets_factory():
    await base.init_db("sqlite+aiosqlite:///:memory:", create_tables=False)
    await base.close_db()

    with pytest.raises(RuntimeError):
        base.get_session_factory()
