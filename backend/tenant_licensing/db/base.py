"""Declarative base and async engine for the licensing tables.

Tables: tenants, tenant_members, courses, tenant_course_licenses,
tenant_course_license_assignments and stripe_webhook_events. Stores take the
session factory from ``get_session_factory()``; tests build their own over
aiosqlite.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from tenant_licensing.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(url: str | None = None, create_tables: bool = True) -> None:
    """Open the licensing database.

    Alembic owns the schema in production; ``create_tables`` only fills in
    missing tables for local runs against a fresh database.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    _engine = create_async_engine(url or settings.database_url, echo=settings.debug, pool_pre_ping=True)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if not create_tables:
        return

    # License, tenant, course and webhook models register on Base.metadata
    import tenant_licensing.db.models  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for ``SqlAlchemyLicenseStore`` and friends.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Licensing database not initialized. Call init_db() first.")
    return _session_factory
