"""SQLAlchemy implementations of the ledger store protocols.

Capacity and state checks are expressed as conditional ``UPDATE ... WHERE``
statements so two concurrent writers can never both pass them; each mutating
method runs in a single transaction.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_licensing.core.exceptions import AlreadyAssignedError
from tenant_licensing.db.models.course import Course
from tenant_licensing.db.models.license import LicenseAssignment, TenantCourseLicense
from tenant_licensing.db.models.stripe_event import StripeWebhookEvent
from tenant_licensing.db.models.tenant import Tenant, TenantMember
from tenant_licensing.domain.licenses import (
    AssignmentRecord,
    CourseRecord,
    LicenseRecord,
    LicenseStatus,
    TenantRecord,
)
from tenant_licensing.domain.pricing import LicenseType

logger = structlog.get_logger(__name__)


def _uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _column_values(fields: dict) -> dict:
    values = {}
    for key, value in fields.items():
        values[key] = value.value if isinstance(value, Enum) else value
    return values


def _license_record(row: TenantCourseLicense) -> LicenseRecord:
    return LicenseRecord(
        id=str(row.id),
        tenant_id=str(row.tenant_id),
        course_id=str(row.course_id),
        purchased_by_id=row.purchased_by_id,
        license_type=LicenseType(row.license_type),
        seats_total=row.seats_total,
        seats_used=row.seats_used,
        amount=Decimal(row.amount),
        currency=row.currency,
        status=LicenseStatus(row.status),
        stripe_checkout_session_id=row.stripe_checkout_session_id,
        stripe_payment_intent_id=row.stripe_payment_intent_id,
        stripe_invoice_id=row.stripe_invoice_id,
        purchased_at=_as_utc(row.purchased_at),
        expires_at=_as_utc(row.expires_at),
        renewed_at=_as_utc(row.renewed_at),
        renewal_count=row.renewal_count,
        last_renewal_session_id=row.last_renewal_session_id,
        stripe_refund_id=row.stripe_refund_id,
        refunded_at=_as_utc(row.refunded_at),
        refund_reason=row.refund_reason,
        refund_amount=Decimal(row.refund_amount) if row.refund_amount is not None else None,
        is_partial_refund=row.is_partial_refund,
        created_at=_as_utc(row.created_at),
    )


def _assignment_record(row: LicenseAssignment) -> AssignmentRecord:
    return AssignmentRecord(
        id=str(row.id),
        license_id=str(row.license_id),
        user_id=row.user_id,
        assigned_by_id=row.assigned_by_id,
        assigned_at=_as_utc(row.assigned_at),
    )


def _active_clause(now: datetime):
    return (
        TenantCourseLicense.status == LicenseStatus.COMPLETED.value,
        or_(TenantCourseLicense.expires_at.is_(None), TenantCourseLicense.expires_at > now),
    )


class SqlAlchemyLicenseStore:
    """LicenseStore backed by the ``tenant_course_licenses`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, record: LicenseRecord) -> LicenseRecord:
        async with self.session_factory() as session:
            row = TenantCourseLicense(
                id=_uuid(record.id),
                tenant_id=_uuid(record.tenant_id),
                course_id=_uuid(record.course_id),
                purchased_by_id=record.purchased_by_id,
                license_type=record.license_type.value,
                seats_total=record.seats_total,
                seats_used=record.seats_used,
                amount=record.amount,
                currency=record.currency,
                status=record.status.value,
                stripe_checkout_session_id=record.stripe_checkout_session_id,
                stripe_payment_intent_id=record.stripe_payment_intent_id,
                stripe_invoice_id=record.stripe_invoice_id,
                purchased_at=record.purchased_at,
                expires_at=record.expires_at,
                renewed_at=record.renewed_at,
                renewal_count=record.renewal_count,
                last_renewal_session_id=record.last_renewal_session_id,
                created_at=record.created_at or datetime.now(UTC),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _license_record(row)

    async def _fetch_one(self, *criteria) -> LicenseRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(select(TenantCourseLicense).where(*criteria).limit(1))
            row = result.scalar_one_or_none()
            return _license_record(row) if row is not None else None

    async def get(self, license_id: str, tenant_id: str | None = None) -> LicenseRecord | None:
        lid = _uuid(license_id)
        if lid is None:
            return None
        criteria = [TenantCourseLicense.id == lid]
        if tenant_id is not None:
            tid = _uuid(tenant_id)
            if tid is None:
                return None
            criteria.append(TenantCourseLicense.tenant_id == tid)
        return await self._fetch_one(*criteria)

    async def find_by_checkout_session(self, session_id: str) -> LicenseRecord | None:
        return await self._fetch_one(TenantCourseLicense.stripe_checkout_session_id == session_id)

    async def find_by_payment_intent(self, payment_intent_id: str) -> LicenseRecord | None:
        return await self._fetch_one(TenantCourseLicense.stripe_payment_intent_id == payment_intent_id)

    async def find_active(self, tenant_id: str, course_id: str, now: datetime) -> LicenseRecord | None:
        tid, cid = _uuid(tenant_id), _uuid(course_id)
        if tid is None or cid is None:
            return None
        return await self._fetch_one(
            TenantCourseLicense.tenant_id == tid,
            TenantCourseLicense.course_id == cid,
            *_active_clause(now),
        )

    async def list_for_tenant(
        self,
        tenant_id: str,
        statuses: Sequence[LicenseStatus] | None,
        limit: int,
        offset: int,
    ) -> tuple[list[LicenseRecord], int]:
        tid = _uuid(tenant_id)
        if tid is None:
            return [], 0
        criteria = [TenantCourseLicense.tenant_id == tid]
        if statuses:
            criteria.append(TenantCourseLicense.status.in_([s.value for s in statuses]))

        async with self.session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(TenantCourseLicense).where(*criteria))
            ).scalar_one()
            result = await session.execute(
                select(TenantCourseLicense)
                .where(*criteria)
                .order_by(TenantCourseLicense.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_license_record(row) for row in result.scalars()], total

    async def transition(
        self,
        license_id: str,
        from_statuses: Sequence[LicenseStatus],
        to_status: LicenseStatus,
        **fields,
    ) -> LicenseRecord | None:
        return await self.update_if_status(license_id, from_statuses, status=to_status, **fields)

    async def update_if_status(
        self,
        license_id: str,
        statuses: Sequence[LicenseStatus],
        expected: dict | None = None,
        **fields,
    ) -> LicenseRecord | None:
        lid = _uuid(license_id)
        if lid is None:
            return None
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TenantCourseLicense)
                    .where(
                        TenantCourseLicense.id == lid,
                        TenantCourseLicense.status.in_([s.value for s in statuses]),
                        *(getattr(TenantCourseLicense, key) == value for key, value in (expected or {}).items()),
                    )
                    .values(**_column_values(fields), updated_at=datetime.now(UTC))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None
        return await self.get(license_id)

    async def assign_seat(
        self,
        license_id: str,
        user_id: str,
        assigned_by_id: str,
        now: datetime,
    ) -> AssignmentRecord | None:
        lid = _uuid(license_id)
        if lid is None:
            return None
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        update(TenantCourseLicense)
                        .where(
                            TenantCourseLicense.id == lid,
                            TenantCourseLicense.status == LicenseStatus.COMPLETED.value,
                            or_(TenantCourseLicense.expires_at.is_(None), TenantCourseLicense.expires_at > now),
                            TenantCourseLicense.seats_total.is_not(None),
                            TenantCourseLicense.seats_used < TenantCourseLicense.seats_total,
                        )
                        .values(seats_used=TenantCourseLicense.seats_used + 1)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        return None

                    row = LicenseAssignment(
                        id=uuid.uuid4(),
                        license_id=lid,
                        user_id=user_id,
                        assigned_by_id=assigned_by_id,
                        assigned_at=now,
                    )
                    session.add(row)
                    await session.flush()
                    record = _assignment_record(row)
            except IntegrityError as exc:
                # Unique (license_id, user_id): the increment rolled back with the insert
                raise AlreadyAssignedError(license_id, user_id) from exc
        return record

    async def release_seat(self, license_id: str, user_id: str) -> bool:
        lid = _uuid(license_id)
        if lid is None:
            return False
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(LicenseAssignment).where(
                        LicenseAssignment.license_id == lid,
                        LicenseAssignment.user_id == user_id,
                    )
                )
                if result.rowcount == 0:
                    return False
                await session.execute(
                    update(TenantCourseLicense)
                    .where(TenantCourseLicense.id == lid, TenantCourseLicense.seats_used > 0)
                    .values(seats_used=TenantCourseLicense.seats_used - 1)
                    .execution_options(synchronize_session=False)
                )
        return True

    async def refund_and_release(
        self,
        license_id: str,
        from_statuses: Sequence[LicenseStatus],
        **fields,
    ) -> LicenseRecord | None:
        lid = _uuid(license_id)
        if lid is None:
            return None
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TenantCourseLicense)
                    .where(
                        TenantCourseLicense.id == lid,
                        TenantCourseLicense.status.in_([s.value for s in from_statuses]),
                    )
                    .values(
                        status=LicenseStatus.REFUNDED.value,
                        seats_used=0,
                        updated_at=datetime.now(UTC),
                        **_column_values(fields),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None
                await session.execute(delete(LicenseAssignment).where(LicenseAssignment.license_id == lid))
        return await self.get(license_id)

    async def get_assignment(self, license_id: str, user_id: str) -> AssignmentRecord | None:
        lid = _uuid(license_id)
        if lid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(LicenseAssignment).where(
                    LicenseAssignment.license_id == lid,
                    LicenseAssignment.user_id == user_id,
                )
            )
            row = result.scalar_one_or_none()
            return _assignment_record(row) if row is not None else None

    async def list_assignments(self, license_id: str) -> list[AssignmentRecord]:
        lid = _uuid(license_id)
        if lid is None:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(LicenseAssignment)
                .where(LicenseAssignment.license_id == lid)
                .order_by(LicenseAssignment.assigned_at)
            )
            return [_assignment_record(row) for row in result.scalars()]

    async def find_assigned_license(
        self, tenant_id: str, course_id: str, user_id: str, now: datetime
    ) -> LicenseRecord | None:
        tid, cid = _uuid(tenant_id), _uuid(course_id)
        if tid is None or cid is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(
                select(TenantCourseLicense)
                .join(LicenseAssignment, LicenseAssignment.license_id == TenantCourseLicense.id)
                .where(
                    TenantCourseLicense.tenant_id == tid,
                    TenantCourseLicense.course_id == cid,
                    LicenseAssignment.user_id == user_id,
                    *_active_clause(now),
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _license_record(row) if row is not None else None

    async def expire_due(self, now: datetime) -> list[LicenseRecord]:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TenantCourseLicense)
                    .where(
                        TenantCourseLicense.status == LicenseStatus.COMPLETED.value,
                        TenantCourseLicense.expires_at.is_not(None),
                        TenantCourseLicense.expires_at <= now,
                    )
                    .values(status=LicenseStatus.EXPIRED.value, updated_at=now)
                    .returning(TenantCourseLicense.id)
                    .execution_options(synchronize_session=False)
                )
                expired_ids = [row[0] for row in result.all()]
            if not expired_ids:
                return []
            rows = await session.execute(
                select(TenantCourseLicense).where(TenantCourseLicense.id.in_(expired_ids))
            )
            return [_license_record(row) for row in rows.scalars()]

    async def find_expiring_between(
        self, status: LicenseStatus, start: datetime, end: datetime
    ) -> list[LicenseRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TenantCourseLicense).where(
                    TenantCourseLicense.status == status.value,
                    TenantCourseLicense.expires_at.between(start, end),
                )
            )
            return [_license_record(row) for row in result.scalars()]


def _tenant_record(row: Tenant) -> TenantRecord:
    return TenantRecord(
        id=str(row.id),
        name=row.name,
        stripe_customer_id=row.stripe_customer_id,
        settings=dict(row.settings or {}),
    )


class SqlAlchemyTenantDirectory:
    """TenantDirectory backed by the tenants / courses / tenant_members tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        tid = _uuid(tenant_id)
        if tid is None:
            return None
        async with self.session_factory() as session:
            row = await session.get(Tenant, tid)
            return _tenant_record(row) if row is not None else None

    async def get_course(self, course_id: str) -> CourseRecord | None:
        cid = _uuid(course_id)
        if cid is None:
            return None
        async with self.session_factory() as session:
            row = await session.get(Course, cid)
            if row is None:
                return None
            return CourseRecord(
                id=str(row.id),
                title=row.title,
                slug=row.slug,
                price=Decimal(row.price),
                currency=row.currency,
                status=row.status,
                is_free=row.is_free,
            )

    async def is_member(self, tenant_id: str, user_id: str) -> bool:
        tid = _uuid(tenant_id)
        if tid is None:
            return False
        async with self.session_factory() as session:
            result = await session.execute(
                select(TenantMember.id).where(TenantMember.tenant_id == tid, TenantMember.user_id == user_id)
            )
            return result.first() is not None

    async def claim_customer_id(self, tenant_id: str, customer_id: str) -> str:
        tid = _uuid(tenant_id)
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    await session.execute(
                        update(Tenant)
                        .where(Tenant.id == tid, Tenant.stripe_customer_id.is_(None))
                        .values(stripe_customer_id=customer_id)
                        .execution_options(synchronize_session=False)
                    )
            except IntegrityError:
                logger.warning("stripe_customer_id_conflict", tenant_id=tenant_id, customer_id=customer_id)
            # A concurrent request may have set it first
            result = await session.execute(select(Tenant.stripe_customer_id).where(Tenant.id == tid))
            return result.scalar_one()

    async def save_settings(self, tenant_id: str, settings: dict) -> TenantRecord | None:
        tid = _uuid(tenant_id)
        if tid is None:
            return None
        async with self.session_factory() as session:
            row = await session.get(Tenant, tid)
            if row is None:
                return None
            row.settings = dict(settings)
            await session.commit()
            await session.refresh(row)
            return _tenant_record(row)


class SqlAlchemyWebhookEventRegistry:
    """Claims Stripe event ids in ``stripe_webhook_events``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def claim(self, event_id: str, event_type: str | None = None) -> bool:
        async with self.session_factory() as session:
            try:
                session.add(StripeWebhookEvent(event_id=event_id, event_type=event_type))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False
