"""In-memory stores.

Deterministic test doubles implementing the store protocols. Reads yield to
the event loop the way a real driver round-trip would, so interleavings
between concurrent coroutines are exercised; every mutation runs under one
``asyncio.Lock`` which plays the role of the database transaction.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime

from tenant_licensing.core.exceptions import AlreadyAssignedError
from tenant_licensing.domain.licenses import (
    AssignmentRecord,
    CourseRecord,
    LicenseRecord,
    LicenseStatus,
    TenantRecord,
)


_EPOCH = datetime.min.replace(tzinfo=UTC)


class InMemoryLicenseStore:
    """License + assignment rows held in dicts."""

    def __init__(self) -> None:
        self._licenses: dict[str, LicenseRecord] = {}
        # (license_id, user_id) -> assignment
        self._assignments: dict[tuple[str, str], AssignmentRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: LicenseRecord) -> LicenseRecord:
        async with self._lock:
            self._licenses[record.id] = record
            return record

    async def get(self, license_id: str, tenant_id: str | None = None) -> LicenseRecord | None:
        await asyncio.sleep(0)
        record = self._licenses.get(license_id)
        if record is None or (tenant_id is not None and record.tenant_id != tenant_id):
            return None
        return record

    async def find_by_checkout_session(self, session_id: str) -> LicenseRecord | None:
        await asyncio.sleep(0)
        return next(
            (r for r in self._licenses.values() if r.stripe_checkout_session_id == session_id),
            None,
        )

    async def find_by_payment_intent(self, payment_intent_id: str) -> LicenseRecord | None:
        await asyncio.sleep(0)
        return next(
            (r for r in self._licenses.values() if r.stripe_payment_intent_id == payment_intent_id),
            None,
        )

    async def find_active(self, tenant_id: str, course_id: str, now: datetime) -> LicenseRecord | None:
        await asyncio.sleep(0)
        return next(
            (
                r
                for r in self._licenses.values()
                if r.tenant_id == tenant_id and r.course_id == course_id and r.is_active(now)
            ),
            None,
        )

    async def list_for_tenant(
        self,
        tenant_id: str,
        statuses: Sequence[LicenseStatus] | None,
        limit: int,
        offset: int,
    ) -> tuple[list[LicenseRecord], int]:
        await asyncio.sleep(0)
        rows = [
            r
            for r in self._licenses.values()
            if r.tenant_id == tenant_id and (not statuses or r.status in statuses)
        ]
        rows.sort(key=lambda r: r.created_at or _EPOCH, reverse=True)
        return rows[offset : offset + limit], len(rows)

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
        async with self._lock:
            record = self._licenses.get(license_id)
            if record is None or record.status not in statuses:
                return None
            if any(getattr(record, key) != value for key, value in (expected or {}).items()):
                return None
            updated = replace(record, **fields)
            self._licenses[license_id] = updated
            return updated

    async def assign_seat(
        self,
        license_id: str,
        user_id: str,
        assigned_by_id: str,
        now: datetime,
    ) -> AssignmentRecord | None:
        async with self._lock:
            record = self._licenses.get(license_id)
            if (
                record is None
                or not record.is_active(now)
                or record.seats_total is None
                or record.seats_used >= record.seats_total
            ):
                return None
            if (license_id, user_id) in self._assignments:
                raise AlreadyAssignedError(license_id, user_id)

            assignment = AssignmentRecord(
                id=str(uuid.uuid4()),
                license_id=license_id,
                user_id=user_id,
                assigned_by_id=assigned_by_id,
                assigned_at=now,
            )
            self._assignments[(license_id, user_id)] = assignment
            self._licenses[license_id] = replace(record, seats_used=record.seats_used + 1)
            return assignment

    async def release_seat(self, license_id: str, user_id: str) -> bool:
        async with self._lock:
            if self._assignments.pop((license_id, user_id), None) is None:
                return False
            record = self._licenses[license_id]
            self._licenses[license_id] = replace(record, seats_used=max(record.seats_used - 1, 0))
            return True

    async def refund_and_release(
        self,
        license_id: str,
        from_statuses: Sequence[LicenseStatus],
        **fields,
    ) -> LicenseRecord | None:
        async with self._lock:
            record = self._licenses.get(license_id)
            if record is None or record.status not in from_statuses:
                return None
            for key in [k for k in self._assignments if k[0] == license_id]:
                del self._assignments[key]
            updated = replace(record, status=LicenseStatus.REFUNDED, seats_used=0, **fields)
            self._licenses[license_id] = updated
            return updated

    async def get_assignment(self, license_id: str, user_id: str) -> AssignmentRecord | None:
        await asyncio.sleep(0)
        return self._assignments.get((license_id, user_id))

    async def list_assignments(self, license_id: str) -> list[AssignmentRecord]:
        await asyncio.sleep(0)
        rows = [a for (lid, _), a in self._assignments.items() if lid == license_id]
        return sorted(rows, key=lambda a: a.assigned_at)

    async def find_assigned_license(
        self, tenant_id: str, course_id: str, user_id: str, now: datetime
    ) -> LicenseRecord | None:
        await asyncio.sleep(0)
        for record in self._licenses.values():
            if (
                record.tenant_id == tenant_id
                and record.course_id == course_id
                and record.is_active(now)
                and (record.id, user_id) in self._assignments
            ):
                return record
        return None

    async def expire_due(self, now: datetime) -> list[LicenseRecord]:
        async with self._lock:
            expired = []
            for license_id, record in list(self._licenses.items()):
                if (
                    record.status is LicenseStatus.COMPLETED
                    and record.expires_at is not None
                    and record.expires_at <= now
                ):
                    updated = replace(record, status=LicenseStatus.EXPIRED)
                    self._licenses[license_id] = updated
                    expired.append(updated)
            return expired

    async def find_expiring_between(
        self, status: LicenseStatus, start: datetime, end: datetime
    ) -> list[LicenseRecord]:
        await asyncio.sleep(0)
        return [
            r
            for r in self._licenses.values()
            if r.status is status and r.expires_at is not None and start <= r.expires_at <= end
        ]


class InMemoryTenantDirectory:
    """Tenants, courses and members held in dicts."""

    def __init__(
        self,
        tenants: Sequence[TenantRecord] = (),
        courses: Sequence[CourseRecord] = (),
        members: Sequence[tuple[str, str]] = (),
    ) -> None:
        self.tenants: dict[str, TenantRecord] = {t.id: t for t in tenants}
        self.courses: dict[str, CourseRecord] = {c.id: c for c in courses}
        self.members: set[tuple[str, str]] = set(members)

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        return self.tenants.get(tenant_id)

    async def get_course(self, course_id: str) -> CourseRecord | None:
        return self.courses.get(course_id)

    async def is_member(self, tenant_id: str, user_id: str) -> bool:
        return (tenant_id, user_id) in self.members

    async def claim_customer_id(self, tenant_id: str, customer_id: str) -> str:
        tenant = self.tenants[tenant_id]
        if tenant.stripe_customer_id:
            return tenant.stripe_customer_id
        self.tenants[tenant_id] = replace(tenant, stripe_customer_id=customer_id)
        return customer_id

    async def save_settings(self, tenant_id: str, settings: dict) -> TenantRecord | None:
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            return None
        updated = replace(tenant, settings=dict(settings))
        self.tenants[tenant_id] = updated
        return updated


class InMemoryWebhookEventRegistry:
    def __init__(self) -> None:
        self.claimed: dict[str, str | None] = {}

    async def claim(self, event_id: str, event_type: str | None = None) -> bool:
        if event_id in self.claimed:
            return False
        self.claimed[event_id] = event_type
        return True
