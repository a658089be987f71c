"""Persistence protocols for the license ledger.

The ledger never touches ORM objects. Stores take and return the plain
records from ``tenant_licensing.domain.licenses`` so the lifecycle rules stay
independent of the persistence technology.

Implementations:
- ``SqlAlchemyLicenseStore`` / ``SqlAlchemyTenantDirectory``: production
- ``InMemoryLicenseStore`` / ``InMemoryTenantDirectory``: deterministic test doubles
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from tenant_licensing.domain.licenses import (
    AssignmentRecord,
    CourseRecord,
    LicenseRecord,
    LicenseStatus,
    TenantRecord,
)


@runtime_checkable
class LicenseStore(Protocol):
    """License and assignment rows. Every mutating call is one atomic unit."""

    async def create(self, record: LicenseRecord) -> LicenseRecord:
        """Insert a new license row (id already assigned)."""
        ...

    async def get(self, license_id: str, tenant_id: str | None = None) -> LicenseRecord | None:
        """Fetch by id, optionally scoped to a tenant."""
        ...

    async def find_by_checkout_session(self, session_id: str) -> LicenseRecord | None:
        ...

    async def find_by_payment_intent(self, payment_intent_id: str) -> LicenseRecord | None:
        ...

    async def find_active(self, tenant_id: str, course_id: str, now: datetime) -> LicenseRecord | None:
        """COMPLETED license for (tenant, course) with ``expires_at`` unset or in the future."""
        ...

    async def list_for_tenant(
        self,
        tenant_id: str,
        statuses: Sequence[LicenseStatus] | None,
        limit: int,
        offset: int,
    ) -> tuple[list[LicenseRecord], int]:
        """Newest first. Returns (page, total count)."""
        ...

    async def transition(
        self,
        license_id: str,
        from_statuses: Sequence[LicenseStatus],
        to_status: LicenseStatus,
        **fields,
    ) -> LicenseRecord | None:
        """Compare-and-set the status (plus ``fields``).

        Returns the updated record, or None when the current status is not in
        ``from_statuses``.
        """
        ...

    async def update_if_status(
        self,
        license_id: str,
        statuses: Sequence[LicenseStatus],
        expected: dict | None = None,
        **fields,
    ) -> LicenseRecord | None:
        """Update ``fields`` only while the status is in ``statuses``.

        ``expected`` adds column == value guards (optimistic concurrency, e.g.
        on ``renewal_count``).
        """
        ...

    async def assign_seat(
        self,
        license_id: str,
        user_id: str,
        assigned_by_id: str,
        now: datetime,
    ) -> AssignmentRecord | None:
        """Insert the assignment and increment ``seats_used`` in one transaction.

        The increment is conditional on ``status == completed``, ``expires_at``
        unset or after ``now``, and ``seats_used < seats_total``. Returns None when that condition fails.

        Raises:
            AlreadyAssignedError: (license, user) assignment already exists
        """
        ...

    async def release_seat(self, license_id: str, user_id: str) -> bool:
        """Delete the assignment and decrement ``seats_used`` in one transaction.

        Returns False when no assignment existed.
        """
        ...

    async def refund_and_release(
        self,
        license_id: str,
        from_statuses: Sequence[LicenseStatus],
        **fields,
    ) -> LicenseRecord | None:
        """Flip to REFUNDED, delete every assignment, zero ``seats_used``.

        Returns None when the current status is not in ``from_statuses``.
        """
        ...

    async def get_assignment(self, license_id: str, user_id: str) -> AssignmentRecord | None:
        ...

    async def list_assignments(self, license_id: str) -> list[AssignmentRecord]:
        ...

    async def find_assigned_license(
        self, tenant_id: str, course_id: str, user_id: str, now: datetime
    ) -> LicenseRecord | None:
        """Active seats license for (tenant, course) holding an assignment for ``user_id``."""
        ...

    async def expire_due(self, now: datetime) -> list[LicenseRecord]:
        """Flip COMPLETED licenses with ``expires_at <= now`` to EXPIRED. Returns them."""
        ...

    async def find_expiring_between(
        self, status: LicenseStatus, start: datetime, end: datetime
    ) -> list[LicenseRecord]:
        ...


@runtime_checkable
class TenantDirectory(Protocol):
    """Read access to tenants, courses and membership, plus the two tenant writes the core needs."""

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        ...

    async def get_course(self, course_id: str) -> CourseRecord | None:
        ...

    async def is_member(self, tenant_id: str, user_id: str) -> bool:
        ...

    async def claim_customer_id(self, tenant_id: str, customer_id: str) -> str:
        """Store ``customer_id`` unless one is already set. Returns the stored id."""
        ...

    async def save_settings(self, tenant_id: str, settings: dict) -> TenantRecord | None:
        ...


@runtime_checkable
class WebhookEventRegistry(Protocol):
    async def claim(self, event_id: str, event_type: str | None = None) -> bool:
        """Return True if the event is new (claimed), False if already seen."""
        ...
