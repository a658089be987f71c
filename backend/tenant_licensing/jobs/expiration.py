"""License expiration sweep.

One pass:
  1. COMPLETED licenses past ``expires_at`` are persisted as EXPIRED
  2. ``license_expiring_soon`` goes to the purchaser of every license expiring
     on the UTC day ``now + N days`` for each configured warning day N
  3. ``license_expired`` goes to the purchaser of every license that expired
     within the last 24 hours

``run_expiration_loop`` runs the sweep as a background asyncio task from the
app lifespan. Failures are logged and the loop keeps going.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta

import structlog

from tenant_licensing.domain.licenses import LicenseRecord, LicenseStatus
from tenant_licensing.ledger.ledger import LicenseLedger
from tenant_licensing.notifications import sink as notifications
from tenant_licensing.notifications.sink import notify_safely

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    expired: int = 0
    warnings_sent: int = 0
    expired_notices_sent: int = 0


def _day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    day = moment.astimezone(UTC).date()
    start = datetime.combine(day, time.min, tzinfo=UTC)
    end = datetime.combine(day, time.max, tzinfo=UTC)
    return start, end


async def _course_title(ledger: LicenseLedger, record: LicenseRecord) -> str | None:
    course = await ledger.directory.get_course(record.course_id)
    return course.title if course else None


async def process_license_expirations(
    ledger: LicenseLedger,
    warning_days: Sequence[int] = (30, 7, 1),
    now: datetime | None = None,
) -> SweepResult:
    now = now or datetime.now(UTC)
    result = SweepResult()

    expired = await ledger.expire_due(now)
    result.expired = len(expired)
    if expired:
        logger.info("licenses_marked_expired", count=len(expired))

    for days in warning_days:
        start, end = _day_bounds(now + timedelta(days=days))
        expiring = await ledger.find_expiring_between(start, end)
        for record in expiring:
            await notify_safely(
                ledger.notifier,
                record.purchased_by_id,
                notifications.LICENSE_EXPIRING_SOON,
                {
                    "license_id": record.id,
                    "course_id": record.course_id,
                    "course_name": await _course_title(ledger, record),
                    "days_until_expiration": days,
                },
            )
        result.warnings_sent += len(expiring)
        if expiring:
            logger.info("license_expiration_warnings_sent", days=days, count=len(expiring))

    just_expired = await ledger.find_expiring_between(
        now - timedelta(days=1), now, statuses=(LicenseStatus.EXPIRED,)
    )
    for record in just_expired:
        await notify_safely(
            ledger.notifier,
            record.purchased_by_id,
            notifications.LICENSE_EXPIRED,
            {
                "license_id": record.id,
                "course_id": record.course_id,
                "course_name": await _course_title(ledger, record),
            },
        )
    result.expired_notices_sent = len(just_expired)

    logger.info(
        "license_expiration_sweep_complete",
        expired=result.expired,
        warnings_sent=result.warnings_sent,
        expired_notices_sent=result.expired_notices_sent,
    )
    return result


async def run_expiration_loop(
    ledger_factory: Callable[[], LicenseLedger],
    interval_seconds: float,
    warning_days: Sequence[int],
) -> None:
    """Sweep every ``interval_seconds`` until cancelled."""
    logger.info("license_expiration_loop_started", interval_seconds=interval_seconds)
    while True:
        try:
            await process_license_expirations(ledger_factory(), warning_days)
        except Exception:
            logger.exception("license_expiration_sweep_failed")
        await asyncio.sleep(interval_seconds)
