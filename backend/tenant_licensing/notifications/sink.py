"""Notification delivery for license lifecycle events.

Delivery is fire-and-forget: ``notify_safely`` logs failures and never
raises into the license flow that triggered it.
"""

from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

LICENSE_ACTIVATED = "license_activated"
LICENSE_REFUNDED = "license_refunded"
LICENSE_RENEWED = "license_renewed"
LICENSE_SEAT_ASSIGNED = "license_seat_assigned"
LICENSE_SEAT_UNASSIGNED = "license_seat_unassigned"
LICENSE_EXPIRING_SOON = "license_expiring_soon"
LICENSE_EXPIRED = "license_expired"


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(self, user_id: str, event_type: str, payload: dict) -> None:
        ...


class LogNotificationSink:
    """Writes notifications to the structured log."""

    async def notify(self, user_id: str, event_type: str, payload: dict) -> None:
        logger.info("notification", user_id=user_id, event_type=event_type, **payload)


class RecordingNotificationSink:
    """Keeps every notification in memory. Used in tests."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, user_id: str, event_type: str, payload: dict) -> None:
        self.sent.append((user_id, event_type, payload))

    def of_type(self, event_type: str) -> list[tuple[str, str, dict]]:
        return [n for n in self.sent if n[1] == event_type]


async def notify_safely(sink: NotificationSink, user_id: str, event_type: str, payload: dict) -> None:
    try:
        await sink.notify(user_id, event_type, payload)
    except Exception as exc:
        logger.warning("notification_failed", user_id=user_id, event_type=event_type, error=str(exc))
