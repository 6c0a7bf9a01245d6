"""Batch completion notifications (fire-and-forget)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchNotification:
    """Summary of a finished batch."""

    batch_id: UUID
    pay_period: str
    status: str
    total_employees: int
    successful_employees: int
    failed_employees: int
    error_count: int
    created_by: str | None = None


class NotificationSink(Protocol):
    """Receives batch completion notifications."""

    async def batch_finished(self, notification: BatchNotification) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes the notification to the application log."""

    async def batch_finished(self, notification: BatchNotification) -> None:
        logger.info(
            "Bulk payroll batch %s for %s finished with status %s "
            "(%d/%d successful, %d failed, %d errors)",
            notification.batch_id,
            notification.pay_period,
            notification.status,
            notification.successful_employees,
            notification.total_employees,
            notification.failed_employees,
            notification.error_count,
        )


async def notify_safely(sink: NotificationSink, notification: BatchNotification) -> None:
    """Deliver a notification; sink failures are logged and never propagate."""
    try:
        await sink.batch_finished(notification)
    except Exception:
        logger.exception("Notification sink failed for batch %s", notification.batch_id)
