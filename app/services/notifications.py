# app/services/notifications.py
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class NotificationEvent(str, Enum):
    DIAGNOSIS_STARTED = "diagnosis_started"
    DIAGNOSIS_COMPLETED = "diagnosis_completed"
    DIAGNOSIS_APPROVED = "diagnosis_approved"
    ALL_REPORTS_READY = "all_reports_ready"


class NotificationSink(ABC):
    """
    Delivery side of notifications (push, email, in-app). Not owned here.
    """

    @abstractmethod
    def notify(
        self,
        event: NotificationEvent,
        recipient_id: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """
    Default sink: records the notification in the application log.
    """

    def notify(
        self,
        event: NotificationEvent,
        recipient_id: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        logger.info(
            "notification",
            notification_event=event.value,
            recipient_id=recipient_id,
            **payload,
        )


def dispatch_notification(
    sink: NotificationSink,
    event: NotificationEvent,
    recipient_id: Optional[str],
    payload: Dict[str, Any],
) -> None:
    """
    Fire-and-forget: a failing sink is logged and never fails the caller.
    """
    try:
        sink.notify(event, recipient_id, payload)
    except Exception:
        logger.exception(
            "notification_failed",
            notification_event=event.value,
            recipient_id=recipient_id,
        )
