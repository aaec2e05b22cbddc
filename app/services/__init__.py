# app/services/__init__.py
from .diagnosis_session import DiagnosisService, db_session, init_db
from .notifications import (
    LoggingNotificationSink,
    NotificationEvent,
    NotificationSink,
)
from .report_gating import ReportGate

__all__ = [
    "DiagnosisService",
    "db_session",
    "init_db",
    "LoggingNotificationSink",
    "NotificationEvent",
    "NotificationSink",
    "ReportGate",
]
