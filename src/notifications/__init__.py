"""Notification and audit sinks with their fire-and-forget wrappers."""

from .audit import AuditSink, AuditTrail, RecordingAuditSink, StoreAuditSink
from .notifier import (
    NotificationSink,
    Notifier,
    RecordingNotificationSink,
    StoreNotificationSink,
)

__all__ = [
    "AuditSink",
    "AuditTrail",
    "NotificationSink",
    "Notifier",
    "RecordingAuditSink",
    "RecordingNotificationSink",
    "StoreAuditSink",
    "StoreNotificationSink",
]
