"""Run-level notifications."""

from .notifier import LoggingNotifier, Notification, Notifier, RecordingNotifier, deliver

__all__ = ["LoggingNotifier", "Notification", "Notifier", "RecordingNotifier", "deliver"]
