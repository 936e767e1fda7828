"""
Notification contract for run outcomes.

Delivery (email, Slack) belongs to the caller; the pipeline only says what
happened.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from feedgate.core.models import Feed
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """Receives run-level events."""

    @abstractmethod
    def notify_run_failed(self, feed: Feed, error: str, consecutive_failures: int) -> None:
        pass

    @abstractmethod
    def notify_circuit_breaker_triggered(self, feed: Feed, reason: str, metrics: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def notify_feed_auto_disabled(self, feed: Feed, consecutive_failures: int, last_error: str | None) -> None:
        pass

    @abstractmethod
    def notify_feed_recovered(self, feed: Feed, stats: dict[str, Any]) -> None:
        pass


class LoggingNotifier(Notifier):
    """Emits each notification as a structured log event."""

    def notify_run_failed(self, feed: Feed, error: str, consecutive_failures: int) -> None:
        logger.error(
            f"Feed run failed: {feed.name or feed.id}",
            extra={
                "event": "run_failed",
                "feed_id": feed.id,
                "error_message": error,
                "consecutive_failures": consecutive_failures,
            },
        )

    def notify_circuit_breaker_triggered(self, feed: Feed, reason: str, metrics: dict[str, Any]) -> None:
        logger.warning(
            f"Circuit breaker triggered for {feed.name or feed.id}: {reason}",
            extra={"event": "circuit_breaker_triggered", "feed_id": feed.id, "reason": reason, "metrics": metrics},
        )

    def notify_feed_auto_disabled(self, feed: Feed, consecutive_failures: int, last_error: str | None) -> None:
        logger.critical(
            f"Feed auto-disabled after {consecutive_failures} consecutive failures: {feed.name or feed.id}",
            extra={
                "event": "feed_auto_disabled",
                "feed_id": feed.id,
                "consecutive_failures": consecutive_failures,
                "last_error": last_error,
            },
        )

    def notify_feed_recovered(self, feed: Feed, stats: dict[str, Any]) -> None:
        logger.info(
            f"Feed recovered: {feed.name or feed.id}",
            extra={"event": "feed_recovered", "feed_id": feed.id, "stats": stats},
        )


@dataclass
class Notification:
    kind: str
    feed_id: str
    details: dict[str, Any]
    sent_at: datetime = field(default_factory=datetime.utcnow)


class RecordingNotifier(Notifier):
    """Keeps notifications in memory; used by tests and dry tooling."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def kinds(self) -> list[str]:
        return [notification.kind for notification in self.sent]

    def notify_run_failed(self, feed: Feed, error: str, consecutive_failures: int) -> None:
        self.sent.append(Notification("run_failed", feed.id, {"error": error, "consecutive_failures": consecutive_failures}))

    def notify_circuit_breaker_triggered(self, feed: Feed, reason: str, metrics: dict[str, Any]) -> None:
        self.sent.append(Notification("circuit_breaker_triggered", feed.id, {"reason": reason, "metrics": metrics}))

    def notify_feed_auto_disabled(self, feed: Feed, consecutive_failures: int, last_error: str | None) -> None:
        self.sent.append(
            Notification("feed_auto_disabled", feed.id, {"consecutive_failures": consecutive_failures, "last_error": last_error})
        )

    def notify_feed_recovered(self, feed: Feed, stats: dict[str, Any]) -> None:
        self.sent.append(Notification("feed_recovered", feed.id, {"stats": stats}))


def deliver(notifier: Notifier, event: str, feed: Feed, *args: Any) -> bool:
    """
    Send one notification without letting a delivery failure reach the caller.

    Run and feed state are persisted before this is called, so a broken
    channel only costs the message. The failure is logged and counted.

    Returns:
        True if the notifier accepted the event
    """
    try:
        getattr(notifier, f"notify_{event}")(feed, *args)
    except Exception as e:
        metrics.increment_counter(metrics.notification_failures_total, event=event)
        logger.error(
            f"Notification {event} failed for feed {feed.id}: {e}",
            extra={"event": event, "feed_id": feed.id, "error_type": type(e).__name__},
            exc_info=True,
        )
        return False
    return True
