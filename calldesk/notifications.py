"""In-memory notification log with unread tracking."""

import logging
from collections import deque
from typing import Optional
from uuid import UUID

from .events import EventBus
from .models import NotificationEvent, NotificationKind

logger = logging.getLogger(__name__)


class NotificationNotFoundError(KeyError):
    """Notification not found."""
    pass


def format_duration(seconds: Optional[float]) -> str:
    """Format a call duration as M:SS (H:MM:SS past an hour)."""
    if seconds is None:
        return "Unknown duration"
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class NotificationSink:
    """
    Append-only log of user-visible events.

    Only the newest ``max_notifications`` entries are kept. Every append is
    published on the event bus as a ``notification`` event.
    """

    def __init__(self, bus: Optional[EventBus] = None, max_notifications: int = 200):
        self._bus = bus
        self._items: deque[NotificationEvent] = deque(maxlen=max_notifications)

    def add(self, kind: NotificationKind, title: str, body: str = "") -> NotificationEvent:
        notification = NotificationEvent(kind=kind, title=title, body=body)
        self._items.append(notification)
        logger.info(f"[{kind.value}] {title}: {body}")
        if self._bus:
            self._bus.publish(
                "notification",
                notification=notification.model_dump(mode="json"),
                unread_count=self.unread_count,
            )
        return notification

    def info(self, title: str, body: str = "") -> NotificationEvent:
        return self.add(NotificationKind.INFO, title, body)

    def success(self, title: str, body: str = "") -> NotificationEvent:
        return self.add(NotificationKind.SUCCESS, title, body)

    def error(self, title: str, body: str = "") -> NotificationEvent:
        return self.add(NotificationKind.ERROR, title, body)

    # Call helpers

    def call_initiating(self, label: str) -> NotificationEvent:
        return self.info("Initiating Call", f"Calling {label}...")

    def call_connected(self, label: str) -> NotificationEvent:
        return self.success("Call Connected", f"Connected to {label}")

    def call_failed(self, label: str, reason: str) -> NotificationEvent:
        return self.error("Call Failed", f"Call to {label} failed: {reason}")

    def call_ended(self, label: str, duration: Optional[float] = None) -> NotificationEvent:
        return self.info("Call Ended", f"Call with {label} ended ({format_duration(duration)})")

    def end_call_failed(self, label: str, reason: str) -> NotificationEvent:
        return self.error("End Call Failed", f"Failed to end call with {label}: {reason}")

    def incoming_call(self, label: str) -> NotificationEvent:
        return self.info("Incoming Call", f"{label} is calling")

    def missed_call(self, label: str) -> NotificationEvent:
        return self.info("Missed Call", f"Missed call from {label}")

    def call_rejected_busy(self, label: str) -> NotificationEvent:
        return self.info("Call Rejected", f"{label} called while you were busy")

    # Reading

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def list_notifications(self, limit: int = 50, unread_only: bool = False) -> list[NotificationEvent]:
        """Newest first."""
        items = [n for n in reversed(self._items) if not (unread_only and n.read)]
        return [n.model_copy() for n in items[:limit]]

    def mark_read(self, notification_id: UUID) -> NotificationEvent:
        for notification in self._items:
            if notification.id == notification_id:
                notification.read = True
                return notification.model_copy()
        raise NotificationNotFoundError(f"Notification not found: {notification_id}")

    def mark_all_read(self) -> int:
        count = 0
        for notification in self._items:
            if not notification.read:
                notification.read = True
                count += 1
        return count

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
