"""
User-Facing Notifications

The engine never renders anything. When the user must be told something
(a write was rolled back, a reminder is due, an import was rejected) it
hands a Notification to a Notifier. Delivery (toast, push, e-mail) belongs
to whoever implements the interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A single message for the user."""

    title: str
    message: str = ""
    level: NotificationLevel = NotificationLevel.INFO
    created_at: datetime = Field(default_factory=datetime.now)


class Notifier(ABC):
    """Sink for user-facing notifications."""

    @abstractmethod
    def notify(self, notification: Notification) -> None:
        pass


class LogNotifier(Notifier):
    """Writes notifications to the structured log. Default when no UI is attached."""

    def __init__(self):
        self._logger = structlog.get_logger("notifications")

    def notify(self, notification: Notification) -> None:
        self._logger.info(
            "notification",
            title=notification.title,
            message=notification.message,
            level=notification.level.value,
        )


class CollectingNotifier(Notifier):
    """Keeps every notification in memory, newest last."""

    def __init__(self):
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def titles(self) -> list[str]:
        return [n.title for n in self.notifications]
