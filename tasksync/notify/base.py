"""Notifier boundary: the core reports events, delivery is pluggable."""

import logging
from abc import ABC, abstractmethod
from enum import Enum

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    """High-level events the core reports."""

    OFFLINE = "offline"
    ONLINE = "online"
    TASK_ADDED = "task-added"
    TASK_UPDATED = "task-updated"
    TASK_DELETED = "task-deleted"
    SYNC_COMPLETED = "sync-completed"


class Notifier(ABC):
    """Receives events from the core and delivers them to the user."""

    @abstractmethod
    async def notify(self, kind: NotificationKind, message: str) -> None:
        """Deliver a notification.

        Implementations must not raise; delivery failures are logged.
        """
        pass

    async def close(self) -> None:
        """Release delivery resources."""


class LoggingNotifier(Notifier):
    """Notifier that writes events to the log."""

    async def notify(self, kind: NotificationKind, message: str) -> None:
        logger.info(f"[{kind.value}] {message}")
