"""Notification delivery for tasksync events."""

from .base import LoggingNotifier, NotificationKind, Notifier
from .mqtt import MQTTNotifier

__all__ = ["Notifier", "NotificationKind", "LoggingNotifier", "MQTTNotifier"]
