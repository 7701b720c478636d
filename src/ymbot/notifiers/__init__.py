"""Notification channels: local console and Telegram."""

from .base import NotificationDeliveryError, NotificationMessage, Notifier
from .console import ConsoleNotifier
from .factory import create_notifier, start_notifier
from .telegram import TelegramNotifier

__all__ = [
    "ConsoleNotifier",
    "NotificationDeliveryError",
    "NotificationMessage",
    "Notifier",
    "TelegramNotifier",
    "create_notifier",
    "start_notifier",
]
