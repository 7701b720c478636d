from __future__ import annotations

from ..logging import get_logger
from ..settings import NotificationSettings
from .base import Notifier
from .console import ConsoleNotifier
from .telegram import TelegramNotifier

logger = get_logger(__name__)


def create_notifier(settings: NotificationSettings) -> Notifier:
    """Pick the notifier for ``settings``; falls back to the console, never raises."""
    telegram = settings.telegram
    if not telegram.enabled:
        logger.info("notifier.selected", notifier="console", reason="telegram disabled")
        return ConsoleNotifier()

    if not telegram.has_credentials:
        logger.warning(
            "notifier.telegram.missing_credentials",
            hint=(
                "set YMBOT_NOTIFICATIONS__TELEGRAM__BOT_TOKEN and "
                "YMBOT_NOTIFICATIONS__TELEGRAM__CHAT_ID"
            ),
        )
        return ConsoleNotifier()

    assert telegram.bot_token is not None
    assert telegram.chat_id is not None
    try:
        notifier = TelegramNotifier(
            bot_token=telegram.bot_token, chat_id=telegram.chat_id
        )
    except Exception as exc:
        logger.error("notifier.telegram.create_failed", error=str(exc))
        return ConsoleNotifier()

    logger.info("notifier.selected", notifier="telegram", chat_id=telegram.chat_id)
    return notifier


async def start_notifier(notifier: Notifier) -> Notifier:
    """Start ``notifier``; a failing remote notifier is swapped for the console."""
    try:
        await notifier.start()
    except Exception as exc:
        if isinstance(notifier, ConsoleNotifier):
            raise
        logger.error(
            "notifier.start_failed",
            notifier=type(notifier).__name__,
            error=str(exc),
        )
        fallback = ConsoleNotifier()
        await fallback.start()
        return fallback
    return notifier
