"""Local notifier that prints messages to a terminal stream."""

from __future__ import annotations

import sys
from typing import TextIO

from ..logging import get_logger
from .base import NotificationMessage

logger = get_logger(__name__)

BOX_WIDTH = 60


def format_console_message(
    message: NotificationMessage, *, width: int = BOX_WIDTH
) -> str:
    header = (
        f"Notification from {message.agent_id}" if message.agent_id else "Notification"
    )
    if message.timestamp is not None:
        header = f"{header} at {message.timestamp.isoformat(timespec='seconds')}"
    box = "=" * width
    return f"{header}\n{box}\n{message.text}\n{box}\n"


class ConsoleNotifier:
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    async def start(self) -> None:
        logger.info("notifier.console.ready")

    async def send(self, message: NotificationMessage) -> None:
        stream = self._stream or sys.stdout
        try:
            stream.write(format_console_message(message))
            stream.flush()
        except (OSError, ValueError) as exc:
            # closed or broken stream; the local sink never fails its caller
            logger.error("notifier.console.write_failed", error=str(exc))
            return
        logger.info(
            "notifier.console.sent",
            agent_id=message.agent_id,
            session_id=message.session_id,
        )

    async def stop(self) -> None:
        logger.debug("notifier.console.stopped")
