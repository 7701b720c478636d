from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class NotificationDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    text: str
    agent_id: str | None = None
    session_id: str | None = None
    timestamp: datetime | None = None


class Notifier(Protocol):
    async def start(self) -> None: ...

    async def send(self, message: NotificationMessage) -> None: ...

    async def stop(self) -> None: ...
