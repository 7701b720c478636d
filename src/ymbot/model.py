"""Messages and options exchanged with the reasoning engine."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol

PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]


class EngineInvocationError(RuntimeError):
    """The engine call failed or reported an error result."""


@dataclass(frozen=True, slots=True)
class TextMessage:
    text: str
    session_id: str | None = None
    kind: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True, slots=True)
class ToolUseMessage:
    name: str
    session_id: str | None = None
    kind: Literal["tool_use"] = field(default="tool_use", init=False)


@dataclass(frozen=True, slots=True)
class FinalMessage:
    text: str
    session_id: str | None = None
    is_error: bool = False
    usage: dict[str, Any] | None = None
    kind: Literal["final"] = field(default="final", init=False)


EngineMessage = TextMessage | ToolUseMessage | FinalMessage


@dataclass(frozen=True, slots=True)
class EngineOptions:
    cwd: Path
    allowed_tools: Sequence[str]
    resume: str | None = None
    permission_mode: PermissionMode = "acceptEdits"


class Engine(Protocol):
    def run(
        self, prompt: str, options: EngineOptions
    ) -> AsyncIterator[EngineMessage]: ...
