"""Execute one heartbeat for one agent via the reasoning engine."""

from __future__ import annotations

import os
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from ..logging import get_logger
from ..model import (
    Engine,
    EngineOptions,
    FinalMessage,
    PermissionMode,
    TextMessage,
    ToolUseMessage,
)
from ..runners.claude import ClaudeEngine
from ..settings import (
    DEFAULT_ACK_MAX_CHARS,
    DEFAULT_CHECKLIST_MAX_CHARS,
    YmbotSettings,
)
from .ack import (
    FINAL_RESPONSE_MARKER,
    HEARTBEAT_OK_TOKEN,
    classify_ack,
    extract_final_response,
)
from .state import AgentState

logger = get_logger(__name__)

CHECKLIST_FILENAME = "HEARTBEAT.md"
DEFAULT_ALLOWED_TOOLS: tuple[str, ...] = ("Read", "Bash", "Glob", "Grep", "Skill")
DEFAULT_PERMISSION_MODE: PermissionMode = "acceptEdits"

DEFAULT_PROMPT = (
    "Check whether anything needs my attention: notifications, updates, "
    "failing jobs, pending tasks. "
    f"If nothing needs attention, reply {HEARTBEAT_OK_TOKEN} and nothing else. "
    f"Otherwise put the message for me under a '{FINAL_RESPONSE_MARKER}' heading."
)

CHECKLIST_PROMPT = (
    f"Read the {CHECKLIST_FILENAME} checklist below and run the checks it lists. "
    f"If nothing needs attention, reply {HEARTBEAT_OK_TOKEN} and nothing else. "
    f"Otherwise put the message for me under a '{FINAL_RESPONSE_MARKER}' heading."
    "\n\n{checklist}"
)

ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_EMPTY_LINE_RE = re.compile(r"^(#+(\s.*)?|[-*+](\s+\[[ xX]?\])?)$")


def expand_env_vars(text: str) -> str:
    """Expand ${VAR} patterns in text using environment variables.

    Built-in variables:
    - ${TODAY} - Current date (YYYY-MM-DD)
    - ${NOW} - Current time (HH:MM)
    """
    now = datetime.now()
    builtins = {
        "TODAY": now.strftime("%Y-%m-%d"),
        "NOW": now.strftime("%H:%M"),
    }

    def replace(match: re.Match[str]) -> str:
        var = match.group(1)
        if var in builtins:
            return builtins[var]
        return os.environ.get(var, match.group(0))

    return ENV_VAR_RE.sub(replace, text)


def is_checklist_empty(text: str) -> bool:
    """True when the checklist holds only blanks, headings, comments or empty items."""
    text = _COMMENT_RE.sub("", text)
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if _EMPTY_LINE_RE.match(stripped):
            continue
        return False
    return True


def load_checklist(
    workspace: Path, *, max_chars: int = DEFAULT_CHECKLIST_MAX_CHARS
) -> str | None:
    """Read the workspace checklist, or None when there is none."""
    path = workspace / CHECKLIST_FILENAME
    if not path.is_file():
        return None
    text = path.read_text(encoding="utf-8")
    if len(text) > max_chars:
        logger.warning(
            "heartbeat.checklist.truncated",
            path=str(path),
            chars=len(text),
            max_chars=max_chars,
        )
        text = text[:max_chars] + "\n\n[checklist truncated]"
    return text


def build_prompt(checklist: str | None) -> str:
    if checklist is None:
        return DEFAULT_PROMPT
    return CHECKLIST_PROMPT.format(checklist=expand_env_vars(checklist))


@dataclass(slots=True)
class HeartbeatResult:
    """Result of a heartbeat execution."""

    ok: bool
    notify: bool
    answer: str
    session_id: str | None
    duration_ms: int = 0
    usage: dict[str, Any] | None = None
    error: str | None = None
    skipped: bool = False


class HeartbeatInvoker(Protocol):
    async def invoke(self, agent: AgentState) -> HeartbeatResult: ...


class HeartbeatExecutor:
    def __init__(
        self,
        engine: Engine,
        *,
        ack_max_chars: int = DEFAULT_ACK_MAX_CHARS,
        checklist_max_chars: int = DEFAULT_CHECKLIST_MAX_CHARS,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        permission_mode: PermissionMode = DEFAULT_PERMISSION_MODE,
        token: str = HEARTBEAT_OK_TOKEN,
    ) -> None:
        self.engine = engine
        self.ack_max_chars = ack_max_chars
        self.checklist_max_chars = checklist_max_chars
        self.allowed_tools = tuple(allowed_tools)
        self.permission_mode = permission_mode
        self.token = token

    def _read_checklist(self, agent: AgentState) -> str | None:
        try:
            return load_checklist(
                agent.config.workspace_path, max_chars=self.checklist_max_chars
            )
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "heartbeat.checklist.unreadable",
                agent_id=agent.agent_id,
                error=str(exc),
            )
            return None

    async def invoke(self, agent: AgentState) -> HeartbeatResult:
        """Run one heartbeat. Engine failures come back as ``ok=False``."""
        name = agent.agent_id
        checklist = self._read_checklist(agent)
        if checklist is not None and is_checklist_empty(checklist):
            logger.info("heartbeat.skipped.empty_checklist", agent_id=name)
            return HeartbeatResult(
                ok=True,
                notify=False,
                answer="",
                session_id=agent.session_id,
                skipped=True,
            )

        prompt = build_prompt(checklist)
        options = EngineOptions(
            cwd=agent.config.workspace_path,
            allowed_tools=self.allowed_tools,
            resume=agent.session_id,
            permission_mode=self.permission_mode,
        )
        if agent.session_id:
            logger.info(
                "heartbeat.resuming", agent_id=name, session_id=agent.session_id
            )

        start_time = time.monotonic()
        session_id = agent.session_id
        chunks: list[str] = []
        final: FinalMessage | None = None
        error: str | None = None

        try:
            logger.info("heartbeat.started", agent_id=name)
            async for message in self.engine.run(prompt, options):
                if message.session_id and message.session_id != session_id:
                    session_id = message.session_id
                    logger.debug(
                        "heartbeat.session", agent_id=name, session_id=session_id
                    )
                match message:
                    case TextMessage(text=text):
                        chunks.append(text)
                    case ToolUseMessage(name=tool):
                        logger.debug("heartbeat.tool_use", agent_id=name, tool=tool)
                    case FinalMessage():
                        final = message
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            if final is not None and final.is_error:
                error = final.text or "engine reported an error"

        duration_ms = int((time.monotonic() - start_time) * 1000)
        usage = final.usage if final is not None else None

        if error is not None:
            logger.error("heartbeat.error", agent_id=name, error=error)
            return HeartbeatResult(
                ok=False,
                notify=False,
                answer="",
                session_id=session_id,
                duration_ms=duration_ms,
                usage=usage,
                error=error,
            )

        answer = extract_final_response(
            "\n".join(chunks), final.text if final is not None else None
        )
        decision = classify_ack(answer, token=self.token, max_chars=self.ack_max_chars)

        logger.info(
            "heartbeat.completed",
            agent_id=name,
            notify=decision.notify,
            ack=decision.kind.value,
            duration_ms=duration_ms,
            cost=usage.get("total_cost_usd") if usage else None,
        )

        return HeartbeatResult(
            ok=True,
            notify=decision.notify,
            answer=answer,
            session_id=session_id,
            duration_ms=duration_ms,
            usage=usage,
        )


def build_executor(settings: YmbotSettings) -> HeartbeatExecutor:
    engine = ClaudeEngine(
        claude_cmd=settings.heartbeat.claude_cmd,
        model=settings.heartbeat.model,
    )
    return HeartbeatExecutor(
        engine,
        ack_max_chars=settings.heartbeat.ack_max_chars,
        checklist_max_chars=settings.heartbeat.checklist_max_chars,
    )
