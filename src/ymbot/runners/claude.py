"""Claude Code CLI adapter for the engine protocol."""

from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from collections.abc import AsyncIterator, Iterator
from typing import Any

from anyio.abc import ByteReceiveStream

from ..logging import get_logger
from ..model import (
    EngineInvocationError,
    EngineMessage,
    EngineOptions,
    FinalMessage,
    TextMessage,
    ToolUseMessage,
)
from ..utils.subprocess import manage_subprocess

logger = get_logger(__name__)

STDERR_TAIL_CHARS = 2000


async def iter_lines(stream: ByteReceiveStream) -> AsyncIterator[bytes]:
    buffer = b""
    async for chunk in stream:
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            yield line
    if buffer:
        yield buffer


def translate_event(event: dict[str, Any]) -> Iterator[EngineMessage]:
    """Map one stream-json event onto engine messages."""
    session_id = event.get("session_id")
    match event.get("type"):
        case "assistant":
            message = event.get("message") or {}
            for block in message.get("content") or []:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text" and block.get("text"):
                    yield TextMessage(text=block["text"], session_id=session_id)
                elif block.get("type") == "tool_use":
                    yield ToolUseMessage(
                        name=str(block.get("name", "")), session_id=session_id
                    )
        case "result":
            usage: dict[str, Any] = dict(event.get("usage") or {})
            if "total_cost_usd" in event:
                usage["total_cost_usd"] = event["total_cost_usd"]
            is_error = bool(event.get("is_error")) or event.get("subtype") not in (
                None,
                "success",
            )
            yield FinalMessage(
                text=str(event.get("result") or ""),
                session_id=session_id,
                is_error=is_error,
                usage=usage or None,
            )
        case _:
            return


class ClaudeEngine:
    def __init__(
        self,
        *,
        claude_cmd: str | None = None,
        model: str | None = None,
    ) -> None:
        self.claude_cmd = claude_cmd or shutil.which("claude") or "claude"
        self.model = model

    def build_args(self, options: EngineOptions) -> list[str]:
        args = [
            self.claude_cmd,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            options.permission_mode,
        ]
        if options.allowed_tools:
            args.extend(["--allowedTools", ",".join(options.allowed_tools)])
        if self.model:
            args.extend(["--model", self.model])
        if options.resume:
            args.extend(["--resume", options.resume])
        return args

    async def run(
        self, prompt: str, options: EngineOptions
    ) -> AsyncIterator[EngineMessage]:
        if not options.cwd.is_dir():
            logger.warning("claude.cwd.missing", cwd=str(options.cwd))
            raise EngineInvocationError(f"Workspace not found: {options.cwd}")

        args = self.build_args(options)
        logger.debug("claude.spawn", cmd=self.claude_cmd, resume=bool(options.resume))

        saw_final = False
        with tempfile.TemporaryFile() as stderr_file:
            async with manage_subprocess(
                args,
                cwd=options.cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
            ) as proc:
                assert proc.stdin is not None
                assert proc.stdout is not None
                await proc.stdin.send(prompt.encode("utf-8"))
                await proc.stdin.aclose()

                async for raw in iter_lines(proc.stdout):
                    line = raw.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("claude.stream.invalid_json", line=line[:200])
                        continue
                    if not isinstance(event, dict):
                        continue
                    for message in translate_event(event):
                        if isinstance(message, FinalMessage):
                            saw_final = True
                        yield message

                returncode = await proc.wait()

            if returncode != 0 and not saw_final:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode("utf-8", errors="replace")
                raise EngineInvocationError(
                    f"claude exited with code {returncode}: "
                    f"{stderr[-STDERR_TAIL_CHARS:].strip()}"
                )
