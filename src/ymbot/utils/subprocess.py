from __future__ import annotations

import os
import signal
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import anyio
from anyio.abc import Process

from ..logging import get_logger

logger = get_logger(__name__)

TERMINATE_TIMEOUT_S = 2.0


async def wait_for_process(proc: Process, timeout: float) -> bool:
    """Wait for ``proc`` to exit; return True if the timeout elapsed first."""
    with anyio.move_on_after(timeout) as scope:
        await proc.wait()
    return scope.cancelled_caught


def _signal_process(proc: Process, sig: int, fallback_name: str) -> None:
    if proc.returncode is not None:
        return
    if os.name == "posix":
        try:
            os.killpg(proc.pid, sig)
            return
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.debug("subprocess.killpg.failed", pid=proc.pid, error=str(exc))
    try:
        getattr(proc, fallback_name)()
    except ProcessLookupError:
        pass


def terminate_process(proc: Process) -> None:
    _signal_process(proc, signal.SIGTERM, "terminate")


def kill_process(proc: Process) -> None:
    _signal_process(proc, signal.SIGKILL, "kill")


@asynccontextmanager
async def manage_subprocess(
    cmd: Sequence[str],
    *,
    terminate_timeout: float = TERMINATE_TIMEOUT_S,
    **kwargs: Any,
) -> AsyncIterator[Process]:
    """Run ``cmd`` in its own process group and make sure it is gone on exit."""
    if os.name == "posix":
        kwargs.setdefault("start_new_session", True)
    proc = await anyio.open_process(list(cmd), **kwargs)
    try:
        yield proc
    finally:
        with anyio.CancelScope(shield=True):
            if proc.returncode is None:
                terminate_process(proc)
                if await wait_for_process(proc, terminate_timeout):
                    logger.warning("subprocess.kill", pid=proc.pid)
                    kill_process(proc)
                    await proc.wait()
            await proc.aclose()
