"""Drive every agent's heartbeat off a single one-shot timer.

The timer is re-armed after each firing for the earliest ``next_due_at``
across all agents. Due agents run one after another; each attempt (run,
failure or active-hours skip) pushes that agent's due time one interval past
the moment the attempt finished. Engine and notifier failures are logged per
agent and never stop the loop.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

import anyio
from anyio.abc import TaskGroup

from ..logging import get_logger
from ..notifiers.base import NotificationMessage, Notifier
from ..settings import ActiveHoursSettings, AgentSettings
from .executor import HeartbeatInvoker, HeartbeatResult
from .state import AgentState, build_agent_states, snapshot

logger = get_logger(__name__)

Clock = Callable[[], float]


def minutes_since_midnight(now: datetime) -> int:
    return now.hour * 60 + now.minute


def is_within_active_hours(window: ActiveHoursSettings | None, minutes: int) -> bool:
    """Inclusive same-day check; a window with start after end never matches."""
    if window is None:
        return True
    return window.start_minutes <= minutes <= window.end_minutes


class HeartbeatScheduler:
    def __init__(
        self,
        agents: Iterable[AgentSettings],
        *,
        executor: HeartbeatInvoker,
        notifier: Notifier,
        clock: Clock = time.monotonic,
        local_now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._executor = executor
        self._notifier = notifier
        self._clock = clock
        self._local_now = local_now
        self._agents = build_agent_states(agents, now=clock())
        self._running = False
        self._stop_requested = False
        self._generation = 0
        self._in_flight: set[str] = set()
        self._task_group: TaskGroup | None = None
        self._timer: anyio.CancelScope | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def get_agent_states(self) -> list[AgentState]:
        return snapshot(self._agents.values())

    async def start(self, task_group: TaskGroup) -> None:
        if self._running:
            logger.warning("scheduler.already_running")
            return

        self._running = True
        self._stop_requested = False
        self._generation += 1
        self._task_group = task_group
        logger.info("scheduler.starting", agents=len(self._agents))
        try:
            await self._notifier.start()
        except BaseException:
            self._running = False
            self._task_group = None
            raise
        self._schedule_next()

    async def stop(self) -> None:
        if not self._running:
            logger.warning("scheduler.not_running")
            return

        self._running = False
        self._stop_requested = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._task_group = None
        try:
            await self._notifier.stop()
        except Exception as exc:
            logger.error("scheduler.notifier_stop_failed", error=str(exc))
        logger.info("scheduler.stopped")

    async def run(self) -> None:
        """Start, then wait until cancelled; always stops on the way out."""
        async with anyio.create_task_group() as tg:
            await self.start(tg)
            try:
                await anyio.sleep_forever()
            finally:
                with anyio.CancelScope(shield=True):
                    await self.stop()

    def _schedule_next(self) -> None:
        """Arm the one timer for the earliest idle agent, replacing any other."""
        if not self._running or self._task_group is None:
            return
        if not self._agents:
            logger.warning("scheduler.no_agents")
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        # agents still running from an earlier start re-arm when they finish
        idle = [
            agent for agent in self._agents.values()
            if agent.agent_id not in self._in_flight
        ]
        if not idle:
            logger.debug("scheduler.all_in_flight")
            return

        upcoming = min(idle, key=lambda agent: agent.next_due_at)
        delay = max(0.0, upcoming.next_due_at - self._clock())
        logger.debug(
            "scheduler.armed", agent_id=upcoming.agent_id, delay_s=round(delay, 3)
        )
        scope = anyio.CancelScope()
        self._timer = scope
        self._task_group.start_soon(self._fire_after, delay, scope, self._generation)

    async def _fire_after(
        self, delay: float, scope: anyio.CancelScope, generation: int
    ) -> None:
        with scope:
            await anyio.sleep(delay)
        if scope.cancel_called or not self._running:
            return
        if generation != self._generation:
            return
        if self._timer is scope:
            self._timer = None
        await self.execute_due_heartbeats(generation)
        self._schedule_next()

    async def execute_due_heartbeats(self, generation: int | None = None) -> None:
        """Run every due agent in due order.

        A batch that belongs to an earlier ``start()`` stops at the next agent;
        the current run's timer picks up whatever is still due.
        """
        if generation is None:
            generation = self._generation
        now = self._clock()
        due = sorted(
            (
                agent
                for agent in self._agents.values()
                if agent.is_due(now) and agent.agent_id not in self._in_flight
            ),
            key=lambda agent: agent.next_due_at,
        )
        if not due:
            logger.debug("scheduler.nothing_due")
            return

        for agent in due:
            if self._stop_requested or generation != self._generation:
                logger.debug("scheduler.batch_abandoned", agent_id=agent.agent_id)
                break
            await self._run_agent(agent)

    async def _run_agent(self, agent: AgentState) -> None:
        minutes = minutes_since_midnight(self._local_now())
        if not is_within_active_hours(agent.config.active_hours, minutes):
            logger.debug("heartbeat.outside_active_hours", agent_id=agent.agent_id)
            agent.skips += 1
            agent.advance(self._clock())
            return

        result: HeartbeatResult | None = None
        self._in_flight.add(agent.agent_id)
        try:
            logger.info("heartbeat.executing", agent_id=agent.agent_id)
            result = await self._executor.invoke(agent)
        except Exception:
            logger.exception("heartbeat.unexpected_error", agent_id=agent.agent_id)
        finally:
            self._in_flight.discard(agent.agent_id)
            agent.advance(self._clock())
            agent.runs += 1
            agent.last_run_at = datetime.now(timezone.utc).isoformat()

        if result is None:
            agent.failures += 1
            return
        if result.session_id:
            agent.session_id = result.session_id
        if not result.ok:
            agent.failures += 1
            logger.error(
                "heartbeat.failed", agent_id=agent.agent_id, error=result.error
            )
            return

        logger.info(
            "heartbeat.succeeded",
            agent_id=agent.agent_id,
            notify=result.notify,
            skipped=result.skipped,
        )
        if result.notify and result.answer.strip():
            await self._dispatch(agent, result)

    async def _dispatch(self, agent: AgentState, result: HeartbeatResult) -> None:
        if self._stop_requested:
            logger.info("notify.dropped_after_stop", agent_id=agent.agent_id)
            return
        message = NotificationMessage(
            text=result.answer,
            agent_id=agent.agent_id,
            session_id=agent.session_id,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self._notifier.send(message)
        except Exception as exc:
            logger.error("notify.failed", agent_id=agent.agent_id, error=str(exc))
            return
        logger.info("notify.sent", agent_id=agent.agent_id)
