"""In-memory heartbeat state: due times and session ids per agent."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from ..settings import AgentSettings


@dataclass(slots=True)
class AgentState:
    """Mutable scheduling record for one agent, owned by the scheduler."""

    agent_id: str
    config: AgentSettings
    next_due_at: float
    interval: float
    session_id: str | None = None
    runs: int = 0
    failures: int = 0
    skips: int = 0
    last_run_at: str | None = None

    @classmethod
    def from_settings(cls, config: AgentSettings, *, now: float) -> AgentState:
        return cls(
            agent_id=config.agent_id,
            config=config,
            next_due_at=now + config.interval_s,
            interval=config.interval_s,
        )

    def is_due(self, now: float) -> bool:
        return self.next_due_at <= now

    def advance(self, now: float) -> None:
        self.next_due_at = now + self.interval


def build_agent_states(
    configs: Iterable[AgentSettings], *, now: float
) -> dict[str, AgentState]:
    states: dict[str, AgentState] = {}
    for config in configs:
        if config.agent_id in states:
            raise ValueError(f"Duplicate agent id: {config.agent_id!r}")
        states[config.agent_id] = AgentState.from_settings(config, now=now)
    return states


def snapshot(states: Iterable[AgentState]) -> list[AgentState]:
    return [replace(state) for state in states]
