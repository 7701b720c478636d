"""Tests for heartbeat state module."""

from __future__ import annotations

import pytest

from ymbot.heartbeat.state import AgentState, build_agent_states, snapshot
from ymbot.settings import AgentSettings


def _agent(agent_id: str = "gmail-checker", interval_ms: int = 30_000) -> AgentSettings:
    return AgentSettings(
        agent_id=agent_id,
        workspace="/tmp/agents/gmail",
        heartbeat_interval_ms=interval_ms,
    )


class TestAgentState:
    """Tests for AgentState dataclass."""

    def test_from_settings(self) -> None:
        state = AgentState.from_settings(_agent(), now=100.0)
        assert state.agent_id == "gmail-checker"
        assert state.interval == 30.0
        assert state.next_due_at == 130.0
        assert state.session_id is None
        assert state.runs == 0
        assert state.failures == 0
        assert state.skips == 0

    def test_is_due(self) -> None:
        state = AgentState.from_settings(_agent(), now=0.0)
        assert state.is_due(29.999) is False
        assert state.is_due(30.0) is True
        assert state.is_due(45.0) is True

    def test_advance_is_relative_to_completion_time(self) -> None:
        state = AgentState.from_settings(_agent(), now=0.0)
        # attempt started at 30 but took 12 seconds
        state.advance(42.0)
        assert state.next_due_at == 72.0
        assert state.is_due(42.0) is False


class TestBuildAgentStates:
    """Tests for build_agent_states function."""

    def test_keyed_by_agent_id(self) -> None:
        states = build_agent_states(
            [_agent("a", 3000), _agent("b", 5000)], now=10.0
        )
        assert list(states) == ["a", "b"]
        assert states["a"].next_due_at == 13.0
        assert states["b"].next_due_at == 15.0

    def test_empty(self) -> None:
        assert build_agent_states([], now=0.0) == {}

    def test_rejects_duplicate_ids(self) -> None:
        with pytest.raises(ValueError, match="Duplicate agent id"):
            build_agent_states([_agent("a"), _agent("a")], now=0.0)


class TestSnapshot:
    """Tests for snapshot function."""

    def test_returns_copies(self) -> None:
        states = build_agent_states([_agent("a")], now=0.0)
        copies = snapshot(states.values())
        copies[0].next_due_at = 999.0
        copies[0].session_id = "tampered"
        assert states["a"].next_due_at == 30.0
        assert states["a"].session_id is None
