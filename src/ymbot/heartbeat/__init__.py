"""Heartbeat: scheduled autonomous agent checks."""

from .ack import AckDecision, AckKind, classify_ack, extract_final_response
from .executor import HeartbeatExecutor, HeartbeatResult, build_executor
from .scheduler import HeartbeatScheduler, is_within_active_hours
from .state import AgentState

__all__ = [
    "AckDecision",
    "AckKind",
    "AgentState",
    "HeartbeatExecutor",
    "HeartbeatResult",
    "HeartbeatScheduler",
    "build_executor",
    "classify_ack",
    "extract_final_response",
    "is_within_active_hours",
]
