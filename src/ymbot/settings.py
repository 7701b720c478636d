from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config import ConfigError, ensure_table, read_config, resolve_config_path
from .logging import get_logger

logger = get_logger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_HH_MM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

DEFAULT_ACK_MAX_CHARS = 300
DEFAULT_CHECKLIST_MAX_CHARS = 20_000


def parse_hh_mm(value: str) -> int:
    """Convert ``HH:MM`` into minutes since midnight."""
    match = _HH_MM_RE.match(value)
    if match is None:
        raise ValueError(f"expected HH:MM between 00:00 and 23:59, got {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


class ActiveHoursSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _validate_hh_mm(cls, value: str) -> str:
        parse_hh_mm(value)
        return value

    @property
    def start_minutes(self) -> int:
        return parse_hh_mm(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_hh_mm(self.end)

    @property
    def wraps_midnight(self) -> bool:
        return self.start_minutes > self.end_minutes


class AgentSettings(BaseModel):
    """Static configuration of one heartbeat agent."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    agent_id: NonEmptyStr
    workspace: NonEmptyStr
    heartbeat_interval_ms: PositiveInt
    active_hours: ActiveHoursSettings | None = None

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace).expanduser()

    @property
    def interval_s(self) -> float:
        return self.heartbeat_interval_ms / 1000


class TelegramSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    enabled: bool = False
    bot_token: str | None = None
    chat_id: int | str | None = None

    @field_validator("chat_id", mode="before")
    @classmethod
    def _reject_bool_chat_id(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("chat_id must be an integer or a channel name")
        return value

    @property
    def has_credentials(self) -> bool:
        return bool(self.bot_token) and self.chat_id not in (None, "")


class NotificationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    telegram: TelegramSettings = Field(default_factory=TelegramSettings)


class HeartbeatDefaults(BaseModel):
    """Executor tuning shared by every agent."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    ack_max_chars: NonNegativeInt = DEFAULT_ACK_MAX_CHARS
    checklist_max_chars: PositiveInt = DEFAULT_CHECKLIST_MAX_CHARS
    claude_cmd: str | None = None
    model: str | None = None


class YmbotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="YMBOT_",
        env_nested_delimiter="__",
        extra="forbid",
        str_strip_whitespace=True,
    )

    agents: dict[str, AgentSettings] = Field(default_factory=dict)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    heartbeat: HeartbeatDefaults = Field(default_factory=HeartbeatDefaults)

    @model_validator(mode="before")
    @classmethod
    def _agent_ids_from_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        agents = data.get("agents")
        if not isinstance(agents, dict):
            return data
        normalized: dict[str, Any] = {}
        for key, value in agents.items():
            agent_id = str(key).strip()
            if isinstance(value, dict):
                declared = value.get("agent_id")
                if declared is not None and str(declared).strip() != agent_id:
                    raise ValueError(
                        f"agents.{agent_id}: agent_id {declared!r} does not match "
                        "its table name"
                    )
                value = {**value, "agent_id": agent_id}
            normalized[agent_id] = value
        return {**data, "agents": normalized}

    def agent_list(self) -> list[AgentSettings]:
        return list(self.agents.values())


def validate_settings_data(data: dict[str, Any], *, config_path: Path) -> YmbotSettings:
    try:
        return YmbotSettings(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc


def load_settings(path: str | Path | None = None) -> tuple[YmbotSettings, Path]:
    config_path = resolve_config_path(path)
    data = read_config(config_path)
    for key in ("agents", "notifications", "heartbeat"):
        ensure_table(data, key, config_path=config_path)
    ensure_table(
        data["notifications"],
        "telegram",
        config_path=config_path,
        label="notifications.telegram",
    )
    settings = validate_settings_data(data, config_path=config_path)
    for agent in settings.agent_list():
        window = agent.active_hours
        if window is not None and window.wraps_midnight:
            # same-day comparison only; such a window never matches
            logger.warning(
                "config.active_hours.wraps_midnight",
                agent_id=agent.agent_id,
                start=window.start,
                end=window.end,
            )
    return settings, config_path
