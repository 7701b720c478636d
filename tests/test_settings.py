from pathlib import Path

import pytest
from structlog.testing import capture_logs

from ymbot.config import ConfigError
from ymbot.settings import (
    ActiveHoursSettings,
    AgentSettings,
    YmbotSettings,
    load_settings,
    parse_hh_mm,
    validate_settings_data,
)

SAMPLE_CONFIG = """\
[agents.gmail-checker]
workspace = "~/agents/gmail"
heartbeat_interval_ms = 1800000
active_hours = { start = "08:00", end = "22:00" }

[agents.ci-watcher]
workspace = "/srv/agents/ci"
heartbeat_interval_ms = 300000

[notifications.telegram]
enabled = true
bot_token = "123456:ABC-def"
chat_id = -100123

[heartbeat]
ack_max_chars = 120
model = "sonnet"
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "YMBOT_HEARTBEAT__ACK_MAX_CHARS",
        "YMBOT_NOTIFICATIONS__TELEGRAM__BOT_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_settings_from_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "ymbot.toml"
    config_path.write_text(SAMPLE_CONFIG)

    settings, path = load_settings(config_path)

    assert path == config_path
    assert [agent.agent_id for agent in settings.agent_list()] == [
        "gmail-checker",
        "ci-watcher",
    ]
    gmail = settings.agents["gmail-checker"]
    assert gmail.interval_s == 1800.0
    assert gmail.workspace_path == Path("~/agents/gmail").expanduser()
    assert gmail.active_hours == ActiveHoursSettings(start="08:00", end="22:00")
    assert settings.agents["ci-watcher"].active_hours is None
    assert settings.notifications.telegram.enabled is True
    assert settings.notifications.telegram.chat_id == -100123
    assert settings.heartbeat.ack_max_chars == 120
    assert settings.heartbeat.checklist_max_chars == 20_000
    assert settings.heartbeat.model == "sonnet"


def test_defaults_without_tables(tmp_path: Path) -> None:
    settings = validate_settings_data({}, config_path=tmp_path / "ymbot.toml")
    assert settings.agents == {}
    assert settings.notifications.telegram.enabled is False
    assert settings.heartbeat.ack_max_chars == 300


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YMBOT_HEARTBEAT__ACK_MAX_CHARS", "42")
    monkeypatch.setenv("YMBOT_NOTIFICATIONS__TELEGRAM__BOT_TOKEN", "999:from-env")
    data = {"notifications": {"telegram": {"enabled": True, "chat_id": 5}}}

    settings = validate_settings_data(data, config_path=tmp_path / "ymbot.toml")

    assert settings.heartbeat.ack_max_chars == 42
    assert settings.notifications.telegram.bot_token == "999:from-env"
    assert settings.notifications.telegram.chat_id == 5


def test_agent_id_comes_from_table_name() -> None:
    settings = YmbotSettings.model_validate(
        {"agents": {" ci ": {"workspace": "/srv/ci", "heartbeat_interval_ms": 1000}}}
    )
    assert list(settings.agents) == ["ci"]
    assert settings.agents["ci"].agent_id == "ci"


def test_agent_id_mismatch_rejected(tmp_path: Path) -> None:
    data = {
        "agents": {
            "ci": {
                "agent_id": "other",
                "workspace": "/srv/ci",
                "heartbeat_interval_ms": 1000,
            }
        }
    }
    with pytest.raises(ConfigError, match="does not match"):
        validate_settings_data(data, config_path=tmp_path / "ymbot.toml")


@pytest.mark.parametrize(
    "agent",
    [
        {"heartbeat_interval_ms": 1000},
        {"workspace": "/srv/ci"},
        {"workspace": "/srv/ci", "heartbeat_interval_ms": 0},
        {"workspace": "/srv/ci", "heartbeat_interval_ms": -5},
        {"workspace": "  ", "heartbeat_interval_ms": 1000},
        {"workspace": "/srv/ci", "heartbeat_interval_ms": 1000, "cron": "* * *"},
    ],
)
def test_invalid_agent_rejected(tmp_path: Path, agent: dict) -> None:
    with pytest.raises(ConfigError, match="Invalid config"):
        validate_settings_data(
            {"agents": {"ci": agent}}, config_path=tmp_path / "ymbot.toml"
        )


@pytest.mark.parametrize(
    ("toml", "name"),
    [
        ('agents = "gmail"\n', "agents"),
        ("heartbeat = 5\n", "heartbeat"),
        ('[notifications]\ntelegram = "on"\n', "notifications.telegram"),
    ],
)
def test_non_table_sections_rejected(tmp_path: Path, toml: str, name: str) -> None:
    config_path = tmp_path / "ymbot.toml"
    config_path.write_text(toml)
    with pytest.raises(ConfigError, match=rf"Invalid `{name}`.*expected a table"):
        load_settings(config_path)


def test_settings_rejects_bool_chat_id(tmp_path: Path) -> None:
    data = {"notifications": {"telegram": {"bot_token": "1:abc", "chat_id": True}}}
    with pytest.raises(ConfigError, match="chat_id"):
        validate_settings_data(data, config_path=tmp_path / "ymbot.toml")


def test_telegram_credentials() -> None:
    settings = YmbotSettings.model_validate(
        {"notifications": {"telegram": {"enabled": True, "bot_token": "1:abc"}}}
    )
    assert settings.notifications.telegram.has_credentials is False


class TestActiveHoursSettings:
    """Tests for ActiveHoursSettings model."""

    @pytest.mark.parametrize(
        ("value", "minutes"),
        [("00:00", 0), ("08:30", 510), ("23:59", 1439)],
    )
    def test_parse_hh_mm(self, value: str, minutes: int) -> None:
        assert parse_hh_mm(value) == minutes

    @pytest.mark.parametrize("value", ["24:00", "8:30", "12:60", "noon", ""])
    def test_rejects_bad_times(self, value: str) -> None:
        with pytest.raises(ValueError):
            ActiveHoursSettings(start=value, end="12:00")

    def test_minutes(self) -> None:
        window = ActiveHoursSettings(start="09:15", end="17:45")
        assert window.start_minutes == 555
        assert window.end_minutes == 1065
        assert window.wraps_midnight is False

    def test_wraps_midnight(self) -> None:
        assert ActiveHoursSettings(start="22:00", end="06:00").wraps_midnight is True

    def test_wrapping_window_warns_on_load(self, tmp_path: Path) -> None:
        config_path = tmp_path / "ymbot.toml"
        config_path.write_text(
            "[agents.night]\n"
            'workspace = "/srv/night"\n'
            "heartbeat_interval_ms = 1000\n"
            'active_hours = { start = "22:00", end = "06:00" }\n'
        )
        with capture_logs() as logs:
            load_settings(config_path)
        assert logs[0]["event"] == "config.active_hours.wraps_midnight"
        assert logs[0]["agent_id"] == "night"


def test_agent_settings_are_frozen() -> None:
    agent = AgentSettings(
        agent_id="ci", workspace="/srv/ci", heartbeat_interval_ms=1000
    )
    with pytest.raises(ValueError):
        agent.heartbeat_interval_ms = 5  # type: ignore[misc]
