"""CLI commands for running heartbeat agents."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import anyio
import typer

from ..config import ConfigError
from ..heartbeat.executor import build_executor
from ..heartbeat.scheduler import HeartbeatScheduler
from ..heartbeat.state import AgentState
from ..logging import get_logger, setup_logging
from ..notifiers import NotificationMessage, create_notifier, start_notifier
from ..settings import YmbotSettings, load_settings

logger = get_logger(__name__)

app = typer.Typer(help="Run scheduled heartbeat agents.", no_args_is_help=True)

_SAMPLE_CONFIG = """
[agents.example]
workspace = "~/agents/example"
heartbeat_interval_ms = 1800000
active_hours = { start = "08:00", end = "22:00" }
"""

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to ymbot.toml (defaults to $YMBOT_CONFIG or ~/.ymbot/ymbot.toml).",
)
DebugOption = typer.Option(False, "--debug", help="Enable debug logging.")
LogFileOption = typer.Option(
    None,
    "--log-file",
    envvar="YMBOT_LOG_FILE",
    help="Also write JSON Lines logs to this file (rotated at 10 MB).",
)


def _load(config: Path | None, *, quiet: bool = False) -> tuple[YmbotSettings, Path]:
    try:
        return load_settings(config)
    except ConfigError as exc:
        if not quiet:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _format_interval(interval_ms: int) -> str:
    seconds = interval_ms / 1000
    if seconds < 60:
        return f"{seconds:g}s"
    if seconds < 3600:
        return f"{seconds / 60:g}m"
    return f"{seconds / 3600:g}h"


@app.command("agents")
def list_agents(config: Path | None = ConfigOption) -> None:
    """List configured agents."""
    settings, config_path = _load(config)
    if not settings.agents:
        typer.echo("No agents configured.")
        typer.echo(f"\nAdd agents to {config_path}:")
        typer.echo(_SAMPLE_CONFIG)
        return

    typer.echo("Configured agents:")
    for agent in settings.agent_list():
        window = agent.active_hours
        hours = f"{window.start}-{window.end}" if window else "always"
        interval = _format_interval(agent.heartbeat_interval_ms)
        typer.echo(
            f"  {agent.agent_id}: every {interval} ({hours}) in {agent.workspace}"
        )


@app.command("run")
def run_scheduler(
    config: Path | None = ConfigOption,
    debug: bool = DebugOption,
    log_file: Path | None = LogFileOption,
) -> None:
    """Run every configured agent on its heartbeat until interrupted."""
    setup_logging(debug=debug, log_file=log_file)
    settings, config_path = _load(config)
    if not settings.agents:
        typer.echo(f"error: no agents configured in {config_path}", err=True)
        raise typer.Exit(code=1)

    async def _run() -> None:
        notifier = await start_notifier(create_notifier(settings.notifications))
        scheduler = HeartbeatScheduler(
            settings.agent_list(),
            executor=build_executor(settings),
            notifier=notifier,
        )
        await scheduler.run()

    try:
        anyio.run(_run)
    except KeyboardInterrupt:
        logger.info("scheduler.interrupted")


@app.command("once")
def run_once(
    agent_id: str = typer.Argument(..., help="Agent to run now."),
    config: Path | None = ConfigOption,
    no_notify: bool = typer.Option(
        False, "--no-notify", help="Print the answer instead of notifying."
    ),
    quiet: bool = typer.Option(
        False, "-q", "--quiet", help="Suppress output (for cron)."
    ),
    debug: bool = DebugOption,
    log_file: Path | None = LogFileOption,
) -> None:
    """Run a single heartbeat for one agent right now."""
    setup_logging(debug=debug, log_file=log_file)
    settings, _ = _load(config, quiet=quiet)

    agent = settings.agents.get(agent_id)
    if agent is None:
        if not quiet:
            typer.echo(f"error: agent '{agent_id}' not found", err=True)
            if settings.agents:
                typer.echo(f"Available: {', '.join(settings.agents)}")
            else:
                typer.echo("No agents configured.")
        raise typer.Exit(code=1)

    async def _run() -> int:
        state = AgentState.from_settings(agent, now=0.0)
        result = await build_executor(settings).invoke(state)

        if not quiet:
            status = "ok" if result.ok else "failed"
            typer.echo(f"[{agent_id}] {status} duration={result.duration_ms}ms")
            if result.usage and "total_cost_usd" in result.usage:
                typer.echo(f"[{agent_id}] cost=${result.usage['total_cost_usd']:.4f}")
            if result.error:
                typer.echo(f"[{agent_id}] error: {result.error}", err=True)
            if result.skipped:
                typer.echo(f"[{agent_id}] checklist empty, engine not called")
            elif result.ok and not result.notify:
                typer.echo(f"[{agent_id}] nothing needs attention")

        if result.ok and result.notify and result.answer:
            if no_notify:
                if not quiet:
                    typer.echo(result.answer)
            else:
                notifier = await start_notifier(
                    create_notifier(settings.notifications)
                )
                try:
                    await notifier.send(
                        NotificationMessage(
                            text=result.answer,
                            agent_id=agent_id,
                            session_id=result.session_id,
                            timestamp=datetime.now(timezone.utc),
                        )
                    )
                except Exception as exc:
                    if not quiet:
                        typer.echo(
                            f"[{agent_id}] notification failed: {exc}", err=True
                        )
                finally:
                    await notifier.stop()

        return 0 if result.ok else 1

    exit_code = anyio.run(_run)
    raise typer.Exit(code=exit_code)
