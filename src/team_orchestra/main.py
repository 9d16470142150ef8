"""CLI entrypoint for team-orchestra."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from team_orchestra import __version__
from team_orchestra.orchestrator.controllers import (
    InspectRunCommand,
    ListRunsCommand,
    PlanCommand,
    RunCommand,
    RunStatsCommand,
    TeamOrchestraCliController,
    ValidateCommand,
)
from team_orchestra.orchestrator.errors import OrchestrationError
from team_orchestra.orchestrator.models import RunStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TeamOrchestraCliController()
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="team-orchestra")
@click.option(
    "--log-level",
    type=click.Choice(["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to TEAM_ORCHESTRA_LOG_LEVEL or WARNING.",
)
def team_orchestra(log_level: str | None) -> None:
    """Adaptive multi-agent task orchestrator.

    Plans which backlog tasks run next, assigns them to agents by skill and
    load, and re-plans as results come back.
    """

    level = log_level.upper() if log_level else _env_log_level()
    logging.basicConfig(level=level, format=_LOG_FORMAT)


@team_orchestra.command("validate")
@click.argument("descriptor", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(descriptor: Path) -> None:
    """Parse a team descriptor and print what was understood."""

    _emit_lines(_invoke(lambda: CONTROLLER.validate(ValidateCommand(descriptor_path=descriptor))))


@team_orchestra.command("plan")
@click.argument("descriptor", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def plan(descriptor: Path) -> None:
    """Dry run: show the first planning cycle without executing tasks."""

    _emit_lines(_invoke(lambda: CONTROLLER.plan(PlanCommand(descriptor_path=descriptor))))


@team_orchestra.command("run")
@click.argument("descriptor", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--journal/--no-journal",
    default=True,
    show_default=True,
    help="Persist runs, cycles and events to the SQLite journal.",
)
@click.option(
    "--delay-seconds",
    type=click.FloatRange(min=0.0),
    default=None,
    help="Simulated work time per attempt for the echo executor.",
)
@click.option(
    "--transient-failures",
    type=click.IntRange(min=0),
    default=None,
    help="Fail the first N attempts of every task with a transient error.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0.0),
    default=None,
    help="Cancel the run after this many seconds. 0 disables the limit.",
)
@click.option(
    "--show-events/--hide-events",
    default=False,
    show_default=True,
    help="Print every orchestration event before the summary.",
)
def run(  # noqa: PLR0913
    descriptor: Path,
    db_path: Path | None,
    journal: bool,
    delay_seconds: float | None,
    transient_failures: int | None,
    timeout_seconds: float | None,
    show_events: bool,
) -> None:
    """Execute a team with the built-in echo executor."""

    lines = _invoke(
        lambda: CONTROLLER.run(
            RunCommand(
                descriptor_path=descriptor,
                db_path=db_path,
                journal=journal,
                delay_seconds=delay_seconds,
                transient_failures=transient_failures,
                timeout_seconds=timeout_seconds,
                show_events=show_events,
            ),
        ),
    )
    _emit_lines(lines)


@team_orchestra.group()
def runs() -> None:
    """Journaled run commands."""


@runs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in RunStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max runs to print.",
)
def runs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent runs."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.list_runs(
                ListRunsCommand(db_path=db_path, status=status, limit=limit),
            ),
        ),
    )


@runs.command("inspect")
@click.argument("run_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--events/--no-events",
    "show_events",
    default=True,
    show_default=True,
    help="Include the event stream.",
)
def runs_inspect(run_id: str, db_path: Path | None, show_events: bool) -> None:
    """Show one run with its planning cycles and events."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.inspect_run(
                InspectRunCommand(db_path=db_path, run_id=run_id, show_events=show_events),
            ),
        ),
    )


@runs.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=24,
    show_default=True,
    help="Time window for aggregation.",
)
def runs_stats(db_path: Path | None, hours: int) -> None:
    """Show orchestration health metrics."""

    _emit_lines(
        _invoke(lambda: CONTROLLER.stats(RunStatsCommand(db_path=db_path, hours=hours))),
    )


def _env_log_level() -> str:
    level = os.getenv("TEAM_ORCHESTRA_LOG_LEVEL", "WARNING").strip().upper()
    return level if level in logging.getLevelNamesMapping() else "WARNING"


def _invoke(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (OrchestrationError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)
