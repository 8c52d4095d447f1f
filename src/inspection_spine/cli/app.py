"""
Root Typer application for the inspection-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from inspection_spine.core.logging import configure_logging
from inspection_spine.core.settings import get_settings

app = Typer(
    name="inspection-spine",
    help="inspection-spine: recurring inspection scheduling and occurrence generation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("inspection-spine")
        except PackageNotFoundError:
            from inspection_spine import __version__ as v
        typer.echo(f"inspection-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override INSPECTION_SPINE_LOG_LEVEL."),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log renderer."),
) -> None:
    """inspection-spine CLI: manage schedules, events, occurrences and the scheduler."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.json_logs if json_logs is None else json_logs,
        cache_loggers=False,
    )


# ── Sub-command registration ─────────────────────────────────────────────

from inspection_spine.cli.db import app as db_app  # noqa: E402
from inspection_spine.cli.events import app as events_app  # noqa: E402
from inspection_spine.cli.occurrences import app as occ_app  # noqa: E402
from inspection_spine.cli.schedule import app as sched_app  # noqa: E402
from inspection_spine.cli.scheduler import app as scheduler_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(sched_app, name="schedule", help="Schedule management and runs.")
app.add_typer(events_app, name="events", help="Scheduling event queue.")
app.add_typer(occ_app, name="occurrences", help="Generated occurrences.")
app.add_typer(scheduler_app, name="scheduler", help="Long-running scheduler service.")
