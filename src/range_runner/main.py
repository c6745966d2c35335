"""CLI entrypoint for range-runner."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from range_runner import __version__
from range_runner.config import Settings
from range_runner.controllers import (
    ListTasksCommand,
    RangeRunnerCliController,
    ResumeCommand,
    RunCommand,
    SweepCommand,
    TaskCommand,
)
from range_runner.engine.errors import RangeRunnerError
from range_runner.logging_setup import setup_logging

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RangeRunnerCliController()

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="range-runner")
def range_runner() -> None:
    """Cancellable range-counting task runner."""

    settings = _invoke(Settings.from_env)
    _invoke(settings.validate)
    setup_logging(settings.log_level)


@range_runner.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--x", "x", type=int, required=True, help="Range start.")
@click.option("--y", "y", type=int, required=True, help="Range end (inclusive target).")
@click.option(
    "--cancel-after-ticks",
    type=click.IntRange(min=0),
    default=None,
    help="Request cancellation after this many ticks.",
)
def run(db_path: Path | None, x: int, y: int, cancel_after_ticks: int | None) -> None:
    """Submit a counting task and follow it until it finishes."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.run(
                RunCommand(db_path=db_path, x=x, y=y, cancel_after_ticks=cancel_after_ticks),
                on_progress=click.echo,
            ),
        ),
    )


@range_runner.command("resume")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def resume(db_path: Path | None) -> None:
    """Resume tasks left `created` or `running` by a previous process."""

    _emit_lines(_invoke(lambda: CONTROLLER.resume(ResumeCommand(db_path=db_path))))


@range_runner.command("progress")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def progress(db_path: Path | None, task_id: str) -> None:
    """Show task progress and percentage."""

    _emit_lines(_invoke(lambda: CONTROLLER.progress(TaskCommand(db_path=db_path, task_id=task_id))))


@range_runner.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def cancel(db_path: Path | None, task_id: str) -> None:
    """Cancel a task; finished or removed tasks are left untouched."""

    _emit_lines(_invoke(lambda: CONTROLLER.cancel(TaskCommand(db_path=db_path, task_id=task_id))))


@range_runner.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["created", "running", "completed", "cancelled", "failed"]),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max rows to show.",
)
def tasks(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.list_tasks(
                ListTasksCommand(db_path=db_path, status=status, limit=limit),
            ),
        ),
    )


@range_runner.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def inspect(db_path: Path | None, task_id: str) -> None:
    """Show task details with its event history."""

    _emit_lines(_invoke(lambda: CONTROLLER.inspect(TaskCommand(db_path=db_path, task_id=task_id))))


@range_runner.command("sweep")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sweep(db_path: Path | None) -> None:
    """Run one staleness sweep pass."""

    _emit_lines(_invoke(lambda: CONTROLLER.sweep(SweepCommand(db_path=db_path))))


def _invoke(action: Callable[[], T]) -> T:
    try:
        return action()
    except (RangeRunnerError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    range_runner()
