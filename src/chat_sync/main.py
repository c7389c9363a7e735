"""CLI entrypoint for chat-sync."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from chat_sync import __version__
from chat_sync.tasks.controllers import (
    TasksCliController,
    TasksDbCommand,
    TasksEnqueueCommand,
    TasksInspectCommand,
    TasksListCommand,
    TasksRunCommand,
    TasksServeCommand,
)
from chat_sync.tasks.models import PayloadType, SyncStatus

click.rich_click.USE_MARKDOWN = True
TASKS_CONTROLLER = TasksCliController()

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="chat-sync")
def chat_sync() -> None:
    """Offline-tolerant chat sync CLI."""


@chat_sync.group()
def tasks() -> None:
    """Sync task queue commands."""


@tasks.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "payload_type",
    type=click.Choice([item.value for item in PayloadType], case_sensitive=False),
    required=True,
    help="Payload type.",
)
@click.option("--data", required=True, help="Payload as a JSON object.")
@click.option("--priority", type=int, default=0, show_default=True, help="Task priority.")
def tasks_enqueue(db_path: Path | None, payload_type: str, data: str, priority: int) -> None:
    """Queue a payload for eventual delivery."""

    _emit_lines(
        _invoke(
            TASKS_CONTROLLER.enqueue,
            TasksEnqueueCommand(
                db_path=db_path,
                payload_type=payload_type.lower(),
                data=data,
                priority=priority,
            ),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in SyncStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List sync tasks, newest first."""

    _emit_lines(
        _invoke(
            TASKS_CONTROLLER.list_tasks,
            TasksListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task in detail."""

    _emit_lines(
        _invoke(
            TASKS_CONTROLLER.inspect_task,
            TasksInspectCommand(db_path=db_path, task_id=task_id),
        ),
    )


@tasks.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_stats(db_path: Path | None) -> None:
    """Show task counts per status."""

    _emit_lines(_invoke(TASKS_CONTROLLER.stats, TasksDbCommand(db_path=db_path)))


@tasks.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--skip-reachability",
    is_flag=True,
    default=False,
    help="Run the pass even if the network probe reports unreachable.",
)
def tasks_run(db_path: Path | None, skip_reachability: bool) -> None:
    """Run one sync pass now, without the background scheduler."""

    _emit_lines(
        _invoke(
            TASKS_CONTROLLER.run_pass,
            TasksRunCommand(db_path=db_path, skip_reachability=skip_reachability),
        ),
    )


@tasks.command("sweep")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_sweep(db_path: Path | None) -> None:
    """Delete old COMPLETED and retry-exhausted FAILED tasks."""

    _emit_lines(_invoke(TASKS_CONTROLLER.sweep, TasksDbCommand(db_path=db_path)))


@tasks.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_recover(db_path: Path | None) -> None:
    """Release tasks stuck IN_PROGRESS after a crash."""

    _emit_lines(_invoke(TASKS_CONTROLLER.recover, TasksDbCommand(db_path=db_path)))


@tasks.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level.",
)
def tasks_serve(db_path: Path | None, log_level: str) -> None:
    """Run the background sync service until SIGINT/SIGTERM."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _emit_lines(_invoke(TASKS_CONTROLLER.serve, TasksServeCommand(db_path=db_path)))


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    chat_sync()
