"""CLI entrypoint for task-agent."""

from pathlib import Path

import rich_click as click

from task_agent import __version__
from task_agent.orchestrator.controllers import (
    AddTaskCommand,
    InspectTaskCommand,
    ListTasksCommand,
    RecoverTasksCommand,
    TaskCliController,
    WorkerCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskCliController()


@click.group()
@click.version_option(version=__version__, prog_name="task-agent")
def task_agent() -> None:
    """Autonomous coding task worker."""


@task_agent.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--working-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Git working copy the agent operates in.",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait after an empty poll.",
)
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one claim-execute cycle or poll until stopped.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed tasks in loop mode.",
)
def worker(
    db_path: Path | None,
    working_dir: Path | None,
    poll_interval: float | None,
    once: bool,
    max_tasks: int | None,
) -> None:
    """Run the polling worker.

    Claims pending tasks one at a time, runs the coding agent on a fresh
    `task/<id>` branch and reports the outcome. Stop with Ctrl+C; a task
    already in progress is finished first.
    """

    try:
        lines = CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                working_dir=working_dir,
                poll_interval_seconds=poll_interval,
                once=once,
                max_tasks=max_tasks,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@task_agent.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--title", required=True, help="What the agent should do.")
@click.option("--description", default=None, help="Additional instructions.")
def tasks_add(db_path: Path | None, title: str, description: str | None) -> None:
    """Enqueue a pending task."""

    try:
        lines = CONTROLLER.add_task(
            AddTaskCommand(db_path=db_path, title=title, description=description),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "in_progress", "completed", "failed"], case_sensitive=False),
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
    """List tasks, newest first."""

    _emit_lines(
        CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show task result and event history."""

    _emit_lines(
        CONTROLLER.inspect_task(
            InspectTaskCommand(
                db_path=db_path,
                task_id=task_id,
            ),
        ),
    )


@tasks.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--stale-after",
    type=click.IntRange(min=1),
    required=True,
    help="Fail in-progress tasks without a heartbeat for this many seconds.",
)
def tasks_recover(db_path: Path | None, stale_after: int) -> None:
    """Mark abandoned in-progress tasks as failed."""

    _emit_lines(
        CONTROLLER.recover_tasks(
            RecoverTasksCommand(
                db_path=db_path,
                stale_after_seconds=stale_after,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_agent()
