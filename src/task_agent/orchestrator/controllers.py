"""Controllers for task agent CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from task_agent.config import Settings
from task_agent.orchestrator.backend import CliAgentBackend
from task_agent.orchestrator.git_workflow import GitWorkflow
from task_agent.orchestrator.models import TaskCreate, TaskStatus
from task_agent.orchestrator.repository import TaskRepository
from task_agent.orchestrator.scheduler import PollingScheduler
from task_agent.orchestrator.worker import TaskOrchestrator

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    working_dir: Path | None
    poll_interval_seconds: float | None
    once: bool
    max_tasks: int | None


@dataclass(slots=True)
class AddTaskCommand:
    """CLI input for task creation."""

    db_path: Path | None
    title: str
    description: str | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RecoverTasksCommand:
    """CLI input for stale task recovery."""

    db_path: Path | None
    stale_after_seconds: int


class TaskCliController:
    """Adapter between CLI input and task agent use-cases."""

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.working_dir is not None:
            settings.worker.working_dir = command.working_dir.resolve()
        if command.poll_interval_seconds is not None:
            settings.worker.poll_interval_seconds = command.poll_interval_seconds
        settings.validate_for_worker()
        configure_logging(settings.log_level)

        with _repository(settings) as repository:
            orchestrator = TaskOrchestrator(
                repository=repository,
                backend=CliAgentBackend(settings.agent.command),
                workflow=GitWorkflow(
                    settings.worker.working_dir,
                    remote=settings.git.remote,
                    command_timeout_seconds=settings.git.command_timeout_seconds,
                    pr_command=settings.git.pr_argv,
                    create_pull_request=settings.git.create_pull_request,
                ),
                worker_id=settings.worker.worker_id,
                agent_timeout_seconds=settings.agent.timeout_seconds,
                enforce_safety_rules=settings.agent.enforce_safety_rules,
            )
            scheduler = PollingScheduler(
                orchestrator,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                busy_poll_delay_seconds=settings.worker.busy_poll_delay_seconds,
                stale_task_seconds=settings.worker.stale_task_seconds,
            )
            if command.once:
                scheduler.run_once()
            else:
                scheduler.start(max_tasks=command.max_tasks)
            summary = scheduler.summary

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} warnings={summary.warnings} "
            f"idle_polls={summary.idle_polls}",
        ]

    def add_task(self, command: AddTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.enqueue_task(
                TaskCreate(title=command.title, description=command.description),
            )
        return [f"Task enqueued: task_id={task.task_id} status={task.status.value}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} "
                f"created_at={task.created_at.isoformat()} title={task.title}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        result = task.result
        lines = [
            f"Task: {task.task_id}",
            f"Title: {task.title}",
            f"Description: {task.description or '-'}",
            f"Status: {task.status.value}",
            f"Claimed by: {task.claimed_by or '-'}",
            f"Branch: {(result.branch_name if result else '') or '-'}",
            f"Commit: {(result.commit_hash if result else '') or '-'}",
            f"PR: {(result.pr_url if result else None) or '-'}",
            f"Error: {(result.error if result else None) or '-'}",
            "Failure kind: "
            f"{result.failure_kind.value if result and result.failure_kind else '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def recover_tasks(self, command: RecoverTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            recovered = repository.recover_stale_tasks(
                stale_after=timedelta(seconds=command.stale_after_seconds),
            )
        lines = [f"Recovered stale tasks: {len(recovered)}"]
        lines.extend(f"  {task_id} status=failed" for task_id in recovered)
        return lines


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _parse_status(raw: str | None) -> TaskStatus | None:
    if raw is None:
        return None
    try:
        return TaskStatus(raw)
    except ValueError as error:
        raise ValueError(f"Unsupported task status: {raw!r}") from error


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
