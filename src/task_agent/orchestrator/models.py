"""Domain models for the task queue and the orchestration pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class FailureKind(str, Enum):
    """Normalized failure and warning classes recorded with a task result."""

    SETUP_FAILED = "setup_failed"
    EXECUTION_FAILED = "execution_failed"
    NO_CHANGES = "no_changes"
    STAGE_OR_COMMIT_FAILED = "stage_or_commit_failed"
    SAFETY_REJECTED = "safety_rejected"
    LEASE_EXPIRED = "lease_expired"
    UNEXPECTED_ERROR = "unexpected_error"
    PUSH_WARNING = "push_warning"
    PULL_REQUEST_WARNING = "pull_request_warning"

    @property
    def is_warning(self) -> bool:
        return self in {FailureKind.PUSH_WARNING, FailureKind.PULL_REQUEST_WARNING}


@dataclass(slots=True)
class TaskCreate:
    """Input payload for enqueuing a task."""

    title: str
    description: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskResult:
    """Outcome attached to a task on its terminal transition."""

    branch_name: str = ""
    commit_hash: str = ""
    pr_url: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and worker logic."""

    task_id: str
    title: str
    description: str | None
    status: TaskStatus
    claimed_by: str | None
    started_at: datetime | None
    heartbeat_at: datetime | None
    finished_at: datetime | None
    result: TaskResult | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class WorkflowOutcome:
    """Result carried between pipeline stages.

    Each stage either augments the outcome or short-circuits the pipeline
    with ``success=False``. A successful outcome may still carry ``error``
    when a non-fatal step (push, pull request) degraded.
    """

    success: bool
    branch_name: str | None = None
    commit_hash: str | None = None
    pr_url: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None

    def to_result(self) -> TaskResult:
        return TaskResult(
            branch_name=self.branch_name or "",
            commit_hash=self.commit_hash or "",
            pr_url=self.pr_url,
            error=self.error,
            failure_kind=self.failure_kind,
        )
