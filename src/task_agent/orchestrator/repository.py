"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from task_agent.orchestrator.models import (
    TERMINAL_STATUSES,
    FailureKind,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskResult,
    TaskStatus,
    TaskView,
)
from task_agent.storage.alembic_runner import upgrade_head
from task_agent.storage.common import (
    create_store_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_agent.storage.sqlmodel_models import TaskEventRow, TaskRow

logger = logging.getLogger(__name__)


class TaskRepository:
    """Task store facade.

    Claiming is the only concurrency-sensitive operation: several workers may
    share one database file, and a task moves from ``pending`` to
    ``in_progress`` only through a conditional update checked by rowcount.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = create_store_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_task(self, payload: TaskCreate) -> TaskView:
        """Create a pending task."""

        title = payload.title.strip()
        if not title:
            raise ValueError("Task title must not be empty.")

        now = to_db_datetime(utc_now())
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRow(
                task_id=task_id,
                title=title,
                description=payload.description or None,
                status=TaskStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def claim_pending_task(self, *, worker_id: str) -> TaskView | None:
        """Atomically claim the oldest pending task.

        Returns ``None`` when nothing is pending, when another worker won the
        race for the candidate, or when the store is unreachable. The candidate
        is not retried; the next poll picks again.
        """

        try:
            return self._claim_pending_task(worker_id=worker_id)
        except SQLAlchemyError as error:
            logger.warning("Task store query failed, treating as no task: %s", error)
            return None

    def _claim_pending_task(self, *, worker_id: str) -> TaskView | None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            candidate = session.exec(
                select(TaskRow)
                .where(TaskRow.status == TaskStatus.PENDING.value)
                .order_by(col(TaskRow.created_at).asc(), col(TaskRow.task_id).asc())
                .limit(1),
            ).one_or_none()
            if candidate is None:
                return None
            candidate_id = candidate.task_id

            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == candidate_id,
                    col(TaskRow.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.IN_PROGRESS.value,
                    claimed_by=worker_id,
                    started_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.info("Task %s was claimed by another worker", candidate_id)
                return None

            self._add_event(
                session=session,
                task_id=candidate_id,
                event_type="claimed",
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.IN_PROGRESS,
                details={"worker_id": worker_id},
            )
            session.commit()
            claimed = session.exec(
                select(TaskRow).where(TaskRow.task_id == candidate_id),
            ).one()
            return _to_task_view(claimed)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        result: TaskResult | None = None,
    ) -> bool:
        """Record the terminal status of an in-progress task.

        Store errors propagate to the caller. Returns ``False`` when the task
        is no longer in progress, so a terminal status is never overwritten.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status}")

        now = to_db_datetime(utc_now())
        values: dict[str, object] = {
            "status": status.value,
            "finished_at": now,
            "heartbeat_at": now,
            "updated_at": now,
        }
        if result is not None:
            values.update(
                branch_name=result.branch_name,
                commit_hash=result.commit_hash,
                pr_url=result.pr_url,
                error=result.error,
                failure_kind=result.failure_kind.value if result.failure_kind else None,
            )

        with Session(self.engine) as session:
            update_result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(**values),
            )
            if update_result.rowcount != 1:
                session.rollback()
                logger.warning(
                    "Task %s is no longer in progress; %s status not recorded",
                    task_id,
                    status.value,
                )
                return False
            details: dict[str, object] = {}
            if result is not None:
                details = {
                    "branch_name": result.branch_name,
                    "commit_hash": result.commit_hash,
                    "pr_url": result.pr_url,
                    "error": result.error,
                }
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=status.value,
                status_from=TaskStatus.IN_PROGRESS,
                status_to=status,
                details={key: value for key, value in details.items() if value},
            )
            session.commit()
            return True

    def touch_task(self, *, task_id: str) -> None:
        """Update heartbeat for an in-progress task."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(heartbeat_at=now),
            )
            session.commit()

    def recover_stale_tasks(self, *, stale_after: timedelta) -> list[str]:
        """Fail in-progress tasks whose heartbeat is older than ``stale_after``.

        Such tasks were left behind by a worker that crashed or was killed
        mid-pipeline. They are failed rather than requeued because the working
        copy of the dead worker may hold a half-finished branch.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[str] = []
        with Session(self.engine) as session:
            stale_ids = session.exec(
                select(TaskRow.task_id).where(
                    TaskRow.status == TaskStatus.IN_PROGRESS.value,
                    col(TaskRow.heartbeat_at) < cutoff,
                ),
            ).all()
            for task_id in stale_ids:
                error = (
                    "Task lease expired: no heartbeat for more than "
                    f"{int(stale_after.total_seconds())}s"
                )
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == task_id,
                        col(TaskRow.status) == TaskStatus.IN_PROGRESS.value,
                        col(TaskRow.heartbeat_at) < cutoff,
                    )
                    .values(
                        status=TaskStatus.FAILED.value,
                        error=error,
                        failure_kind=FailureKind.LEASE_EXPIRED.value,
                        branch_name="",
                        commit_hash="",
                        finished_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="lease_expired",
                    status_from=TaskStatus.IN_PROGRESS,
                    status_to=TaskStatus.FAILED,
                    details={"stale_after_seconds": int(stale_after.total_seconds())},
                )
                recovered.append(task_id)
            session.commit()
        for task_id in recovered:
            logger.warning("Recovered stale task %s (marked failed)", task_id)
        return recovered

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskRow).order_by(col(TaskRow.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            if task is None:
                return None
            task_view = _to_task_view(task)

            event_rows = session.exec(
                select(TaskEventRow)
                .where(TaskEventRow.task_id == task_id)
                .order_by(col(TaskEventRow.created_at).asc(), col(TaskEventRow.id).asc()),
            ).all()

            events: list[TaskEventView] = []
            for row in event_rows:
                details = {}
                if row.details_json:
                    parsed = json.loads(row.details_json)
                    if isinstance(parsed, dict):
                        details = parsed
                events.append(
                    TaskEventView(
                        event_id=row.id or 0,
                        task_id=row.task_id,
                        event_type=row.event_type,
                        status_from=(
                            TaskStatus(row.status_from) if row.status_from is not None else None
                        ),
                        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                        created_at=to_utc_aware_datetime(row.created_at),
                        details=details,
                    ),
                )

        return TaskDetails(task=task_view, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEventRow(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_task_view(row: TaskRow) -> TaskView:
    status = TaskStatus(row.status)
    result: TaskResult | None = None
    if status in TERMINAL_STATUSES:
        result = TaskResult(
            branch_name=row.branch_name or "",
            commit_hash=row.commit_hash or "",
            pr_url=row.pr_url,
            error=row.error,
            failure_kind=FailureKind(row.failure_kind) if row.failure_kind is not None else None,
        )
    return TaskView(
        task_id=row.task_id,
        title=row.title,
        description=row.description,
        status=status,
        claimed_by=row.claimed_by,
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        heartbeat_at=(
            to_utc_aware_datetime(row.heartbeat_at) if row.heartbeat_at is not None else None
        ),
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
        result=result,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
