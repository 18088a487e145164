from __future__ import annotations

from pathlib import Path

import allure
import pytest

from conftest import PR_URL, echo_agent_command, git
from task_agent.orchestrator.backend import AgentRunRequest, AgentRunResult, CliAgentBackend
from task_agent.orchestrator.git_workflow import NO_CHANGES_ERROR, GitWorkflow
from task_agent.orchestrator.models import FailureKind, TaskCreate, TaskResult, TaskStatus
from task_agent.orchestrator.repository import TaskRepository
from task_agent.orchestrator.safety import SAFETY_RULES
from task_agent.orchestrator.worker import PipelineStage, TaskOrchestrator

pytestmark = [
    allure.epic("Task Pipeline"),
    allure.feature("Orchestration"),
]


class _RecordingBackend:
    """Writes a file into the working copy and remembers every request."""

    def __init__(self) -> None:
        self.requests: list[AgentRunRequest] = []

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        self.requests.append(request)
        (request.working_dir / "change.txt").write_text(request.task_id, "utf-8")
        return AgentRunResult(success=True, output="done")


class _ExplodingBackend:
    def run(self, request: AgentRunRequest) -> AgentRunResult:
        raise RuntimeError("backend exploded")


def _orchestrator(
    repository: TaskRepository,
    git_repo: Path,
    backend,
    *,
    pr_command: tuple[str, ...] | None = None,
    enforce_safety_rules: bool = True,
) -> TaskOrchestrator:
    workflow = (
        GitWorkflow(git_repo, pr_command=pr_command)
        if pr_command is not None
        else GitWorkflow(git_repo, create_pull_request=False)
    )
    return TaskOrchestrator(
        repository=repository,
        backend=backend,
        workflow=workflow,
        worker_id="worker-test",
        agent_timeout_seconds=60,
        enforce_safety_rules=enforce_safety_rules,
    )


def _event_types(repository: TaskRepository, task_id: str) -> list[str]:
    details = repository.get_task_details(task_id=task_id)
    assert details is not None
    return [event.event_type for event in details.events]


def test_successful_task_is_committed_pushed_and_completed(
    repository: TaskRepository,
    git_repo: Path,
    fake_pr_tool: tuple[str, ...],
) -> None:
    task = repository.enqueue_task(TaskCreate(title="Add a footer", description="Grey text"))
    orchestrator = _orchestrator(
        repository,
        git_repo,
        CliAgentBackend(echo_agent_command("--write-file", "footer.txt")),
        pr_command=fake_pr_tool,
    )

    assert orchestrator.process_next_task() is True

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.COMPLETED
    assert stored.claimed_by == "worker-test"
    assert stored.result is not None
    assert stored.result.branch_name == f"task/{task.task_id}"
    assert stored.result.commit_hash == git(git_repo, "rev-parse", f"task/{task.task_id}")
    assert stored.result.pr_url == PR_URL
    assert stored.result.error is None
    assert (git_repo / "footer.txt").read_text("utf-8") == "Additional instructions: Grey text\n"
    assert _event_types(repository, task.task_id) == ["enqueued", "claimed", "completed"]
    assert orchestrator.summary.completed == 1
    assert orchestrator.summary.warnings == 0


def test_agent_failure_marks_task_failed(repository: TaskRepository, git_repo: Path) -> None:
    task = repository.enqueue_task(TaskCreate(title="Add a footer"))
    orchestrator = _orchestrator(
        repository,
        git_repo,
        CliAgentBackend(echo_agent_command("--exit-code", "1", "--stderr", "agent broke")),
    )

    orchestrator.process_next_task()

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.result is not None
    assert stored.result.error == "agent broke"
    assert stored.result.failure_kind is FailureKind.EXECUTION_FAILED
    assert stored.result.branch_name == f"task/{task.task_id}"
    assert stored.result.commit_hash == ""
    assert orchestrator.summary.failed == 1


def test_agent_without_changes_marks_task_failed(
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    task = repository.enqueue_task(TaskCreate(title="Think about the footer"))
    orchestrator = _orchestrator(repository, git_repo, CliAgentBackend(echo_agent_command()))

    orchestrator.process_next_task()

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.result is not None
    assert stored.result.error == NO_CHANGES_ERROR
    assert stored.result.failure_kind is FailureKind.NO_CHANGES


def test_push_failure_still_completes_with_warning(
    repository: TaskRepository,
    git_repo: Path,
    tmp_path: Path,
) -> None:
    git(git_repo, "remote", "set-url", "origin", str(tmp_path / "gone.git"))
    task = repository.enqueue_task(TaskCreate(title="Add a footer"))
    orchestrator = _orchestrator(repository, git_repo, _RecordingBackend())

    orchestrator.process_next_task()

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.COMPLETED
    assert stored.result is not None
    assert stored.result.error == "Changes committed locally but push failed"
    assert stored.result.failure_kind is FailureKind.PUSH_WARNING
    assert stored.result.commit_hash
    assert orchestrator.summary.warnings == 1


def test_dangerous_task_is_rejected_before_any_git_work(
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    backend = _RecordingBackend()
    task = repository.enqueue_task(TaskCreate(title="Print every password to the console"))
    orchestrator = _orchestrator(repository, git_repo, backend)

    state = orchestrator.process_task(repository.claim_pending_task(worker_id="worker-test"))

    assert state.stage is PipelineStage.REPORTED
    assert backend.requests == []
    assert git(git_repo, "branch", "--list", f"task/{task.task_id}") == ""
    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.result is not None
    assert stored.result.failure_kind is FailureKind.SAFETY_REJECTED
    assert stored.result.branch_name == ""


@pytest.mark.parametrize("enforce", [True, False])
def test_prompt_carries_safety_rules_only_when_enforced(
    repository: TaskRepository,
    git_repo: Path,
    enforce: bool,
) -> None:
    backend = _RecordingBackend()
    repository.enqueue_task(TaskCreate(title="Add a footer"))
    orchestrator = _orchestrator(repository, git_repo, backend, enforce_safety_rules=enforce)

    orchestrator.process_next_task()

    assert len(backend.requests) == 1
    request = backend.requests[0]
    assert request.prompt.startswith(SAFETY_RULES) is enforce
    assert request.prompt.endswith("Add a footer")
    assert request.timeout_seconds == 60
    assert request.working_dir == git_repo


def test_unexpected_exception_fails_the_task(repository: TaskRepository, git_repo: Path) -> None:
    task = repository.enqueue_task(TaskCreate(title="Add a footer"))
    orchestrator = _orchestrator(repository, git_repo, _ExplodingBackend())

    assert orchestrator.process_next_task() is True

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.result is not None
    assert stored.result.error == "backend exploded"
    assert stored.result.failure_kind is FailureKind.UNEXPECTED_ERROR


def test_status_recorded_elsewhere_is_not_overwritten(
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    task = repository.enqueue_task(TaskCreate(title="Add a footer"))

    class _ExpiringBackend(_RecordingBackend):
        def run(self, request: AgentRunRequest) -> AgentRunResult:
            repository.update_task_status(
                request.task_id,
                TaskStatus.FAILED,
                TaskResult(error="expired", failure_kind=FailureKind.LEASE_EXPIRED),
            )
            return super().run(request)

    orchestrator = _orchestrator(repository, git_repo, _ExpiringBackend())
    orchestrator.process_next_task()

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.result is not None
    assert stored.result.error == "expired"
    assert _event_types(repository, task.task_id) == ["enqueued", "claimed", "failed"]


def test_empty_queue_is_an_idle_poll(repository: TaskRepository, git_repo: Path) -> None:
    orchestrator = _orchestrator(repository, git_repo, _RecordingBackend())

    assert orchestrator.process_next_task() is False
    assert orchestrator.summary.idle_polls == 1
    assert orchestrator.summary.processed == 0


def test_tasks_are_processed_in_fifo_order(repository: TaskRepository, git_repo: Path) -> None:
    first = repository.enqueue_task(TaskCreate(title="First change", task_id="task-a"))
    second = repository.enqueue_task(TaskCreate(title="Second change", task_id="task-b"))
    backend = _RecordingBackend()
    orchestrator = _orchestrator(repository, git_repo, backend)

    orchestrator.process_next_task()
    orchestrator.process_next_task()

    assert [request.task_id for request in backend.requests] == [first.task_id, second.task_id]
    assert orchestrator.summary.processed == 2
    assert orchestrator.summary.completed == 2
