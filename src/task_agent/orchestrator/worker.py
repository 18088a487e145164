"""Task pipeline: claim, branch setup, agent execution, finalization, report."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from task_agent.orchestrator.backend import AgentBackend, AgentRunRequest
from task_agent.orchestrator.git_workflow import GitWorkflow
from task_agent.orchestrator.models import (
    FailureKind,
    TaskStatus,
    TaskView,
    WorkflowOutcome,
)
from task_agent.orchestrator.repository import TaskRepository
from task_agent.orchestrator.safety import build_task_prompt, validate_task_safety

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Stages of one task's pipeline, strictly sequential."""

    CLAIMED = "claimed"
    BRANCH_SETUP = "branch_setup"
    AGENT_EXECUTION = "agent_execution"
    FINALIZATION = "finalization"
    REPORTED = "reported"


@dataclass(slots=True)
class PipelineState:
    """Current stage plus the outcome accumulated so far.

    ``status`` is decided when a transition moves the pipeline to
    ``REPORTED``; it is what gets written to the store.
    """

    task: TaskView
    stage: PipelineStage
    outcome: WorkflowOutcome
    status: TaskStatus | None = None

    def advance(
        self,
        stage: PipelineStage,
        outcome: WorkflowOutcome | None = None,
    ) -> PipelineState:
        return replace(self, stage=stage, outcome=outcome or self.outcome)

    def finish(self, status: TaskStatus, outcome: WorkflowOutcome) -> PipelineState:
        return replace(self, stage=PipelineStage.REPORTED, outcome=outcome, status=status)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    warnings: int = 0
    idle_polls: int = 0


class TaskOrchestrator:
    """Runs claimed tasks through the pipeline and reports their outcome.

    Every path ends in a store update: stage failures and unexpected
    exceptions become ``failed`` results. Only errors raised by the store
    write itself escape ``process_next_task``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        backend: AgentBackend,
        workflow: GitWorkflow,
        worker_id: str,
        agent_timeout_seconds: float | None = None,
        enforce_safety_rules: bool = True,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.workflow = workflow
        self.worker_id = worker_id
        self.agent_timeout_seconds = agent_timeout_seconds
        self.enforce_safety_rules = enforce_safety_rules
        self.summary = WorkerRunSummary()
        self._transitions: dict[PipelineStage, Callable[[PipelineState], PipelineState]] = {
            PipelineStage.CLAIMED: self._check_safety,
            PipelineStage.BRANCH_SETUP: self._setup_branch,
            PipelineStage.AGENT_EXECUTION: self._run_agent,
            PipelineStage.FINALIZATION: self._finalize,
        }

    def process_next_task(self) -> bool:
        """Claim and process one task. Returns False when no task was available."""

        logger.info("Checking for pending tasks...")
        task = self.repository.claim_pending_task(worker_id=self.worker_id)
        if task is None:
            logger.info("No pending tasks found")
            self.summary.idle_polls += 1
            return False

        logger.info("Claimed task: %s - %s", task.task_id, task.title)
        self.process_task(task)
        return True

    def process_task(self, task: TaskView) -> PipelineState:
        """Drive an already claimed task to ``REPORTED`` and record the result."""

        state = PipelineState(
            task=task,
            stage=PipelineStage.CLAIMED,
            outcome=WorkflowOutcome(success=True),
        )
        try:
            while state.stage is not PipelineStage.REPORTED:
                state = self._transitions[state.stage](state)
                if state.stage is not PipelineStage.REPORTED:
                    self.repository.touch_task(task_id=task.task_id)
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error while processing task %s", task.task_id)
            state = PipelineState(
                task=task,
                stage=PipelineStage.REPORTED,
                outcome=WorkflowOutcome(
                    success=False,
                    branch_name="",
                    commit_hash="",
                    error=str(error) or type(error).__name__,
                    failure_kind=FailureKind.UNEXPECTED_ERROR,
                ),
                status=TaskStatus.FAILED,
            )

        self._report(state)
        return state

    def _check_safety(self, state: PipelineState) -> PipelineState:
        if self.enforce_safety_rules:
            reason = validate_task_safety(state.task.title, state.task.description)
            if reason is not None:
                logger.error("Task %s rejected by safety check: %s", state.task.task_id, reason)
                return state.finish(
                    TaskStatus.FAILED,
                    WorkflowOutcome(
                        success=False,
                        error=f"Task rejected by safety check: {reason}",
                        failure_kind=FailureKind.SAFETY_REJECTED,
                    ),
                )
        return state.advance(PipelineStage.BRANCH_SETUP)

    def _setup_branch(self, state: PipelineState) -> PipelineState:
        outcome = self.workflow.setup(state.task)
        if not outcome.success:
            logger.error("Git setup failed: %s", outcome.error)
            return state.finish(TaskStatus.FAILED, replace(outcome, commit_hash=""))

        logger.info("Created branch: %s", outcome.branch_name)
        return state.advance(PipelineStage.AGENT_EXECUTION, outcome)

    def _run_agent(self, state: PipelineState) -> PipelineState:
        prompt = build_task_prompt(state.task, include_safety_rules=self.enforce_safety_rules)
        logger.info("Starting task: %s", state.task.title)
        result = self.backend.run(
            AgentRunRequest(
                task_id=state.task.task_id,
                prompt=prompt,
                working_dir=self.workflow.working_dir,
                timeout_seconds=self.agent_timeout_seconds,
            ),
        )
        if not result.success:
            logger.error("Task execution failed: %s", result.error)
            return state.finish(
                TaskStatus.FAILED,
                WorkflowOutcome(
                    success=False,
                    branch_name=state.outcome.branch_name,
                    commit_hash="",
                    error=result.error,
                    failure_kind=FailureKind.EXECUTION_FAILED,
                ),
            )

        logger.info("Task execution completed successfully")
        return state.advance(PipelineStage.FINALIZATION)

    def _finalize(self, state: PipelineState) -> PipelineState:
        outcome = self.workflow.finalize(state.task, state.outcome.branch_name or "")
        if not outcome.success:
            logger.error("Git finalization failed: %s", outcome.error)
            return state.finish(TaskStatus.FAILED, outcome)

        logger.info(
            "Git workflow completed: branch=%s commit=%s pr=%s",
            outcome.branch_name,
            outcome.commit_hash or "-",
            outcome.pr_url or "-",
        )
        if outcome.error:
            logger.warning("Task %s completed with warning: %s", state.task.task_id, outcome.error)
        return state.finish(TaskStatus.COMPLETED, outcome)

    def _report(self, state: PipelineState) -> None:
        status = state.status or TaskStatus.FAILED
        result = state.outcome.to_result()
        recorded = self.repository.update_task_status(state.task.task_id, status, result)

        self.summary.processed += 1
        if status is TaskStatus.COMPLETED:
            self.summary.completed += 1
            if result.error:
                self.summary.warnings += 1
        else:
            self.summary.failed += 1
        if recorded:
            logger.info("Task %s reported as %s", state.task.task_id, status.value)
