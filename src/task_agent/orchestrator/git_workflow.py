"""Git branch workflow bracketing one agent run."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from task_agent.orchestrator.models import FailureKind, TaskView, WorkflowOutcome
from task_agent.orchestrator.process import CommandResult, run_command

logger = logging.getLogger(__name__)

NO_CHANGES_ERROR = "No changes were made by the agent"
PUSH_FAILED_WARNING = "Changes committed locally but push failed"
DEFAULT_PR_COMMAND = ("gh", "pr", "create")

_URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")


def branch_name_for(task_id: str) -> str:
    return f"task/{task_id}"


def commit_message_for(title: str) -> str:
    return f"Task: {title}"


def pull_request_body_for(task_id: str, title: str) -> str:
    return f"Automated PR for task {task_id}\n\nTask: {title}"


def extract_url(output: str) -> str | None:
    """Return the first web URL found in command output."""

    match = _URL_PATTERN.search(output)
    return match.group(0) if match else None


class GitWorkflow:
    """Version-control steps against one local working copy.

    Every step is a single blocking ``git`` (or pull-request tool) call with a
    wall-clock timeout. ``setup`` prepares a fresh task branch from the
    default branch; ``finalize`` commits, pushes and opens a pull request.
    """

    def __init__(  # noqa: PLR0913
        self,
        working_dir: Path,
        *,
        remote: str = "origin",
        command_timeout_seconds: float = 120,
        pr_command: Sequence[str] = DEFAULT_PR_COMMAND,
        create_pull_request: bool = True,
    ) -> None:
        self.working_dir = working_dir
        self.remote = remote
        self.command_timeout_seconds = command_timeout_seconds
        self.pr_command = tuple(pr_command)
        self.create_pull_request = create_pull_request

    def setup(self, task: TaskView) -> WorkflowOutcome:
        """Check out the up-to-date default branch and create ``task/<id>`` from it."""

        branch_name = branch_name_for(task.task_id)

        checkout = self.checkout_default_branch()
        if not checkout.success:
            return WorkflowOutcome(
                success=False,
                error=f"Failed to checkout default branch: {checkout.error}",
                failure_kind=FailureKind.SETUP_FAILED,
            )

        pull = self.pull_latest()
        if not pull.success:
            logger.warning("Pull warning: %s", pull.error)

        created = self.create_branch(branch_name)
        if not created.success:
            return WorkflowOutcome(
                success=False,
                error=f"Failed to create branch: {created.error}",
                failure_kind=FailureKind.SETUP_FAILED,
            )

        return WorkflowOutcome(success=True, branch_name=branch_name)

    def finalize(self, task: TaskView, branch_name: str) -> WorkflowOutcome:
        """Commit the agent's changes, push the branch and open a pull request."""

        if not self.has_changes():
            return WorkflowOutcome(
                success=False,
                branch_name=branch_name,
                error=NO_CHANGES_ERROR,
                failure_kind=FailureKind.NO_CHANGES,
            )

        staged = self.stage_all()
        if not staged.success:
            return WorkflowOutcome(
                success=False,
                branch_name=branch_name,
                error=f"Failed to stage changes: {staged.error}",
                failure_kind=FailureKind.STAGE_OR_COMMIT_FAILED,
            )

        committed = self.commit(commit_message_for(task.title))
        if not committed.success:
            return WorkflowOutcome(
                success=False,
                branch_name=branch_name,
                error=f"Failed to commit: {committed.error}",
                failure_kind=FailureKind.STAGE_OR_COMMIT_FAILED,
            )

        commit_hash = self.commit_hash()

        pushed = self.push(branch_name)
        if not pushed.success:
            logger.warning("Push warning: %s", pushed.error)
            return WorkflowOutcome(
                success=True,
                branch_name=branch_name,
                commit_hash=commit_hash,
                error=PUSH_FAILED_WARNING,
                failure_kind=FailureKind.PUSH_WARNING,
            )

        if not self.create_pull_request:
            return WorkflowOutcome(success=True, branch_name=branch_name, commit_hash=commit_hash)

        pr = self.open_pull_request(
            title=task.title,
            body=pull_request_body_for(task.task_id, task.title),
        )
        if not pr.success:
            logger.warning("PR creation warning: %s", pr.error)
            return WorkflowOutcome(
                success=True,
                branch_name=branch_name,
                commit_hash=commit_hash,
                error=f"Pull request creation failed: {pr.error}",
                failure_kind=FailureKind.PULL_REQUEST_WARNING,
            )

        return WorkflowOutcome(
            success=True,
            branch_name=branch_name,
            commit_hash=commit_hash,
            pr_url=extract_url(pr.output),
        )

    def resolve_default_branch(self) -> str:
        """Remote HEAD, else local ``main``, else ``master``."""

        remote_head = self._git("symbolic-ref", f"refs/remotes/{self.remote}/HEAD", "--short")
        if remote_head.success and remote_head.output.strip():
            return remote_head.output.strip().removeprefix(f"{self.remote}/")

        main_check = self._git("rev-parse", "--verify", "main")
        return "main" if main_check.success else "master"

    def discard_local_changes(self) -> CommandResult:
        return self._git("stash", "--include-untracked")

    def checkout_default_branch(self) -> CommandResult:
        default_branch = self.resolve_default_branch()
        logger.info("Checking out default branch: %s", default_branch)
        stashed = self.discard_local_changes()
        if not stashed.success:
            logger.debug("Stash skipped: %s", stashed.error)
        return self._git("checkout", default_branch)

    def pull_latest(self) -> CommandResult:
        return self._git("pull")

    def create_branch(self, branch_name: str) -> CommandResult:
        """Create ``branch_name`` from HEAD, replacing a stale branch of that name."""

        self._git("branch", "-D", branch_name)
        # -B also covers the branch being checked out, which -D refuses to delete.
        return self._git("checkout", "-B", branch_name)

    def has_changes(self) -> bool:
        status = self._git("status", "--porcelain")
        return status.success and bool(status.output.strip())

    def stage_all(self) -> CommandResult:
        return self._git("add", "-A")

    def commit(self, message: str) -> CommandResult:
        return self._git("commit", "-m", message)

    def commit_hash(self) -> str | None:
        result = self._git("rev-parse", "HEAD")
        return result.output.strip() if result.success else None

    def push(self, branch_name: str) -> CommandResult:
        return self._git("push", "-u", self.remote, branch_name)

    def open_pull_request(self, *, title: str, body: str) -> CommandResult:
        return run_command(
            [*self.pr_command, "--title", title, "--body", body],
            cwd=self.working_dir,
            timeout_seconds=self.command_timeout_seconds,
        )

    def _git(self, *args: str) -> CommandResult:
        return run_command(
            ["git", *args],
            cwd=self.working_dir,
            timeout_seconds=self.command_timeout_seconds,
        )
