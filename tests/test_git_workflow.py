from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from conftest import PR_URL, git
from task_agent.orchestrator.git_workflow import (
    NO_CHANGES_ERROR,
    PUSH_FAILED_WARNING,
    GitWorkflow,
    extract_url,
)
from task_agent.orchestrator.models import FailureKind, TaskStatus, TaskView

pytestmark = [
    allure.epic("Task Pipeline"),
    allure.feature("Git Branch Workflow"),
]


def _task(task_id: str = "t-100", title: str = "Add dark mode toggle") -> TaskView:
    now = datetime.now(tz=UTC)
    return TaskView(
        task_id=task_id,
        title=title,
        description=None,
        status=TaskStatus.IN_PROGRESS,
        claimed_by="w1",
        started_at=now,
        heartbeat_at=now,
        finished_at=None,
        result=None,
        created_at=now,
        updated_at=now,
    )


def _current_branch(repo: Path) -> str:
    return git(repo, "rev-parse", "--abbrev-ref", "HEAD")


def _init_local_repo(path: Path, branch: str) -> Path:
    path.mkdir()
    git(path, "init", "-b", branch)
    (path / "README.md").write_text("local\n", "utf-8")
    git(path, "add", "-A")
    git(path, "commit", "-m", "Initial commit")
    return path


def test_default_branch_comes_from_remote_head(git_repo: Path) -> None:
    assert GitWorkflow(git_repo).resolve_default_branch() == "main"


def test_default_branch_falls_back_to_local_main(tmp_path: Path) -> None:
    repo = _init_local_repo(tmp_path / "local-main", "main")

    assert GitWorkflow(repo).resolve_default_branch() == "main"


def test_default_branch_falls_back_to_master(tmp_path: Path) -> None:
    repo = _init_local_repo(tmp_path / "local-master", "master")

    assert GitWorkflow(repo).resolve_default_branch() == "master"


def test_setup_creates_task_branch_from_default(git_repo: Path) -> None:
    outcome = GitWorkflow(git_repo).setup(_task())

    assert outcome.success is True
    assert outcome.branch_name == "task/t-100"
    assert _current_branch(git_repo) == "task/t-100"


def test_setup_is_idempotent_for_existing_branch(git_repo: Path) -> None:
    workflow = GitWorkflow(git_repo)
    assert workflow.setup(_task()).success
    (git_repo / "leftover.txt").write_text("partial work\n", "utf-8")
    git(git_repo, "add", "-A")
    git(git_repo, "commit", "-m", "Partial attempt")

    outcome = workflow.setup(_task())

    assert outcome.success is True
    assert _current_branch(git_repo) == "task/t-100"
    assert not (git_repo / "leftover.txt").exists()


def test_setup_sets_aside_uncommitted_changes(git_repo: Path) -> None:
    (git_repo / "scratch.txt").write_text("dirty\n", "utf-8")

    outcome = GitWorkflow(git_repo).setup(_task())

    assert outcome.success is True
    assert not (git_repo / "scratch.txt").exists()
    assert git(git_repo, "status", "--porcelain") == ""


def test_setup_fails_outside_a_repository(tmp_path: Path) -> None:
    plain_dir = tmp_path / "plain"
    plain_dir.mkdir()

    outcome = GitWorkflow(plain_dir).setup(_task())

    assert outcome.success is False
    assert outcome.failure_kind is FailureKind.SETUP_FAILED
    assert outcome.branch_name is None
    assert outcome.error is not None
    assert outcome.error.startswith("Failed to checkout default branch")


def test_setup_tolerates_pull_failure(tmp_path: Path) -> None:
    repo = _init_local_repo(tmp_path / "no-remote", "main")

    outcome = GitWorkflow(repo).setup(_task())

    assert outcome.success is True
    assert _current_branch(repo) == "task/t-100"


def test_finalize_without_changes_fails(git_repo: Path) -> None:
    workflow = GitWorkflow(git_repo)
    workflow.setup(_task())

    outcome = workflow.finalize(_task(), "task/t-100")

    assert outcome.success is False
    assert outcome.error == NO_CHANGES_ERROR
    assert outcome.failure_kind is FailureKind.NO_CHANGES
    assert outcome.commit_hash is None


def test_finalize_commits_pushes_and_opens_pull_request(
    git_repo: Path,
    fake_pr_tool: tuple[str, ...],
) -> None:
    workflow = GitWorkflow(git_repo, pr_command=fake_pr_tool)
    workflow.setup(_task())
    (git_repo / "dark_mode.css").write_text("body { background: #000; }\n", "utf-8")

    outcome = workflow.finalize(_task(), "task/t-100")

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.pr_url == PR_URL
    assert outcome.commit_hash == git(git_repo, "rev-parse", "HEAD")
    assert git(git_repo, "log", "-1", "--format=%s") == "Task: Add dark mode toggle"
    assert "task/t-100" in git(git_repo, "ls-remote", "--heads", "origin", "task/t-100")


def test_finalize_degrades_when_push_fails(git_repo: Path, tmp_path: Path) -> None:
    git(git_repo, "remote", "set-url", "origin", str(tmp_path / "missing.git"))
    workflow = GitWorkflow(
        git_repo,
        pr_command=(sys.executable, "-c", "import sys; sys.exit(1)"),
    )
    (git_repo / "feature.txt").write_text("new\n", "utf-8")
    git(git_repo, "checkout", "-b", "task/t-100")

    outcome = workflow.finalize(_task(), "task/t-100")

    assert outcome.success is True
    assert outcome.error == PUSH_FAILED_WARNING
    assert outcome.failure_kind is FailureKind.PUSH_WARNING
    assert outcome.commit_hash == git(git_repo, "rev-parse", "HEAD")
    assert outcome.pr_url is None


def test_finalize_degrades_when_pull_request_fails(git_repo: Path) -> None:
    workflow = GitWorkflow(
        git_repo,
        pr_command=(
            sys.executable,
            "-c",
            "import sys; sys.stderr.write('gh: not authenticated\\n'); sys.exit(1)",
        ),
    )
    workflow.setup(_task())
    (git_repo / "feature.txt").write_text("new\n", "utf-8")

    outcome = workflow.finalize(_task(), "task/t-100")

    assert outcome.success is True
    assert outcome.pr_url is None
    assert outcome.failure_kind is FailureKind.PULL_REQUEST_WARNING
    assert outcome.error == "Pull request creation failed: gh: not authenticated"


def test_finalize_skips_pull_request_when_disabled(git_repo: Path) -> None:
    workflow = GitWorkflow(git_repo, create_pull_request=False)
    workflow.setup(_task())
    (git_repo / "feature.txt").write_text("new\n", "utf-8")

    outcome = workflow.finalize(_task(), "task/t-100")

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.pr_url is None
    assert outcome.commit_hash


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("https://github.com/acme/widgets/pull/12\n", "https://github.com/acme/widgets/pull/12"),
        (
            "Creating pull request...\n\nhttps://github.com/acme/widgets/pull/3 created",
            "https://github.com/acme/widgets/pull/3",
        ),
        ("See <http://git.example.com/pr/9> for details", "http://git.example.com/pr/9"),
        ("warning: no url here", None),
        ("", None),
    ],
)
def test_extract_url(output: str, expected: str | None) -> None:
    assert extract_url(output) == expected
