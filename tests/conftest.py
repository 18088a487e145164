"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from pathlib import Path

import pytest

from task_agent.orchestrator.repository import TaskRepository

PR_URL = "https://github.com/acme/widgets/pull/1"

_FAKE_PR_TOOL = f"""\
import sys

print("Creating pull request for task branch")
print({PR_URL!r})
"""


def echo_agent_command(*args: str) -> str:
    """Command line running the bundled echo agent with the current interpreter."""

    return shlex.join([sys.executable, "-m", "task_agent.orchestrator.backend.echo_agent", *args])


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Drop task agent settings from the environment and pin a git identity."""

    for name in list(os.environ):
        if name.startswith("TASK_AGENT_"):
            monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Task Agent Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Task Agent Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@example.com")


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Working copy cloned from a bare ``origin`` whose default branch is ``main``."""

    remote = tmp_path / "origin.git"
    seed = tmp_path / "seed"
    work = tmp_path / "work"

    git(tmp_path, "init", "--bare", "-b", "main", str(remote))
    git(tmp_path, "init", "-b", "main", str(seed))
    (seed / "README.md").write_text("# widgets\n", "utf-8")
    git(seed, "add", "-A")
    git(seed, "commit", "-m", "Initial commit")
    git(seed, "remote", "add", "origin", str(remote))
    git(seed, "push", "-u", "origin", "main")
    git(tmp_path, "clone", str(remote), str(work))
    return work


@pytest.fixture()
def fake_pr_tool(tmp_path: Path) -> tuple[str, ...]:
    """Pull-request command that prints a URL and exits 0."""

    script = tmp_path / "fake_pr.py"
    script.write_text(_FAKE_PR_TOOL, "utf-8")
    return (sys.executable, str(script))


@pytest.fixture()
def repository(tmp_path: Path):
    repo = TaskRepository(tmp_path / "tasks.db")
    repo.init_schema()
    yield repo
    repo.close()
