"""Runtime configuration for the task agent."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass, field
from pathlib import Path

from task_agent.orchestrator.backend.cli_backend import DEFAULT_AGENT_COMMAND

DEFAULT_DB_PATH = ".task_agent.db"
DEFAULT_PR_COMMAND = "gh pr create"


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass(slots=True)
class WorkerSettings:
    """Polling loop settings."""

    working_dir: Path = field(default_factory=Path.cwd)
    poll_interval_seconds: float = 10.0
    busy_poll_delay_seconds: float = 1.0
    worker_id: str = field(default_factory=_default_worker_id)
    stale_task_seconds: int = 0


@dataclass(slots=True)
class AgentSettings:
    """External agent process settings."""

    command: str = DEFAULT_AGENT_COMMAND
    timeout_seconds: int = 1_800
    enforce_safety_rules: bool = True


@dataclass(slots=True)
class GitSettings:
    """Version-control workflow settings."""

    remote: str = "origin"
    command_timeout_seconds: int = 120
    pr_command: str = DEFAULT_PR_COMMAND
    create_pull_request: bool = True

    @property
    def pr_argv(self) -> tuple[str, ...]:
        return tuple(shlex.split(self.pr_command))


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    git: GitSettings = field(default_factory=GitSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("TASK_AGENT_DB_PATH", DEFAULT_DB_PATH)),
            log_level=os.getenv("TASK_AGENT_LOG_LEVEL", "INFO").upper(),
            sqlite_busy_timeout_ms=int(os.getenv("TASK_AGENT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                working_dir=Path(os.getenv("TASK_AGENT_WORKING_DIR", os.getcwd())).resolve(),
                poll_interval_seconds=float(
                    os.getenv("TASK_AGENT_POLL_INTERVAL_SECONDS", "10"),
                ),
                busy_poll_delay_seconds=float(
                    os.getenv("TASK_AGENT_BUSY_POLL_DELAY_SECONDS", "1"),
                ),
                worker_id=os.getenv("TASK_AGENT_WORKER_ID") or _default_worker_id(),
                stale_task_seconds=int(os.getenv("TASK_AGENT_STALE_TASK_SECONDS", "0")),
            ),
            agent=AgentSettings(
                command=os.getenv("TASK_AGENT_AGENT_COMMAND", DEFAULT_AGENT_COMMAND),
                timeout_seconds=int(os.getenv("TASK_AGENT_AGENT_TIMEOUT_SECONDS", "1800")),
                enforce_safety_rules=_env_bool("TASK_AGENT_ENFORCE_SAFETY_RULES", default=True),
            ),
            git=GitSettings(
                remote=os.getenv("TASK_AGENT_GIT_REMOTE", "origin"),
                command_timeout_seconds=int(
                    os.getenv("TASK_AGENT_GIT_COMMAND_TIMEOUT_SECONDS", "120"),
                ),
                pr_command=os.getenv("TASK_AGENT_PR_COMMAND", DEFAULT_PR_COMMAND),
                create_pull_request=_env_bool("TASK_AGENT_CREATE_PULL_REQUEST", default=True),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if the worker cannot start."""

        db_dir = self.db_path.resolve().parent
        if not db_dir.is_dir():
            raise ValueError(f"Task store directory does not exist: {db_dir}")
        if not self.worker.working_dir.is_dir():
            raise ValueError(
                "TASK_AGENT_WORKING_DIR must be an existing directory, "
                f"got {str(self.worker.working_dir)!r}.",
            )
        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("TASK_AGENT_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.busy_poll_delay_seconds < 0:
            raise ValueError("TASK_AGENT_BUSY_POLL_DELAY_SECONDS must be >= 0.")
        if self.worker.stale_task_seconds < 0:
            raise ValueError("TASK_AGENT_STALE_TASK_SECONDS must be >= 0.")
        if not self.agent.command.strip():
            raise ValueError("TASK_AGENT_AGENT_COMMAND must not be empty.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("TASK_AGENT_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.git.command_timeout_seconds <= 0:
            raise ValueError("TASK_AGENT_GIT_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.git.create_pull_request and not self.git.pr_argv:
            raise ValueError("TASK_AGENT_PR_COMMAND must not be empty.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
