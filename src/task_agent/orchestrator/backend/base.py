"""Backend interface for external agent execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to run the agent once for a task."""

    task_id: str
    prompt: str
    working_dir: Path
    timeout_seconds: float | None = None


@dataclass(slots=True)
class AgentRunResult:
    """Execution outcome from the agent process."""

    success: bool
    output: str
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        """Run the agent for one task and return its outcome."""
