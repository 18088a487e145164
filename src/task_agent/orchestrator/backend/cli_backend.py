"""Subprocess-based backend for CLI coding agents."""

from __future__ import annotations

import logging
import shlex

from task_agent.orchestrator.backend.base import AgentRunRequest, AgentRunResult
from task_agent.orchestrator.process import run_command

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND = "claude -p --dangerously-skip-permissions"


class CliAgentBackend:
    """Run a non-interactive CLI agent with the task prompt on standard input.

    The prompt is never passed as an argument, so its length and quoting do
    not matter. Output is streamed live and buffered for the result.
    """

    def __init__(self, command: str = DEFAULT_AGENT_COMMAND) -> None:
        self.command = command

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        try:
            argv = shlex.split(self.command)
        except ValueError as error:
            return AgentRunResult(
                success=False,
                output="",
                error=f"Invalid agent command: {error}",
            )
        if not argv:
            return AgentRunResult(success=False, output="", error="Agent command is empty.")

        logger.info("Starting agent in %s: %s", request.working_dir, argv[0])
        result = run_command(
            argv,
            cwd=request.working_dir,
            timeout_seconds=request.timeout_seconds,
            env_overrides={"CI": "true", "TASK_AGENT_TASK_ID": request.task_id},
            input_text=request.prompt,
            stream=True,
        )
        logger.info("Agent exited with code: %s", result.exit_code)

        error = result.error
        if result.timed_out:
            error = f"Agent timed out after {request.timeout_seconds}s"
        elif result.exit_code is None and not result.success:
            error = f"Failed to start agent: {result.error}"
        return AgentRunResult(
            success=result.success,
            output=result.output,
            error=error,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )
