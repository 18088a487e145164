"""Agent backend implementations."""

from task_agent.orchestrator.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from task_agent.orchestrator.backend.cli_backend import DEFAULT_AGENT_COMMAND, CliAgentBackend

__all__ = [
    "DEFAULT_AGENT_COMMAND",
    "AgentBackend",
    "AgentRunRequest",
    "AgentRunResult",
    "CliAgentBackend",
]
