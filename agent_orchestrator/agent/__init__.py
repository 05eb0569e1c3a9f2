"""Remote agent client module."""

from agent_orchestrator.agent.client import AgentClient
from agent_orchestrator.agent.models import (
    AgentTestRequest,
    AgentTestResult,
    FileTransferRequest,
    LaunchAcknowledgement,
)

__all__ = [
    "AgentClient",
    "AgentTestRequest",
    "AgentTestResult",
    "FileTransferRequest",
    "LaunchAcknowledgement",
]
