"""Models for test execution results."""

from dataclasses import dataclass, field
from datetime import datetime

from agent_orchestrator.models.base import utc_now


@dataclass(frozen=True, kw_only=True)
class TestResult:
    """Outcome of one completed test.

    Created exactly once per test and never modified afterwards. Times are epoch
    milliseconds as reported by the agent.
    """

    __test__ = False

    id: str
    test_id: str
    success: bool
    http_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    exception_stack_trace: str | None = None
    start_time: int = 0
    end_time: int = 0
    duration_millis: int = 0
    time_taken: int | None = None
    executed_by: str | None = None
    agent_version: str | None = None
    environment: str | None = None
    created_at: datetime = field(default_factory=utc_now)
