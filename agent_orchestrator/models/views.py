"""Read models returned to callers of the lifecycle controller."""

from dataclasses import dataclass
from datetime import datetime

from agent_orchestrator.models.base import Model
from agent_orchestrator.models.result import TestResult
from agent_orchestrator.models.test import TestRecord
from agent_orchestrator.status import TestStatus


class SubmissionReceipt(Model):
    """Returned immediately by submit and replay."""

    test_id: str
    status: TestStatus
    message: str


class TestStatusView(Model):
    """Authoritative status of a test with derived progress information."""

    __test__ = False

    test_id: str
    program_code: str
    operation_name: str | None
    environment: str | None
    status: TestStatus
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    duration_millis: int | None
    progress_percentage: int
    status_message: str
    retrieved_file: str | None


@dataclass(frozen=True, kw_only=True)
class TestOutcome:
    """A finished test together with its result."""

    __test__ = False

    test: TestRecord
    result: TestResult

    @property
    def succeeded(self) -> bool:
        """Whether the test ended in SUCCESS."""
        return self.test.status is TestStatus.SUCCESS
