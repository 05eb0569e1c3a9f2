"""Test status machine shared by the lifecycle controller and the record store."""

from collections.abc import Mapping
from enum import StrEnum

from agent_orchestrator.errors import InvalidTransitionError


class TestStatus(StrEnum):
    """Lifecycle status of a test."""

    __test__ = False

    CREATED = "CREATED"
    PENDING_AGENT = "PENDING_AGENT"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is allowed from this status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TestStatus.SUCCESS, TestStatus.FAILED})

NEXT_STATUSES: Mapping[TestStatus, frozenset[TestStatus]] = {
    TestStatus.CREATED: frozenset({TestStatus.PENDING_AGENT, TestStatus.FAILED}),
    TestStatus.PENDING_AGENT: frozenset({TestStatus.RUNNING, TestStatus.FAILED}),
    TestStatus.RUNNING: frozenset({TestStatus.SUCCESS, TestStatus.FAILED}),
    TestStatus.SUCCESS: frozenset(),
    TestStatus.FAILED: frozenset(),
}

PROGRESS: Mapping[TestStatus, int] = {
    TestStatus.CREATED: 10,
    TestStatus.PENDING_AGENT: 25,
    TestStatus.RUNNING: 50,
    TestStatus.SUCCESS: 100,
    TestStatus.FAILED: 100,
}

MESSAGES: Mapping[TestStatus, str] = {
    TestStatus.CREATED: "Test created, waiting to be processed",
    TestStatus.PENDING_AGENT: "Sending test to the agent...",
    TestStatus.RUNNING: "Test running...",
    TestStatus.SUCCESS: "Test completed successfully",
    TestStatus.FAILED: "Test failed",
}


def can_transition(current: TestStatus, target: TestStatus) -> bool:
    """Check whether moving from current to target is allowed.

    Re-delivering the same terminal status is accepted as a no-op.
    """
    if current == target and current.is_terminal:
        return True
    return target in NEXT_STATUSES[current]


def check_transition(current: TestStatus, target: TestStatus) -> None:
    """Raise InvalidTransitionError if moving from current to target is not allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move test from {current} to {target}"
        )


def progress_percentage(status: TestStatus) -> int:
    """Approximate progress for a status."""
    return PROGRESS[status]


def status_message(status: TestStatus) -> str:
    """Human-readable description of a status."""
    return MESSAGES[status]
