"""Abstract base class for record stores."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, TypeAlias

from agent_orchestrator.models.program import Program
from agent_orchestrator.models.result import TestResult
from agent_orchestrator.models.test import TestRecord

TestMutator: TypeAlias = Callable[[TestRecord], TestRecord]


class RecordStore(ABC):
    """Durable storage for programs, tests and results.

    Implementations hold no business logic but must serialize concurrent writers of
    the same test identity: update_test applies its mutator to the latest stored
    record while no other update of that test is in progress.
    """

    @abstractmethod
    async def get_program(self, program_id: str) -> Program | None:
        """Return a program by identity, or None."""

    @abstractmethod
    async def save_program(self, program: Program) -> Program:
        """Insert or replace a program."""

    @abstractmethod
    async def delete_program(self, program_id: str) -> None:
        """Remove a program if present."""

    @abstractmethod
    async def find_programs(self, field: str, value: Any) -> Sequence[Program]:
        """Return programs whose attribute field equals value."""

    @abstractmethod
    async def get_test(self, test_id: str) -> TestRecord | None:
        """Return a test by identity, or None."""

    @abstractmethod
    async def save_test(self, record: TestRecord) -> TestRecord:
        """Insert or replace a test."""

    @abstractmethod
    async def update_test(self, test_id: str, mutator: TestMutator) -> TestRecord:
        """Atomically replace a test with mutator(current) and return the new value.

        Raises:
            NotFoundError: If the test does not exist

        """

    @abstractmethod
    async def delete_test(self, test_id: str) -> None:
        """Remove a test if present."""

    @abstractmethod
    async def find_tests(self, field: str, value: Any) -> Sequence[TestRecord]:
        """Return tests whose attribute field equals value."""

    @abstractmethod
    async def add_result(self, result: TestResult) -> bool:
        """Insert a result unless its test already has one.

        Returns:
            True if the result was stored, False if a result already existed

        """

    @abstractmethod
    async def get_result(self, test_id: str) -> TestResult | None:
        """Return the result of a test, or None."""
