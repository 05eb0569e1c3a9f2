"""In-memory record store."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from agent_orchestrator.errors import NotFoundError
from agent_orchestrator.models.program import Program
from agent_orchestrator.models.result import TestResult
from agent_orchestrator.models.test import TestRecord
from agent_orchestrator.store.base import RecordStore, TestMutator

log = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """Record store keeping everything in dictionaries of the running process.

    Writers of one test are serialized by a lock per test identity; different tests
    never wait on each other.
    """

    def __init__(self) -> None:
        self._programs: dict[str, Program] = {}
        self._tests: dict[str, TestRecord] = {}
        self._results: dict[str, TestResult] = {}
        self._test_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._results_lock = asyncio.Lock()

    async def get_program(self, program_id: str) -> Program | None:
        return self._programs.get(program_id)

    async def save_program(self, program: Program) -> Program:
        self._programs[program.id] = program
        return program

    async def delete_program(self, program_id: str) -> None:
        self._programs.pop(program_id, None)

    async def find_programs(self, field: str, value: Any) -> Sequence[Program]:
        return [p for p in self._programs.values() if getattr(p, field, None) == value]

    async def get_test(self, test_id: str) -> TestRecord | None:
        return self._tests.get(test_id)

    async def save_test(self, record: TestRecord) -> TestRecord:
        async with self._test_locks[record.id]:
            self._tests[record.id] = record
        return record

    async def update_test(self, test_id: str, mutator: TestMutator) -> TestRecord:
        async with self._test_locks[test_id]:
            current = self._tests.get(test_id)
            if current is None:
                raise NotFoundError(f"Test not found: {test_id}")
            updated = mutator(current)
            self._tests[test_id] = updated
            return updated

    async def delete_test(self, test_id: str) -> None:
        async with self._test_locks[test_id]:
            self._tests.pop(test_id, None)
        self._test_locks.pop(test_id, None)

    async def find_tests(self, field: str, value: Any) -> Sequence[TestRecord]:
        return [t for t in self._tests.values() if getattr(t, field, None) == value]

    async def add_result(self, result: TestResult) -> bool:
        async with self._results_lock:
            if result.test_id in self._results:
                log.debug("Result already stored for test %s", result.test_id)
                return False
            self._results[result.test_id] = result
            return True

    async def get_result(self, test_id: str) -> TestResult | None:
        return self._results.get(test_id)
