"""Tests for the in-memory record store."""

import asyncio

import pytest

from agent_orchestrator.errors import NotFoundError
from agent_orchestrator.models.test import TestRecord
from agent_orchestrator.status import TestStatus
from agent_orchestrator.store.memory import InMemoryRecordStore
from agent_orchestrator.testing import factories


@pytest.fixture
def store() -> InMemoryRecordStore:
    """Create an empty in-memory store."""
    return InMemoryRecordStore()


async def test_saves_and_finds_programs(store: InMemoryRecordStore) -> None:
    """Stores programs by id and finds them by field."""
    program = factories.OperationProgramFactory.build(code="BILLING")
    await store.save_program(program)

    assert await store.get_program(program.id) == program
    assert await store.find_programs("code", "BILLING") == [program]
    assert await store.find_programs("code", "OTHER") == []

    await store.delete_program(program.id)
    assert await store.get_program(program.id) is None


async def test_saves_and_finds_tests(store: InMemoryRecordStore) -> None:
    """Stores tests by id and finds them by field."""
    record = factories.TestRecordFactory.build(program_id="p1")
    await store.save_test(record)

    assert await store.get_test(record.id) == record
    assert await store.find_tests("program_id", "p1") == [record]

    await store.delete_test(record.id)
    assert await store.get_test(record.id) is None


async def test_update_unknown_test_fails(store: InMemoryRecordStore) -> None:
    """Raises NotFoundError when updating a missing test."""
    with pytest.raises(NotFoundError):
        await store.update_test("missing", lambda record: record)


async def test_serializes_concurrent_updates(store: InMemoryRecordStore) -> None:
    """Concurrent read-modify-write updates of one test never lose a write."""
    record = factories.TestRecordFactory.build(duration=0)
    await store.save_test(record)

    def increment(current: TestRecord) -> TestRecord:
        return current.model_copy(update={"duration": (current.duration or 0) + 1})

    await asyncio.gather(*(store.update_test(record.id, increment) for _ in range(50)))

    updated = await store.get_test(record.id)
    assert updated is not None
    assert updated.duration == 50


async def test_first_result_wins(store: InMemoryRecordStore) -> None:
    """Only the first result of a test is stored."""
    first = factories.TestResultFactory.build(test_id="t1", success=True)
    second = factories.TestResultFactory.build(test_id="t1", success=False)

    inserted = await asyncio.gather(store.add_result(first), store.add_result(second))

    assert inserted == [True, False]
    assert await store.get_result("t1") == first


async def test_update_keeps_mutator_result(store: InMemoryRecordStore) -> None:
    """Returns and stores the record produced by the mutator."""
    record = factories.TestRecordFactory.build()
    await store.save_test(record)

    updated = await store.update_test(
        record.id,
        lambda current: current.model_copy(update={"status": TestStatus.PENDING_AGENT}),
    )

    assert updated.status is TestStatus.PENDING_AGENT
    assert await store.get_test(record.id) == updated
