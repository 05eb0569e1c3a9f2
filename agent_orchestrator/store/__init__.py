"""Record store module."""

from agent_orchestrator.store.base import RecordStore, TestMutator
from agent_orchestrator.store.memory import InMemoryRecordStore

__all__ = ["InMemoryRecordStore", "RecordStore", "TestMutator"]
