"""Tests for the program loader."""

from pathlib import Path

import pydantic
import pytest

from agent_orchestrator.models.program import FileTransferProgram, OperationProgram
from agent_orchestrator.program_loader import load_programs, register_programs
from agent_orchestrator.store.memory import InMemoryRecordStore

PROGRAMS_YAML = """
version: "1.0"
programs:
  - kind: operation
    id: p1
    code: BASIC
    program_type: API
    endpoints:
      TEST:
        wsdl_url: http://soap.test/Basic?wsdl
        endpoint_url: http://soap.test/Basic
    operations:
      - GetBasicData
  - kind: file-transfer
    id: p2
    code: NIGHTLY
    deposit:
      host: files.test
      path: in
      share_name: exchange
    retrieval:
      host: files.test
      path: out
      share_name: exchange
"""


async def test_loads_both_program_kinds(tmp_path: Path) -> None:
    """Parses operation and file-transfer programs."""
    path = tmp_path / "programs.yaml"
    path.write_text(PROGRAMS_YAML)

    programs = await load_programs(path)

    assert len(programs) == 2
    operation, transfer = programs
    assert isinstance(operation, OperationProgram)
    assert operation.endpoint_for("test") is not None
    assert operation.has_operation("getbasicdata")
    assert isinstance(transfer, FileTransferProgram)
    assert transfer.retrieval.path == "out"


async def test_empty_file_has_no_programs(tmp_path: Path) -> None:
    """An empty file declares no program."""
    path = tmp_path / "programs.yaml"
    path.write_text("")

    assert await load_programs(path) == ()


async def test_missing_file_fails(tmp_path: Path) -> None:
    """Raises FileNotFoundError when the file does not exist."""
    with pytest.raises(FileNotFoundError):
        await load_programs(tmp_path / "missing.yaml")


async def test_invalid_program_fails(tmp_path: Path) -> None:
    """Raises a validation error for a program of unknown kind."""
    path = tmp_path / "programs.yaml"
    path.write_text("programs:\n  - kind: batch\n    id: p1\n    code: X\n")

    with pytest.raises(pydantic.ValidationError):
        await load_programs(path)


async def test_duplicate_codes_fail(tmp_path: Path) -> None:
    """Raises ValueError when two programs share a code."""
    path = tmp_path / "programs.yaml"
    path.write_text(
        "programs:\n"
        "  - {kind: operation, id: p1, code: DUP}\n"
        "  - {kind: operation, id: p2, code: DUP}\n"
    )

    with pytest.raises(ValueError, match="DUP"):
        await load_programs(path)


async def test_registers_programs(tmp_path: Path) -> None:
    """Saves loaded programs into the store."""
    path = tmp_path / "programs.yaml"
    path.write_text(PROGRAMS_YAML)
    store = InMemoryRecordStore()

    await register_programs(store, await load_programs(path))

    assert (await store.get_program("p2")) is not None
    assert [p.id for p in await store.find_programs("code", "BASIC")] == ["p1"]
