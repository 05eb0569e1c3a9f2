"""Tests for program models."""

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from agent_orchestrator.models.program import (
    FileTransferProgram,
    OperationProgram,
    Program,
)
from agent_orchestrator.testing import factories

adapter: TypeAdapter[OperationProgram | FileTransferProgram] = TypeAdapter(Program)


def test_endpoint_lookup_ignores_case() -> None:
    """Finds the endpoint of an environment whatever its case."""
    endpoint = factories.EndpointFactory.build()
    program = factories.OperationProgramFactory.build(endpoints={"TEST": endpoint})

    assert program.endpoint_for("test") == endpoint
    assert program.endpoint_for("PROD") is None


def test_has_operation_ignores_case() -> None:
    """Matches operation names regardless of case."""
    program = factories.OperationProgramFactory.build(operations=("GetBasicData",))

    assert program.has_operation("getbasicdata")
    assert not program.has_operation("DeleteEverything")


def test_kind_selects_program_model() -> None:
    """Parses each program kind into its model."""
    operation = adapter.validate_python(
        {
            "kind": "operation",
            "id": "p1",
            "code": "BASIC",
            "endpoints": {
                "TEST": {
                    "wsdl_url": "http://soap.test/Basic?wsdl",
                    "endpoint_url": "http://soap.test/Basic",
                }
            },
        }
    )
    share = {"host": "files.test", "path": "in", "share_name": "exchange"}
    transfer = adapter.validate_python(
        {
            "kind": "file-transfer",
            "id": "p2",
            "code": "MEC",
            "deposit": share,
            "retrieval": share,
        }
    )

    assert isinstance(operation, OperationProgram)
    assert operation.operations == ()
    assert isinstance(transfer, FileTransferProgram)
    assert transfer.deposit.share_name == "exchange"


def test_unknown_kind_is_rejected() -> None:
    """Rejects a program of an unknown kind."""
    with pytest.raises(PydanticValidationError):
        adapter.validate_python({"kind": "batch", "id": "p3", "code": "X"})
