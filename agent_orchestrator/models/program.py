"""Models for registered programs, the remote targets tests run against."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field

from agent_orchestrator.models.base import Model


class Endpoint(Model):
    """Per-environment coordinates of an operation-based program."""

    wsdl_url: str = Field(..., description="URL of the service WSDL")
    endpoint_url: str = Field(..., description="URL the SOAP calls are sent to")


class ShareLocation(Model):
    """A file share used to deposit or retrieve files."""

    host: str = Field(..., description="Host serving the share")
    path: str = Field(..., description="Directory inside the share")
    share_name: str = Field(..., description="Name of the share on the host")


class OperationProgram(Model):
    """A SOAP service whose operations are invoked by the agent."""

    kind: Literal["operation"] = "operation"
    id: str = Field(..., description="Program identity")
    code: str = Field(..., description="Program code, also used as service name")
    description: str | None = None
    program_type: Literal["API", "MDP", "SQL"] = "API"
    active: bool = True
    endpoints: Mapping[str, Endpoint] = Field(
        default_factory=dict, description="Endpoints keyed by environment (DEV, TEST...)"
    )
    operations: Sequence[str] = Field(
        default_factory=tuple, description="Operation names discovered from the WSDL"
    )
    last_synced_at: datetime | None = None

    def endpoint_for(self, environment: str) -> Endpoint | None:
        """Find the endpoint of an environment, ignoring case."""
        for name, endpoint in self.endpoints.items():
            if name.lower() == environment.lower():
                return endpoint
        return None

    def has_operation(self, operation_name: str) -> bool:
        """Check whether an operation is known, ignoring case."""
        return any(op.lower() == operation_name.lower() for op in self.operations)


class FileTransferProgram(Model):
    """A program exercised by depositing a file and retrieving the produced one."""

    kind: Literal["file-transfer"] = "file-transfer"
    id: str = Field(..., description="Program identity")
    code: str = Field(..., description="Program code")
    description: str | None = None
    active: bool = True
    deposit: ShareLocation = Field(..., description="Where input files are deposited")
    retrieval: ShareLocation = Field(..., description="Where output files appear")


Program = Annotated[
    OperationProgram | FileTransferProgram, Field(discriminator="kind")
]
