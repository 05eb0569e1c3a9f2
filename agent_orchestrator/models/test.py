"""Models for test records, one per execution attempt against a program."""

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field, SecretStr

from agent_orchestrator.models.base import Model
from agent_orchestrator.models.program import ShareLocation
from agent_orchestrator.status import TestStatus

DEFAULT_TIMEOUT_MILLIS = 60_000


class OperationParameters(Model):
    """Parameters of a SOAP operation call."""

    kind: Literal["operation"] = "operation"
    environment: str
    service_name: str
    operation_name: str
    wsdl_url: str
    endpoint_url: str
    request_body: str = Field(..., description="SOAP request envelope")
    username: str | None = None
    password: SecretStr | None = None
    timeout_millis: int = DEFAULT_TIMEOUT_MILLIS
    metadata: Mapping[str, str] = Field(default_factory=dict)


class FileTransferParameters(Model):
    """Parameters of a file deposit/retrieval job."""

    kind: Literal["file-transfer"] = "file-transfer"
    deposit_file: str = Field(..., description="Stored name of the deposited file")
    deposit: ShareLocation
    retrieval: ShareLocation


TestParameters = Annotated[
    OperationParameters | FileTransferParameters, Field(discriminator="kind")
]


class TestRecord(Model):
    """Persisted state of one test execution attempt."""

    __test__ = False

    id: str
    program_id: str
    program_code: str
    launched_by: str | None = None
    parameters: TestParameters
    status: TestStatus = TestStatus.CREATED
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration: int | None = Field(
        default=None, description="Measured duration in whole seconds"
    )
    retrieved_file: str | None = None
    replay_of: str | None = Field(
        default=None, description="Identity of the test this one replays"
    )

    @property
    def environment(self) -> str | None:
        """Target environment, only meaningful for operation tests."""
        if isinstance(self.parameters, OperationParameters):
            return self.parameters.environment
        return None

    @property
    def operation_name(self) -> str | None:
        """Invoked operation, only meaningful for operation tests."""
        if isinstance(self.parameters, OperationParameters):
            return self.parameters.operation_name
        return None
