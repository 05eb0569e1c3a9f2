"""Models for incoming test submissions."""

from collections.abc import Mapping
from typing import TypeAlias

from pydantic import Field, SecretStr

from agent_orchestrator.models.base import Model
from agent_orchestrator.models.test import DEFAULT_TIMEOUT_MILLIS


class OperationSubmission(Model):
    """Request to invoke one operation of an operation-based program."""

    program_id: str
    environment: str = Field(..., description="Target environment (DEV, TEST, PROD)")
    operation_name: str
    request_body: str
    username: str | None = None
    password: SecretStr | None = None
    timeout_millis: int | None = Field(
        default=None, description="Agent call timeout, defaults to 60 seconds"
    )
    launched_by: str | None = None
    metadata: Mapping[str, str] = Field(default_factory=dict)

    @property
    def effective_timeout_millis(self) -> int:
        """Timeout to use, falling back to the default."""
        return self.timeout_millis or DEFAULT_TIMEOUT_MILLIS


class FileTransferSubmission(Model):
    """Request to run a deposit/retrieval job with an already stored file."""

    program_id: str
    deposit_file: str = Field(..., description="Stored name of the file to deposit")
    launched_by: str | None = None


Submission: TypeAlias = OperationSubmission | FileTransferSubmission
