"""Pydantic models for the agent's HTTP API."""

from collections.abc import Mapping
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgentModel(BaseModel):
    """Base for agent payloads, which use camelCase field names on the wire."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class AgentTestRequest(AgentModel):
    """Execution request for an operation test."""

    session_id: str
    service_name: str
    wsdl_url: str
    endpoint_url: str
    operation_name: str
    request_body: str
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    timeout_millis: int = 60_000
    created_at: datetime | None = None
    submitted_by: str | None = None
    environment: str | None = None
    metadata: Mapping[str, str] = Field(default_factory=dict)


class FileTransferRequest(AgentModel):
    """Launch request for a deposit/retrieval job, sent as multipart form fields."""

    session_id: str
    deposit_host: str
    retrieval_host: str
    deposit_path: str
    retrieval_path: str
    deposit_share_name: str
    retrieval_share_name: str

    def form_fields(self) -> Mapping[str, str]:
        """Form field names expected by the agent's launch endpoint."""
        return {
            "sessionId": self.session_id,
            "dHost": self.deposit_host,
            "rHost": self.retrieval_host,
            "dPath": self.deposit_path,
            "rPath": self.retrieval_path,
            "dShareName": self.deposit_share_name,
            "rShareName": self.retrieval_share_name,
        }


class AgentTestResult(AgentModel):
    """Outcome reported by the agent for one execution."""

    success: bool
    result_id: str | None = None
    request_id: str | None = None
    service_name: str | None = None
    operation_name: str | None = None
    http_status: int | None = None
    response_body: str | None = None
    response_headers: Mapping[str, str] = Field(default_factory=dict)
    error_message: str | None = None
    exception_stack_trace: str | None = None
    start_time: int = 0
    end_time: int = 0
    duration_millis: int = 0
    time_taken: int | None = None
    created_at: datetime | None = None
    executed_by: str | None = None
    agent_version: str | None = None
    environment: str | None = None


class LaunchAcknowledgement(AgentModel):
    """Acknowledgement of a launched file transfer.

    The agent answers with a free-form JSON object; fields beyond these are kept.
    A transfer counts as accepted unless the agent says otherwise.
    """

    model_config = ConfigDict(extra="allow")

    session_id: str | None = None
    message: str | None = None
    success: bool = True
