"""Error taxonomy for the test orchestrator."""


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ValidationError(OrchestratorError):
    """Raised when a submission references a bad program, operation or environment."""


class NotFoundError(OrchestratorError):
    """Raised when an identity is unknown to the record store."""


class ProgramNotFoundError(NotFoundError, ValidationError):
    """Raised when a submission references an unregistered program."""


class InvalidOperationError(ValidationError):
    """Raised when an operation is not known for the requested program."""


class ConflictError(OrchestratorError):
    """Raised when an operation is incompatible with the current test state."""


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed by the status machine."""


class EmptyResultError(OrchestratorError):
    """Raised when a terminal test has no stored result."""


class StorageError(OrchestratorError):
    """Raised when the record store or upload storage is unavailable."""


class RelayConnectionError(OrchestratorError):
    """Raised when a relay session cannot be established."""


class AgentCommunicationError(OrchestratorError):
    """Raised on transport failures, timeouts and non-2xx responses from the agent.

    The original HTTP status and response body are kept for diagnostics; both are
    None when the agent could not be reached at all.
    """

    def __init__(
        self, message: str, *, status: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class EmptyResponseError(AgentCommunicationError):
    """Raised when the agent answers successfully but with nothing usable."""
