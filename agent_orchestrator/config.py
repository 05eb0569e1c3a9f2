"""Configuration for the orchestrator and its agent connections."""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


class AgentConfig(BaseModel):
    """Configuration of the agent's request/response API."""

    base_url: str = "http://localhost:8081"
    api_token: SecretStr | None = None
    default_timeout: float = Field(
        default=60, description="Seconds to wait for calls without their own timeout"
    )


class RelayConfig(BaseModel):
    """Configuration of the agent's streaming event channel."""

    ws_url: str = "ws://localhost:8081/ws"
    connect_timeout: float = 10
    close_timeout: float = 5
    retrieval_timeout: float = Field(
        default=300,
        description="Seconds a file-transfer session stays open for the retrieved file",
    )
    subscriber_queue_size: int = 100


class OrchestratorConfig(BaseModel):
    """Top-level configuration."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    log_dir: Path = Path("tests_logs")
    upload_dir: Path = Path("uploads")
    template_cache_ttl: float = 300
    template_cache_size: int = 128
