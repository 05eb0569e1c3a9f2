"""Fixtures for integration tests."""

from collections.abc import AsyncGenerator

import pytest
from aiohttp.test_utils import TestServer

from agent_orchestrator.broadcast import Broadcaster
from agent_orchestrator.completion import CompletionChannel
from agent_orchestrator.config import AgentConfig, RelayConfig
from agent_orchestrator.testing.fake_agent import FakeAgent


@pytest.fixture
def fake_agent() -> FakeAgent:
    """Create an agent stand-in."""
    return FakeAgent()


@pytest.fixture
async def agent_server(fake_agent: FakeAgent) -> AsyncGenerator[TestServer, None]:
    """Serve the agent stand-in on a local port."""
    async with TestServer(fake_agent.app) as server:
        yield server


@pytest.fixture
def agent_config(agent_server: TestServer) -> AgentConfig:
    """Agent configuration pointing at the local server."""
    return AgentConfig(base_url=f"http://{agent_server.host}:{agent_server.port}")


@pytest.fixture
def relay_config(agent_server: TestServer) -> RelayConfig:
    """Relay configuration pointing at the local server."""
    return RelayConfig(
        ws_url=f"ws://{agent_server.host}:{agent_server.port}/ws",
        connect_timeout=2,
        close_timeout=1,
        retrieval_timeout=1,
    )


@pytest.fixture
def broadcaster() -> Broadcaster:
    """Create broadcast channel."""
    return Broadcaster()


@pytest.fixture
def completions() -> CompletionChannel:
    """Create completion channel."""
    return CompletionChannel()
