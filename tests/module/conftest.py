"""Fixtures for module tests using WireMock testcontainers."""

from collections.abc import Generator

import docker
import pytest
from testcontainers.core import testcontainers_config
from wiremock.constants import Config
from wiremock.testing.testcontainer import WireMockContainer


def docker_available() -> bool:
    """Whether a Docker daemon answers."""
    try:
        docker.from_env().ping()
    except docker.errors.DockerException:
        return False
    return True


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Skip module tests when Docker is not available."""
    if docker_available():
        return
    skip = pytest.mark.skip(reason="Docker is not available")
    for item in items:
        if item.get_closest_marker("module") is not None:
            item.add_marker(skip)


@pytest.fixture(scope="session", autouse=True)
def _disable_ryuk() -> None:
    """Disable the extra cleanup instance, we use contexts to clean containers."""
    testcontainers_config.ryuk_disabled = True


@pytest.fixture(scope="session")
def wiremock_server() -> Generator[WireMockContainer, None, None]:
    """Start WireMock container using wiremock's testcontainer support."""
    with WireMockContainer(secure=False) as wm:
        Config.base_url = wm.get_url("__admin")
        yield wm
        print(wm.get_logs())


@pytest.fixture(scope="session")
def wiremock_url(wiremock_server: WireMockContainer) -> str:
    """URL of WireMock from the host."""
    return wiremock_server.get_url("").rstrip("/")
