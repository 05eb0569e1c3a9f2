"""Request/response client for the remote agent."""

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from agent_orchestrator.agent.models import (
    AgentTestRequest,
    AgentTestResult,
    FileTransferRequest,
    LaunchAcknowledgement,
)
from agent_orchestrator.config import AgentConfig
from agent_orchestrator.errors import AgentCommunicationError, EmptyResponseError

log = logging.getLogger(__name__)

OPERATION_NAMES = TypeAdapter(list[str])
JSON_OBJECT = TypeAdapter(dict[str, Any])

HEALTH_TIMEOUT = 5.0


@dataclass(frozen=True, kw_only=True)
class AgentClient:
    """Client for the agent's HTTP API.

    Every call is independent; the agent treats each execution request as a fresh
    run, so retries are left to the caller.
    """

    config: AgentConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AgentConfig
    ) -> AsyncGenerator["AgentClient", None]:
        """Create client with managed session lifecycle."""
        headers = {"Accept": "application/json"}
        if config.api_token is not None:
            headers["Authorization"] = f"Bearer {config.api_token.get_secret_value()}"
        async with aiohttp.ClientSession(
            base_url=config.base_url,
            headers=headers,
        ) as session:
            yield cls(config=config, session=session)

    async def execute(
        self, request: AgentTestRequest, timeout: float | None = None
    ) -> AgentTestResult:
        """Execute an operation test on the agent and return its result.

        Args:
            request: Full parameter set of the test
            timeout: Seconds to wait, defaults to the request's own timeout

        Raises:
            AgentCommunicationError: On transport errors, timeouts and non-2xx answers
            EmptyResponseError: If the agent answers without a body

        """
        if timeout is None:
            timeout = request.timeout_millis / 1000
        log.info(
            "Sending test %s to agent: base_url=%s, operation=%s, environment=%s",
            request.session_id,
            self.config.base_url,
            request.operation_name,
            request.environment,
        )

        text = await self._call(
            "POST",
            "/api/test/execute",
            description=f"test {request.session_id}",
            timeout=timeout,
            json=request.model_dump(by_alias=True, mode="json"),
        )
        result = self._parse_result(text, request.session_id)

        log.info(
            "Test %s executed by agent: %s",
            request.session_id,
            "SUCCESS" if result.success else "FAILED",
        )
        return result

    async def launch_file_transfer(
        self,
        request: FileTransferRequest,
        filename: str,
        content: bytes,
        timeout: float | None = None,
    ) -> LaunchAcknowledgement:
        """Launch a deposit/retrieval job, uploading the file to deposit.

        The agent only acknowledges the launch; the retrieved file is announced
        later on the relay.

        Raises:
            AgentCommunicationError: On transport errors, timeouts, non-2xx answers
                and bodies that are not a JSON object
            EmptyResponseError: If the agent answers without an acknowledgement

        """
        form = aiohttp.FormData()
        form.add_field(
            "file", content, filename=filename, content_type="application/octet-stream"
        )
        for name, value in request.form_fields().items():
            form.add_field(name, value)

        log.info(
            "Launching file transfer %s on agent: file=%s, deposit=%s, retrieval=%s",
            request.session_id,
            filename,
            request.deposit_host,
            request.retrieval_host,
        )

        text = await self._call(
            "POST",
            "/mec/launch",
            description=f"file transfer {request.session_id}",
            timeout=timeout or self.config.default_timeout,
            data=form,
        )
        acknowledgement = self._parse_acknowledgement(text, request.session_id)

        log.info(
            "File transfer %s acknowledged by agent: %s",
            request.session_id,
            acknowledgement.message or text,
        )
        return acknowledgement

    async def discover_operations(self, wsdl_url: str) -> Sequence[str]:
        """Return the operation names declared by a WSDL.

        Raises:
            EmptyResponseError: If the WSDL declares no operation

        """
        text = await self._call(
            "GET",
            "/api/wsdl/operations",
            description=f"operation discovery of {wsdl_url}",
            timeout=self.config.default_timeout,
            params={"wsdlUrl": wsdl_url},
        )
        try:
            operations = OPERATION_NAMES.validate_json(text) if text.strip() else []
        except PydanticValidationError as e:
            raise AgentCommunicationError(
                f"Unreadable operation list for {wsdl_url}", body=text
            ) from e

        if not operations:
            log.warning("No operation found in WSDL %s", wsdl_url)
            raise EmptyResponseError(
                f"The WSDL {wsdl_url} declares no operation", status=200, body=text
            )

        log.info("%d operation(s) discovered in %s", len(operations), wsdl_url)
        return operations

    async def fetch_operation_template(self, wsdl_url: str, operation_name: str) -> str:
        """Return a SOAP request template generated by the agent for an operation."""
        template = await self._call(
            "GET",
            "/api/wsdl/template",
            description=f"template of {operation_name}",
            timeout=self.config.default_timeout,
            params={"wsdlUrl": wsdl_url, "operationName": operation_name},
        )
        if not template.strip():
            log.error("Agent returned an empty template for %s", operation_name)
            raise EmptyResponseError(
                f"Empty template generated for {operation_name}", status=200, body=template
            )
        return template

    async def is_available(self) -> bool:
        """Probe the agent's health endpoint. Never raises."""
        log.debug("Checking agent availability: %s", self.config.base_url)
        try:
            async with self.session.get(
                "/actuator/health",
                timeout=aiohttp.ClientTimeout(total=HEALTH_TIMEOUT),
            ) as response:
                if response.status != 200:
                    log.warning("Agent health check returned %d", response.status)
                return response.status == 200
        except Exception as e:
            log.warning("Agent not available: %s", e)
            return False

    async def _call(
        self,
        method: str,
        url: str,
        *,
        description: str,
        timeout: float,
        **kwargs: Any,
    ) -> str:
        """Send a request and return the body of a 2xx response."""
        try:
            async with self.session.request(
                method, url, timeout=aiohttp.ClientTimeout(total=timeout), **kwargs
            ) as response:
                text = await response.text()
                if not 200 <= response.status < 300:
                    log.error(
                        "Agent returned an error for %s: status=%d body=%s",
                        description,
                        response.status,
                        text,
                    )
                    raise AgentCommunicationError(
                        f"Agent error for {description} (status {response.status}): "
                        f"{text}",
                        status=response.status,
                        body=text,
                    )
                return text
        except TimeoutError as e:
            raise AgentCommunicationError(
                f"Agent did not answer {description} within {timeout} seconds"
            ) from e
        except aiohttp.ClientError as e:
            raise AgentCommunicationError(
                f"Could not communicate with the agent for {description}: {e}"
            ) from e

    @staticmethod
    def _parse_result(text: str, session_id: str) -> AgentTestResult:
        if not text.strip() or text.strip() == "null":
            log.error("Agent returned an empty response for test %s", session_id)
            raise EmptyResponseError(
                f"Agent returned an empty response for test {session_id}",
                status=200,
                body=text,
            )
        try:
            return AgentTestResult.model_validate_json(text)
        except PydanticValidationError as e:
            raise AgentCommunicationError(
                f"Unreadable agent response for test {session_id}", status=200, body=text
            ) from e

    @staticmethod
    def _parse_acknowledgement(text: str, session_id: str) -> LaunchAcknowledgement:
        try:
            payload = JSON_OBJECT.validate_json(text) if text.strip() else {}
        except PydanticValidationError as e:
            if text.strip() == "null":
                payload = {}
            else:
                raise AgentCommunicationError(
                    f"Unreadable launch acknowledgement for test {session_id}",
                    status=200,
                    body=text,
                ) from e

        if not payload:
            log.error("Agent did not acknowledge file transfer %s", session_id)
            raise EmptyResponseError(
                f"Agent returned an empty acknowledgement for test {session_id}",
                status=200,
                body=text,
            )
        try:
            return LaunchAcknowledgement.model_validate(payload)
        except PydanticValidationError as e:
            raise AgentCommunicationError(
                f"Unreadable launch acknowledgement for test {session_id}",
                status=200,
                body=text,
            ) from e
