"""Operation synchronization and SOAP templates of operation-based programs."""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias

from agent_orchestrator.agent.client import AgentClient
from agent_orchestrator.errors import (
    InvalidOperationError,
    ProgramNotFoundError,
    ValidationError,
)
from agent_orchestrator.models.base import utc_now
from agent_orchestrator.models.program import Endpoint, OperationProgram
from agent_orchestrator.store.base import RecordStore

log = logging.getLogger(__name__)

TemplateKey: TypeAlias = tuple[str, str, str]


class TemplateCache:
    """Bounded cache whose entries expire after a fixed time to live.

    When full, the oldest entry is evicted first.
    """

    def __init__(
        self,
        max_entries: int = 128,
        ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[TemplateKey, tuple[float, str]] = OrderedDict()

    def get(self, key: TemplateKey) -> str | None:
        """Return a fresh entry, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: TemplateKey, value: str) -> None:
        """Store an entry, evicting the oldest one when full."""
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True, kw_only=True)
class ProgramService:
    """Keeps operation-based programs in sync with their WSDL through the agent."""

    store: RecordStore
    agent: AgentClient = field(repr=False)
    templates: TemplateCache = field(default_factory=TemplateCache, repr=False)

    async def sync_operations(
        self, program_id: str, environment: str
    ) -> OperationProgram:
        """Replace the operations of a program with the ones its WSDL declares.

        Only operation names are stored; templates are generated on demand.
        """
        log.info(
            "Synchronizing operations of program %s for environment %s",
            program_id,
            environment,
        )
        program, endpoint = await self._resolve(program_id, environment)

        operations: Sequence[str] = await self.agent.discover_operations(
            endpoint.wsdl_url
        )
        synced = program.model_copy(
            update={"operations": tuple(operations), "last_synced_at": utc_now()}
        )
        await self.store.save_program(synced)

        log.info(
            "Synchronization of %s done: %d operation(s) registered",
            program.code,
            len(operations),
        )
        return synced

    async def get_operation_template(
        self, program_id: str, environment: str, operation_name: str
    ) -> str:
        """Return the SOAP request template of an operation."""
        program, endpoint = await self._resolve(program_id, environment)
        if not program.has_operation(operation_name):
            log.warning(
                "Operation %r not found for program %s", operation_name, program.code
            )
            raise InvalidOperationError(
                f"Operation {operation_name!r} does not exist for program "
                f"{program.code}; synchronize the program if it was added recently"
            )

        key = (program.id, environment.lower(), operation_name.lower())
        if (cached := self.templates.get(key)) is not None:
            log.debug("Template cache hit for %s/%s/%s", *key)
            return cached

        template = await self.agent.fetch_operation_template(
            endpoint.wsdl_url, operation_name
        )
        self.templates.put(key, template)
        return template

    async def _resolve(
        self, program_id: str, environment: str
    ) -> tuple[OperationProgram, Endpoint]:
        program = await self.store.get_program(program_id)
        if not isinstance(program, OperationProgram):
            raise ProgramNotFoundError(f"Operation program not found: {program_id}")

        endpoint = program.endpoint_for(environment)
        if endpoint is None:
            raise ValidationError(
                f"No endpoint configured for environment {environment}"
            )
        return program, endpoint
