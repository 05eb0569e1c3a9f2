"""Assembles the orchestrator components with managed lifecycles."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from agent_orchestrator.agent.client import AgentClient
from agent_orchestrator.broadcast import Broadcaster
from agent_orchestrator.completion import CompletionChannel, CompletionHandler
from agent_orchestrator.config import OrchestratorConfig
from agent_orchestrator.lifecycle import TestLifecycleController
from agent_orchestrator.programs import ProgramService, TemplateCache
from agent_orchestrator.relay.relay import SessionRelay
from agent_orchestrator.store.base import RecordStore
from agent_orchestrator.store.memory import InMemoryRecordStore
from agent_orchestrator.uploads import FileStorage

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Orchestrator:
    """Running set of components sharing one store and one broadcast channel."""

    store: RecordStore
    agent: AgentClient
    broadcaster: Broadcaster
    uploads: FileStorage
    programs: ProgramService
    controller: TestLifecycleController


@asynccontextmanager
async def open_orchestrator(
    config: OrchestratorConfig, store: RecordStore | None = None
) -> AsyncGenerator[Orchestrator, None]:
    """Start the orchestrator and stop it cleanly on exit.

    On exit the in-flight tests are awaited, relay sessions are closed and the
    pending completion events are recorded before the agent session is released.
    """
    store = store if store is not None else InMemoryRecordStore()
    broadcaster = Broadcaster(queue_size=config.relay.subscriber_queue_size)
    completions = CompletionChannel()
    uploads = FileStorage(root=config.upload_dir)

    async with (
        AgentClient.from_config(config.agent) as agent,
        SessionRelay.from_config(config.relay, broadcaster, completions) as relay,
    ):
        handler = CompletionHandler(store=store, channel=completions)
        handler_task = asyncio.create_task(handler.run(), name="completion-handler")

        controller = TestLifecycleController(
            store=store,
            agent=agent,
            relay=relay,
            broadcaster=broadcaster,
            uploads=uploads,
            log_dir=config.log_dir,
        )
        programs = ProgramService(
            store=store,
            agent=agent,
            templates=TemplateCache(
                max_entries=config.template_cache_size, ttl=config.template_cache_ttl
            ),
        )

        log.debug("Orchestrator started (agent=%s)", config.agent.base_url)
        try:
            yield Orchestrator(
                store=store,
                agent=agent,
                broadcaster=broadcaster,
                uploads=uploads,
                programs=programs,
                controller=controller,
            )
        finally:
            await controller.drain()
            await relay.close_all()
            completions.close()
            await handler_task
            log.debug("Orchestrator stopped")
