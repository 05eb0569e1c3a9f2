"""Completion signal raised by the relay and the handler recording produced files."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from agent_orchestrator.errors import NotFoundError
from agent_orchestrator.models.test import TestRecord
from agent_orchestrator.store.base import RecordStore

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class FileAvailable:
    """The agent retrieved the output file of a test."""

    test_id: str
    filename: str
    duration: float


class CompletionChannel:
    """Unbounded typed queue between the session relay and the completion handler."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[FileAvailable | None] = asyncio.Queue()

    def publish(self, event: FileAvailable) -> None:
        """Queue an event without waiting."""
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Stop iteration once the queued events are consumed."""
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[FileAvailable]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item


@dataclass(frozen=True, kw_only=True)
class CompletionHandler:
    """Records the retrieved file and measured duration of tests.

    Only file metadata is written; the status is left to the lifecycle controller,
    so a terminal status is never reverted whichever path finishes first.
    """

    store: RecordStore
    channel: CompletionChannel = field(repr=False)

    async def run(self) -> None:
        """Consume completion events until the channel is closed."""
        async for event in self.channel:
            try:
                await self.handle(event)
            except Exception:
                log.exception("Failed to record completion of test %s", event.test_id)

    async def handle(self, event: FileAvailable) -> None:
        """Store the file name and truncated duration of a completed test."""
        duration = int(event.duration)
        log.info(
            "File available for test %s: filename=%s duration=%ds",
            event.test_id,
            event.filename,
            duration,
        )

        def fill_file_metadata(record: TestRecord) -> TestRecord:
            return record.model_copy(
                update={"retrieved_file": event.filename, "duration": duration}
            )

        try:
            await self.store.update_test(event.test_id, fill_file_metadata)
        except NotFoundError:
            log.warning(
                "Dropping file event for unknown test %s (%s)",
                event.test_id,
                event.filename,
            )
