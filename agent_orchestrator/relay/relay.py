"""Registry of the relay sessions opened for in-flight tests."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import aiohttp

from agent_orchestrator.broadcast import Broadcaster
from agent_orchestrator.completion import CompletionChannel
from agent_orchestrator.config import RelayConfig
from agent_orchestrator.relay.session import RelaySession
from agent_orchestrator.relay.transcript import Transcript

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class SessionRelay:
    """Opens one relay session per test and tracks it until it closes."""

    config: RelayConfig
    http: aiohttp.ClientSession = field(repr=False)
    broadcaster: Broadcaster = field(repr=False)
    completions: CompletionChannel = field(repr=False)
    _sessions: dict[str, RelaySession] = field(
        default_factory=dict, init=False, repr=False
    )

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls,
        config: RelayConfig,
        broadcaster: Broadcaster,
        completions: CompletionChannel,
    ) -> AsyncGenerator["SessionRelay", None]:
        """Create relay with managed session lifecycle."""
        async with aiohttp.ClientSession() as http:
            relay = cls(
                config=config,
                http=http,
                broadcaster=broadcaster,
                completions=completions,
            )
            try:
                yield relay
            finally:
                await relay.close_all()

    async def open(self, test_id: str, transcript_path: Path) -> RelaySession:
        """Open the relay session of a test.

        Raises:
            RelayConnectionError: If the session cannot be established

        """
        if (existing := self._sessions.get(test_id)) is not None:
            log.warning("Relay session already open for test %s", test_id)
            return existing

        session = await RelaySession.connect(
            http=self.http,
            config=self.config,
            test_id=test_id,
            transcript=Transcript(transcript_path),
            broadcaster=self.broadcaster,
            completions=self.completions,
            on_closed=self._discard,
        )
        self._sessions[test_id] = session
        log.info("Connection established for test %s", test_id)
        return session

    async def close(self, test_id: str) -> None:
        """Close the session of a test, if one is open."""
        session = self._sessions.pop(test_id, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        """Close every open session."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(session.close() for session in sessions))

    async def wait_for_file(self, test_id: str) -> bool:
        """Keep the session of a test open until its retrieved file is announced.

        Waits at most `retrieval_timeout` seconds and returns whether the file notice
        arrived. Returns False at once when no session is open.
        """
        session = self._sessions.get(test_id)
        if session is None:
            return False
        return await session.wait_for_file(self.config.retrieval_timeout)

    def is_active(self, test_id: str) -> bool:
        """Whether a session is open for a test."""
        return test_id in self._sessions

    def _discard(self, test_id: str) -> None:
        if self._sessions.pop(test_id, None) is not None:
            log.debug("Relay session discarded for test %s", test_id)
