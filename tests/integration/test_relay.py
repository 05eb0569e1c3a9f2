"""Integration tests for the session relay against a local STOMP agent."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from aiohttp.test_utils import unused_port

from agent_orchestrator.broadcast import Broadcaster, Topic
from agent_orchestrator.completion import CompletionChannel, FileAvailable
from agent_orchestrator.config import RelayConfig
from agent_orchestrator.errors import RelayConnectionError
from agent_orchestrator.relay import SessionRelay
from agent_orchestrator.testing.fake_agent import FakeAgent

TEST_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"
LOGS = Topic.LOGS.destination(TEST_ID)
STATUS = Topic.STATUS.destination(TEST_ID)
FILE = Topic.FILE.destination(TEST_ID)


@pytest.fixture
async def relay(
    relay_config: RelayConfig,
    broadcaster: Broadcaster,
    completions: CompletionChannel,
) -> AsyncGenerator[SessionRelay, None]:
    """Create relay with managed session."""
    async with SessionRelay.from_config(relay_config, broadcaster, completions) as impl:
        yield impl


@pytest.fixture
def transcript_file(tmp_path: Path) -> Path:
    """Location of the session transcript."""
    return tmp_path / "logs" / "session.txt"


@pytest.fixture
async def opened(
    relay: SessionRelay, fake_agent: FakeAgent, transcript_file: Path
) -> SessionRelay:
    """Relay with the session of the test open and fully subscribed."""
    await relay.open(TEST_ID, transcript_file)
    await fake_agent.wait_subscribed(FILE)
    return relay


async def next_event(channel: CompletionChannel) -> FileAvailable:
    """Return the next completion event."""
    async for event in channel:
        return event
    raise AssertionError("Completion channel closed")


async def test_connects_and_subscribes(opened: SessionRelay, fake_agent: FakeAgent) -> None:
    """Connects with STOMP 1.2 and subscribes to the three topics of the test."""
    assert opened.is_active(TEST_ID)
    assert fake_agent.commands == ["CONNECT", "SUBSCRIBE", "SUBSCRIBE", "SUBSCRIBE"]
    assert fake_agent.received[0].headers["accept-version"] == "1.2"
    assert set(fake_agent.subscriptions) == {LOGS, STATUS, FILE}


async def test_relays_logs_to_transcript_and_subscribers(
    opened: SessionRelay,
    fake_agent: FakeAgent,
    broadcaster: Broadcaster,
    transcript_file: Path,
) -> None:
    """Writes log lines to the transcript and broadcasts them."""
    with broadcaster.subscribe(LOGS) as subscription:
        await fake_agent.send(LOGS, "Calling GetBasicData")
        await fake_agent.send(LOGS, "HTTP 200 received")

        first = await asyncio.wait_for(subscription.queue.get(), 5)
        second = await asyncio.wait_for(subscription.queue.get(), 5)

    assert first.body == {"log": "Calling GetBasicData"}
    assert second.body == {"log": "HTTP 200 received"}

    await opened.close(TEST_ID)

    assert transcript_file.read_text(encoding="utf-8") == (
        "Calling GetBasicData\nHTTP 200 received\n"
    )


async def test_relays_status_without_transcript(
    opened: SessionRelay,
    fake_agent: FakeAgent,
    broadcaster: Broadcaster,
    transcript_file: Path,
) -> None:
    """Broadcasts status messages without writing them to the transcript."""
    with broadcaster.subscribe(STATUS) as subscription:
        await fake_agent.send(STATUS, "RUNNING")
        notification = await asyncio.wait_for(subscription.queue.get(), 5)

    assert notification.body == {"status": "RUNNING"}

    await opened.close(TEST_ID)
    assert not transcript_file.exists()


async def test_file_notice_raises_completion_event(
    opened: SessionRelay,
    fake_agent: FakeAgent,
    broadcaster: Broadcaster,
    completions: CompletionChannel,
) -> None:
    """Turns a file notice into a completion event and a log notification."""
    with broadcaster.subscribe(LOGS) as subscription:
        await fake_agent.send(FILE, "{filename=out.csv, duration=3.2}")

        event = await asyncio.wait_for(next_event(completions), 5)
        notification = await asyncio.wait_for(subscription.queue.get(), 5)

    assert event == FileAvailable(test_id=TEST_ID, filename="out.csv", duration=3.2)
    assert notification.body == {"log": "{filename=out.csv, duration=3.2}"}


async def test_malformed_messages_do_not_end_session(
    opened: SessionRelay,
    fake_agent: FakeAgent,
    broadcaster: Broadcaster,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Logs bad payloads and frames and keeps relaying."""
    with caplog.at_level(logging.WARNING), broadcaster.subscribe(LOGS) as subscription:
        await fake_agent.send(FILE, "{duration=soon}")
        await fake_agent.send_raw(LOGS, "MESSAGE\ndestination:/topic/logs\n\nno null")
        await fake_agent.send(LOGS, "still alive")

        notification = await asyncio.wait_for(subscription.queue.get(), 5)

    assert notification.body == {"log": "still alive"}
    assert opened.is_active(TEST_ID)
    assert "Failed to handle file message" in caplog.text
    assert "Discarding malformed frame" in caplog.text


async def test_close_disconnects_gracefully(
    opened: SessionRelay, fake_agent: FakeAgent
) -> None:
    """Sends DISCONNECT with a receipt and forgets the session."""
    await opened.close(TEST_ID)

    assert fake_agent.commands[-1] == "DISCONNECT"
    assert fake_agent.received[-1].headers["receipt"] == f"close-{TEST_ID}"
    assert not opened.is_active(TEST_ID)


async def test_close_without_receipt_times_out(
    opened: SessionRelay,
    fake_agent: FakeAgent,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Gives up waiting for the receipt after the close timeout."""
    fake_agent.send_receipts = False

    with caplog.at_level(logging.WARNING):
        await asyncio.wait_for(opened.close(TEST_ID), 5)

    assert "No disconnect receipt" in caplog.text
    assert not opened.is_active(TEST_ID)


async def test_agent_side_close_ends_session(
    opened: SessionRelay, fake_agent: FakeAgent
) -> None:
    """Forgets the session when the agent drops the connection."""
    await fake_agent.drop_connections()

    async with asyncio.timeout(5):
        while opened.is_active(TEST_ID):
            await asyncio.sleep(0.01)

    await opened.close(TEST_ID)


async def test_reopening_returns_existing_session(
    opened: SessionRelay, transcript_file: Path
) -> None:
    """Opening an already open session returns it."""
    first = await opened.open(TEST_ID, transcript_file)
    second = await opened.open(TEST_ID, transcript_file)

    assert first is second


async def test_refused_connection_raises(
    relay: SessionRelay, fake_agent: FakeAgent, transcript_file: Path
) -> None:
    """Raises RelayConnectionError when the agent answers CONNECT with ERROR."""
    fake_agent.refuse = True

    with pytest.raises(RelayConnectionError, match="Access denied"):
        await relay.open(TEST_ID, transcript_file)

    assert not relay.is_active(TEST_ID)


async def test_unreachable_agent_raises(
    broadcaster: Broadcaster, completions: CompletionChannel, transcript_file: Path
) -> None:
    """Raises RelayConnectionError when nothing listens on the relay URL."""
    config = RelayConfig(ws_url=f"ws://127.0.0.1:{unused_port()}/ws", connect_timeout=2)

    async with SessionRelay.from_config(config, broadcaster, completions) as relay:
        with pytest.raises(RelayConnectionError):
            await relay.open(TEST_ID, transcript_file)


class TestWaitForFile:
    """Tests for keeping a session open until the retrieved file is announced."""

    async def test_returns_once_file_is_announced(
        self,
        opened: SessionRelay,
        fake_agent: FakeAgent,
        completions: CompletionChannel,
    ) -> None:
        """Relays a file notice sent while waiting, then returns True."""
        waiting = asyncio.create_task(opened.wait_for_file(TEST_ID))
        await asyncio.sleep(0.05)
        assert not waiting.done()

        await fake_agent.send(FILE, "{filename=out.csv, duration=3.2}")

        assert await asyncio.wait_for(waiting, 5)
        event = await asyncio.wait_for(next_event(completions), 5)
        assert event.filename == "out.csv"
        assert opened.is_active(TEST_ID)

    async def test_already_announced_file_returns_at_once(
        self, opened: SessionRelay, fake_agent: FakeAgent, completions: CompletionChannel
    ) -> None:
        """Returns True without waiting when the notice came earlier."""
        await fake_agent.send(FILE, "{filename=out.csv, duration=3.2}")
        await asyncio.wait_for(next_event(completions), 5)

        assert await asyncio.wait_for(opened.wait_for_file(TEST_ID), 0.5)

    async def test_gives_up_after_retrieval_timeout(
        self, opened: SessionRelay, relay_config: RelayConfig
    ) -> None:
        """Returns False once the retrieval timeout has passed."""
        async with asyncio.timeout(relay_config.retrieval_timeout + 2):
            assert not await opened.wait_for_file(TEST_ID)

        assert opened.is_active(TEST_ID)

    async def test_agent_side_close_stops_waiting(
        self, opened: SessionRelay, fake_agent: FakeAgent
    ) -> None:
        """Returns False when the agent drops the connection first."""
        waiting = asyncio.create_task(opened.wait_for_file(TEST_ID))
        await asyncio.sleep(0.05)

        await fake_agent.drop_connections()

        assert not await asyncio.wait_for(waiting, 0.9)

    async def test_no_session(self, relay: SessionRelay) -> None:
        """Returns False at once when no session is open for the test."""
        assert not await relay.wait_for_file(TEST_ID)
