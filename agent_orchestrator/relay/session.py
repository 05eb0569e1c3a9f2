"""One relay connection to the agent's event channel, scoped to a single test."""

import asyncio
import logging
from collections.abc import Callable, Mapping

import aiohttp
from yarl import URL

from agent_orchestrator.broadcast import Broadcaster, Topic
from agent_orchestrator.completion import CompletionChannel, FileAvailable
from agent_orchestrator.config import RelayConfig
from agent_orchestrator.errors import RelayConnectionError
from agent_orchestrator.relay.frames import (
    Frame,
    FrameError,
    parse_file_notice,
    parse_frames,
)
from agent_orchestrator.relay.transcript import Transcript

log = logging.getLogger(__name__)

STOMP_PROTOCOLS = ("v12.stomp", "v11.stomp")


class RelaySession:
    """Relays the log, status and file messages of one test.

    Frames are received on a dedicated task. Logs go to the transcript and the
    broadcaster, status messages to the broadcaster only, and file notices raise a
    completion event. A failure while handling one frame never ends the session; a
    transport failure ends it without reconnecting.
    """

    def __init__(
        self,
        *,
        test_id: str,
        ws: aiohttp.ClientWebSocketResponse,
        transcript: Transcript,
        broadcaster: Broadcaster,
        completions: CompletionChannel,
        close_timeout: float,
        on_closed: Callable[[str], None] | None = None,
    ) -> None:
        self.test_id = test_id
        self.transcript = transcript
        self._ws = ws
        self._broadcaster = broadcaster
        self._completions = completions
        self._close_timeout = close_timeout
        self._on_closed = on_closed
        self._subscriptions: dict[str, Topic] = {}
        self._receipt = asyncio.Event()
        self._file_received = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @classmethod
    async def connect(
        cls,
        *,
        http: aiohttp.ClientSession,
        config: RelayConfig,
        test_id: str,
        transcript: Transcript,
        broadcaster: Broadcaster,
        completions: CompletionChannel,
        on_closed: Callable[[str], None] | None = None,
    ) -> "RelaySession":
        """Connect, subscribe to the three topics of the test and start relaying.

        Raises:
            RelayConnectionError: If the agent cannot be reached or refuses the session

        """
        try:
            async with asyncio.timeout(config.connect_timeout):
                ws = await http.ws_connect(config.ws_url, protocols=STOMP_PROTOCOLS)
                session = cls(
                    test_id=test_id,
                    ws=ws,
                    transcript=transcript,
                    broadcaster=broadcaster,
                    completions=completions,
                    close_timeout=config.close_timeout,
                    on_closed=on_closed,
                )
                try:
                    await session._handshake(URL(config.ws_url).host or "localhost")
                except BaseException:
                    await ws.close()
                    raise
        except TimeoutError as e:
            raise RelayConnectionError(
                f"Connection timeout for test {test_id}"
            ) from e
        except (aiohttp.ClientError, FrameError) as e:
            raise RelayConnectionError(
                f"Could not open relay session for test {test_id}: {e}"
            ) from e

        session._task = asyncio.create_task(
            session._receive_loop(), name=f"relay-{test_id}"
        )
        return session

    @property
    def closed(self) -> bool:
        """Whether the receive loop has ended."""
        return self._task is not None and self._task.done()

    async def wait_for_file(self, timeout: float) -> bool:
        """Wait until the agent announces the retrieved file or the session ends.

        Returns whether a file notice was received.
        """
        if self._task is None:
            return self._file_received.is_set()
        waiter = asyncio.create_task(self._file_received.wait())
        await asyncio.wait(
            {waiter, self._task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
        waiter.cancel()
        await asyncio.wait({waiter})
        return self._file_received.is_set()

    async def close(self) -> None:
        """Disconnect gracefully, relaying the frames the agent sends until then."""
        if not self._ws.closed:
            try:
                await self._send(
                    Frame(command="DISCONNECT", headers={"receipt": f"close-{self.test_id}"})
                )
                async with asyncio.timeout(self._close_timeout):
                    await self._receipt.wait()
            except TimeoutError:
                log.warning("No disconnect receipt for test %s", self.test_id)
            except (aiohttp.ClientError, ConnectionError) as e:
                log.warning("Could not disconnect test %s cleanly: %s", self.test_id, e)
            await self._ws.close()
        if self._task is not None:
            await self._task

    async def _handshake(self, host: str) -> None:
        await self._send(
            Frame(
                command="CONNECT",
                headers={"accept-version": "1.2", "host": host, "heart-beat": "0,0"},
            )
        )
        await self._wait_for_connected()

        for index, topic in enumerate(Topic):
            subscription_id = f"sub-{index}"
            destination = topic.destination(self.test_id)
            self._subscriptions[subscription_id] = topic
            await self._send(
                Frame(
                    command="SUBSCRIBE",
                    headers={
                        "id": subscription_id,
                        "destination": destination,
                        "ack": "auto",
                    },
                )
            )
            log.info("Subscribed to %s", destination)

        log.info("All subscriptions active for test %s", self.test_id)

    async def _wait_for_connected(self) -> None:
        while True:
            message = await self._ws.receive()
            if message.type != aiohttp.WSMsgType.TEXT:
                raise RelayConnectionError(
                    f"Agent closed the connection before CONNECTED ({message.type.name})"
                )
            for frame in parse_frames(message.data):
                if frame.command == "CONNECTED":
                    return
                if frame.command == "ERROR":
                    raise RelayConnectionError(
                        f"Agent refused the connection: "
                        f"{frame.headers.get('message', frame.body)}"
                    )

    async def _send(self, frame: Frame) -> None:
        await self._ws.send_str(frame.encode())

    async def _receive_loop(self) -> None:
        try:
            while True:
                message = await self._ws.receive()
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    log.error(
                        "Transport error for test %s",
                        self.test_id,
                        exc_info=self._ws.exception(),
                    )
                    return
                elif message.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    log.info("Relay session closed for test %s", self.test_id)
                    return
                else:
                    log.debug("Ignoring %s message for test %s", message.type.name, self.test_id)
        except Exception:
            log.exception("Relay session failed for test %s", self.test_id)
        finally:
            self.transcript.close()
            self._receipt.set()
            if self._on_closed is not None:
                self._on_closed(self.test_id)

    def _handle_text(self, data: str) -> None:
        try:
            frames = parse_frames(data)
        except FrameError:
            log.warning("Discarding malformed frame for test %s", self.test_id, exc_info=True)
            return

        for frame in frames:
            if frame.command == "MESSAGE":
                self._handle_message(frame)
            elif frame.command == "RECEIPT":
                self._receipt.set()
            elif frame.command == "ERROR":
                log.error(
                    "Agent error for test %s: %s %s",
                    self.test_id,
                    frame.headers.get("message", ""),
                    frame.body,
                )
            else:
                log.debug("Ignoring %s frame for test %s", frame.command, self.test_id)

    def _handle_message(self, frame: Frame) -> None:
        topic = self._topic_of(frame)
        if topic is None:
            log.warning(
                "Message on unexpected destination %s for test %s",
                frame.destination,
                self.test_id,
            )
            return

        handlers: Mapping[Topic, Callable[[str], None]] = {
            Topic.LOGS: self._handle_log,
            Topic.STATUS: self._handle_status,
            Topic.FILE: self._handle_file,
        }
        try:
            handlers[topic](frame.body)
        except Exception:
            log.exception("Failed to handle %s message for test %s", topic, self.test_id)

    def _topic_of(self, frame: Frame) -> Topic | None:
        subscription_id = frame.headers.get("subscription")
        if subscription_id in self._subscriptions:
            return self._subscriptions[subscription_id]
        destination = frame.destination or ""
        for topic in Topic:
            if f"/{topic.value}/" in destination:
                return topic
        return None

    def _handle_log(self, message: str) -> None:
        log.info("Agent log [%s] -> %s", self.test_id, message)
        self.transcript.append(message)
        self._broadcaster.publish(Topic.LOGS.destination(self.test_id), {"log": message})

    def _handle_status(self, message: str) -> None:
        log.info("Agent status [%s] -> %s", self.test_id, message)
        self._broadcaster.publish(
            Topic.STATUS.destination(self.test_id), {"status": message}
        )

    def _handle_file(self, message: str) -> None:
        log.info("Agent file [%s] -> %s", self.test_id, message)
        notice = parse_file_notice(message)
        self._completions.publish(
            FileAvailable(
                test_id=self.test_id,
                filename=notice.filename,
                duration=notice.duration,
            )
        )
        self._file_received.set()
        self._broadcaster.publish(Topic.LOGS.destination(self.test_id), {"log": message})
