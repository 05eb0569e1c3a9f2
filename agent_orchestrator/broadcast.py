"""In-process publish/subscribe channel notifying subscribers of test progress.

Delivery is best effort: every subscriber owns a bounded queue and notifications
that do not fit are dropped. Subscribers must treat the persisted test status as
ground truth and notifications as hints.
"""

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from agent_orchestrator.models.base import utc_now

log = logging.getLogger(__name__)


class Topic(StrEnum):
    """Identity-scoped channels shared by the agent and the broadcaster."""

    LOGS = "logs"
    STATUS = "status"
    FILE = "file"

    def destination(self, test_id: str) -> str:
        """Destination of this topic for one test."""
        return f"/topic/{self.value}/{test_id}"


@dataclass(frozen=True, kw_only=True)
class Notification:
    """A timestamped message published on a destination."""

    destination: str
    body: Mapping[str, str]
    timestamp: datetime = field(default_factory=utc_now)

    def to_json(self) -> str:
        """Render the envelope sent to subscribers."""
        return json.dumps(
            {**self.body, "timestamp": int(self.timestamp.timestamp() * 1000)}
        )


class Subscription:
    """Queue of notifications for one destination."""

    def __init__(self, destination: str, queue_size: int) -> None:
        self.destination = destination
        self.queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=queue_size)

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self

    async def __anext__(self) -> Notification:
        return await self.queue.get()


class Broadcaster:
    """Fans notifications out to any number of subscribers per destination."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: defaultdict[str, set[Subscription]] = defaultdict(set)

    @contextmanager
    def subscribe(self, destination: str) -> Iterator[Subscription]:
        """Receive notifications of a destination while the context is open."""
        subscription = Subscription(destination, self._queue_size)
        self._subscriptions[destination].add(subscription)
        try:
            yield subscription
        finally:
            subscribers = self._subscriptions[destination]
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[destination]

    def publish(self, destination: str, body: Mapping[str, str]) -> Notification:
        """Deliver a notification to the current subscribers of a destination."""
        notification = Notification(destination=destination, body=body)
        for subscription in self._subscriptions.get(destination, ()):
            try:
                subscription.queue.put_nowait(notification)
            except asyncio.QueueFull:
                log.debug("Dropping notification for slow subscriber on %s", destination)
        return notification

    def subscriber_count(self, destination: str) -> int:
        """Number of subscribers of a destination."""
        return len(self._subscriptions.get(destination, ()))
