"""Change Feed - In-process notifications that a partition was committed.

Read-side caches subscribe here to know when to call ``compose`` again.
Engine correctness never depends on a subscriber.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator

from pydantic import BaseModel, Field

from src.contracts.appointment import PartitionKey
from src.utils.logger import get_logger

logger = get_logger(__name__)


class PartitionChanged(BaseModel):
    """A commit landed on ``key`` at ``version``."""

    key: PartitionKey
    version: int
    changed_ids: list[str] = Field(default_factory=list)


class ChangeFeed:
    """Fan-out of PartitionChanged events to per-partition subscribers."""

    def __init__(self, max_pending: int = 100) -> None:
        self.max_pending = max_pending
        self._subscribers: dict[PartitionKey, set[asyncio.Queue[PartitionChanged]]] = (
            defaultdict(set)
        )

    def subscriber_count(self, key: PartitionKey) -> int:
        return len(self._subscribers.get(key, ()))

    def publish(self, event: PartitionChanged) -> int:
        """Deliver ``event`` to every subscriber of its partition.

        A subscriber that has fallen ``max_pending`` events behind loses the
        oldest one; the latest version is what matters to a reader.

        Returns:
            Number of subscribers the event reached.
        """
        queues = self._subscribers.get(event.key, set())
        for queue in queues:
            if queue.full():
                queue.get_nowait()
                logger.warning(
                    "change_feed_subscriber_lagging",
                    partition=str(event.key),
                    version=event.version,
                )
            queue.put_nowait(event)
        return len(queues)

    async def subscribe(self, key: PartitionKey) -> AsyncIterator[PartitionChanged]:
        """Yield events for ``key`` until the consumer stops iterating."""
        queue: asyncio.Queue[PartitionChanged] = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers[key].add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[key].discard(queue)
            if not self._subscribers[key]:
                del self._subscribers[key]
