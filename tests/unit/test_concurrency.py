"""Unit Tests - Partition locks and the change feed."""

import asyncio
from datetime import date

from src.contracts.appointment import PartitionKey
from src.core.events import ChangeFeed, PartitionChanged
from src.core.locks import PartitionLocks


class TestPartitionLocks:
    async def test_partitions_do_not_block_each_other(self, key) -> None:
        locks = PartitionLocks()
        other = PartitionKey(resource_id="barber-2", date=date(2026, 2, 15))

        async with locks.hold(key):
            async with locks.hold(other):
                assert locks.is_locked(key)
                assert locks.is_locked(other)
                assert len(locks) == 2

    async def test_released_locks_are_dropped(self, key) -> None:
        locks = PartitionLocks()

        async with locks.hold(key):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked(key)

    async def test_hold_serializes_same_partition(self, key) -> None:
        locks = PartitionLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold(key):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert not locks.is_locked(key)
        assert len(locks) == 0


class TestChangeFeed:
    async def test_lagging_subscriber_keeps_latest(self, key) -> None:
        feed = ChangeFeed(max_pending=1)
        events = feed.subscribe(key)
        pending = asyncio.create_task(anext(events))
        await asyncio.sleep(0)

        feed.publish(PartitionChanged(key=key, version=1))
        delivered = feed.publish(PartitionChanged(key=key, version=2))

        assert delivered == 1
        assert (await pending).version == 2
        await events.aclose()
        assert feed.subscriber_count(key) == 0

    def test_publish_without_subscribers(self, key) -> None:
        assert ChangeFeed().publish(PartitionChanged(key=key, version=1)) == 0
