"""Partition Locks - One asyncio lock per (barber, date)."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from src.contracts.appointment import PartitionKey


class PartitionLocks:
    """Serializes mutations per partition inside one process.

    A lock exists only while some caller holds or waits for it, so the
    table does not grow with every (barber, day) ever touched. Different
    partitions never share a lock. Cross-process safety comes from the
    store's version check.
    """

    def __init__(self) -> None:
        self._locks: dict[PartitionKey, asyncio.Lock] = {}
        self._holders: dict[PartitionKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: PartitionKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, key: PartitionKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
