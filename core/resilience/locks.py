"""
Bookbox Keyed Locks — Per-entity mutual exclusion.

Serializes read-check-write sequences (stock decrement, payment status
transition) per entity instead of behind one process-wide mutex, so orders
for unrelated products never wait on each other.

Multi-key acquisition is always performed in sorted key order, so two
callers holding overlapping key sets cannot deadlock.
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator
import asyncio


def product_key(product_id: str) -> str:
    return f"product:{product_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


class KeyedLock:
    """Registry of asyncio locks, one per key.

    A key's lock exists only while some caller holds or waits for it; the
    last one out drops it, so the registry does not grow with every order.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Hold every lock in ``keys`` for the duration of the block."""
        checked_out: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def size(self) -> int:
        return len(self._locks)
