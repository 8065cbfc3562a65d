"""
In-process lock manager.

Serializes work on the same key within one event loop. Use it with the
in-memory or SQLite stores; multi-process deployments need
PostgreSQLLockManager.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from contactmigration.locks.interface import LockAcquisitionError, LockInfo
from contactmigration.observability import (
    ATTR_LOCK_KEY,
    ATTR_LOCK_TIMEOUT,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class InMemoryLockManager:
    """
    Per-key asyncio locks.

    Locks are created on first use and discarded once no task holds or
    waits for them.

    Example:
        >>> locks = InMemoryLockManager()
        >>> async with locks.acquire(contact_lock_key(1234), timeout=5.0):
        ...     await migrate()
    """

    def __init__(
        self,
        *,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._holder_id = holder_id
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
        retry_interval: float = 0.1,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold the lock for ``key`` for the duration of the context.

        ``retry_interval`` is accepted for interface compatibility; waiting
        tasks are woken directly instead of polling.

        Raises:
            LockAcquisitionError: If the lock is not acquired within timeout
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1

        try:
            with self._tracer.span(
                "contactmigration.lock.acquire",
                {
                    ATTR_LOCK_KEY: key,
                    ATTR_LOCK_TIMEOUT: timeout if timeout is not None else -1,
                },
            ):
                try:
                    async with asyncio.timeout(timeout):
                        await lock.acquire()
                except TimeoutError as e:
                    raise LockAcquisitionError(
                        key=key,
                        reason=f"Timeout after {timeout}s",
                        timeout=timeout,
                    ) from e

            logger.debug("Acquired in-memory lock: key=%s", key)
            try:
                yield LockInfo(
                    key=key,
                    lock_id=0,
                    acquired_at=datetime.now(UTC),
                    holder_id=self._holder_id,
                )
            finally:
                lock.release()
                logger.debug("Released in-memory lock: key=%s", key)
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def held_lock_count(self) -> int:
        return sum(1 for lock in self._locks.values() if lock.locked())


__all__ = ["InMemoryLockManager"]
