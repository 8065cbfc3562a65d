"""
PostgreSQL advisory locks for serializing migrations of the same contact.

Advisory locks are session-level: they are held until explicitly
released or until the session's connection closes, independent of the
transaction the migration itself runs in.

Usage:
    >>> locks = PostgreSQLLockManager(session_factory)
    >>> async with locks.acquire(contact_lock_key(1234), timeout=30.0):
    ...     await migrate()
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactmigration.locks.interface import (
    LockAcquisitionError,
    LockInfo,
    LockNotHeldError,
)
from contactmigration.observability import (
    ATTR_LOCK_ID,
    ATTR_LOCK_KEY,
    ATTR_LOCK_TIMEOUT,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class PostgreSQLLockManager:
    """
    Manages PostgreSQL advisory locks keyed by contact.

    Each held lock owns a dedicated session, so concurrent migrations of
    different contacts need one pooled connection each for the lock in
    addition to the connection the unit of work uses.

    Example:
        >>> locks = PostgreSQLLockManager(session_factory, holder_id="worker-1")
        >>> try:
        ...     async with locks.acquire("contact-migration:1234", timeout=5.0):
        ...         await migrate()
        ... except LockAcquisitionError:
        ...     print("Another worker is migrating this contact")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the lock manager.

        Args:
            session_factory: SQLAlchemy async session factory for database access
            holder_id: Optional identifier for this lock holder (for debugging)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: Whether to enable OpenTelemetry tracing.
                          Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._session_factory = session_factory
        self._holder_id = holder_id
        self._held_locks: dict[str, tuple[AsyncSession, int]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key_to_lock_id(key: str) -> int:
        """
        Convert a string key to a 63-bit lock id.

        SHA-256 truncated to 8 bytes and masked positive so it fits a
        signed PostgreSQL bigint.
        """
        hash_bytes = hashlib.sha256(key.encode()).digest()
        return int.from_bytes(hash_bytes[:8], byteorder="big") & 0x7FFFFFFFFFFFFFFF

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
        retry_interval: float = 0.1,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold an advisory lock for the duration of the context.

        Args:
            key: String key identifying the lock
            timeout: Maximum seconds to wait for lock (None = wait forever)
            retry_interval: Seconds between pg_try_advisory_lock attempts

        Yields:
            LockInfo with lock details

        Raises:
            LockAcquisitionError: If lock cannot be acquired within timeout
        """
        lock_id = self._key_to_lock_id(key)

        with self._tracer.span(
            "contactmigration.lock.acquire",
            {
                ATTR_LOCK_KEY: key,
                ATTR_LOCK_ID: lock_id,
                ATTR_LOCK_TIMEOUT: timeout if timeout is not None else -1,
            },
        ):
            session = await self._acquire_lock(key, lock_id, timeout, retry_interval)

        try:
            async with self._lock:
                self._held_locks[key] = (session, lock_id)

            logger.debug("Acquired advisory lock: key=%s, lock_id=%d", key, lock_id)

            yield LockInfo(
                key=key,
                lock_id=lock_id,
                acquired_at=datetime.now(UTC),
                holder_id=self._holder_id,
            )
        finally:
            async with self._lock:
                held = self._held_locks.get(key)
            # Skip if release() already let go of it.
            if held is not None and held[0] is session:
                await self._release_lock(key, session, lock_id)

    async def _acquire_lock(
        self,
        key: str,
        lock_id: int,
        timeout: float | None,
        retry_interval: float,
    ) -> AsyncSession:
        session = self._session_factory()

        try:
            if timeout is None:
                await session.execute(
                    text("SELECT pg_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                return session

            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout

            while True:
                result = await session.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                if result.scalar():
                    return session

                if loop.time() >= deadline:
                    await session.close()
                    raise LockAcquisitionError(
                        key=key,
                        reason=f"Timeout after {timeout}s",
                        timeout=timeout,
                    )

                await asyncio.sleep(retry_interval)

        except LockAcquisitionError:
            raise
        except Exception as e:
            await session.close()
            raise LockAcquisitionError(
                key=key,
                reason=f"Database error: {e}",
            ) from e

    async def _release_lock(
        self,
        key: str,
        session: AsyncSession,
        lock_id: int,
    ) -> None:
        with self._tracer.span(
            "contactmigration.lock.release",
            {
                ATTR_LOCK_KEY: key,
                ATTR_LOCK_ID: lock_id,
            },
        ):
            try:
                await session.execute(
                    text("SELECT pg_advisory_unlock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                logger.debug("Released advisory lock: key=%s, lock_id=%d", key, lock_id)
            except Exception as e:
                # An invalidated connection is discarded instead of pooled,
                # which ends the lock with its backend session.
                logger.warning("Error releasing advisory lock: key=%s, error=%s", key, e)
                await session.invalidate()
            finally:
                async with self._lock:
                    # A waiter may already hold the key under its own session.
                    held = self._held_locks.get(key)
                    if held is not None and held[0] is session:
                        del self._held_locks[key]
                await session.close()

    async def release(self, key: str) -> None:
        """
        Release a lock held by this manager ahead of its context exiting.

        Raises:
            LockNotHeldError: If the lock is not held by this manager
        """
        async with self._lock:
            if key not in self._held_locks:
                raise LockNotHeldError(key)
            session, lock_id = self._held_locks[key]

        await self._release_lock(key, session, lock_id)

    async def is_held(self, key: str) -> bool:
        async with self._lock:
            return key in self._held_locks

    @property
    def held_lock_count(self) -> int:
        return len(self._held_locks)


__all__ = ["PostgreSQLLockManager"]
