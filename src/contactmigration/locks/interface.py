"""
Lock manager protocol and shared lock types.

Migrations of the same contact are serialized by holding a lock keyed by
the contact's source id for the whole unit of work.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from contactmigration.exceptions import ContactMigrationError


@dataclass(frozen=True)
class LockInfo:
    """
    Information about an acquired lock.

    Attributes:
        key: The string key used to identify the lock
        lock_id: Numeric lock id (PostgreSQL advisory lock id, or 0 in memory)
        acquired_at: When the lock was acquired
        holder_id: Optional identifier for the lock holder (for debugging)
    """

    key: str
    lock_id: int
    acquired_at: datetime
    holder_id: str | None = None


class LockAcquisitionError(ContactMigrationError):
    """
    Raised when a lock cannot be acquired.

    Attributes:
        key: The lock key that could not be acquired
        reason: Description of why acquisition failed
        timeout: The timeout value if timeout was the cause
    """

    def __init__(
        self,
        key: str,
        reason: str,
        timeout: float | None = None,
    ) -> None:
        self.key = key
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


class LockNotHeldError(ContactMigrationError):
    """Raised when releasing a lock this manager does not hold."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Lock '{key}' is not held by this manager")


@runtime_checkable
class LockManager(Protocol):
    """
    Protocol for lock managers.

    Implementations:
    - InMemoryLockManager: asyncio locks, single process
    - PostgreSQLLockManager: advisory locks, any number of processes
    """

    def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
        retry_interval: float = 0.1,
    ) -> AbstractAsyncContextManager[LockInfo]:
        """
        Hold the lock for the duration of the context.

        Args:
            key: String key identifying the lock
            timeout: Maximum seconds to wait (None = wait forever)
            retry_interval: Seconds between attempts, where polling is used

        Raises:
            LockAcquisitionError: If the lock cannot be acquired in time
        """
        ...


def contact_lock_key(person_id: int) -> str:
    """
    Create the lock key for migrating one contact.

    Example:
        >>> contact_lock_key(1234)
        'contact-migration:1234'
    """
    return f"contact-migration:{person_id}"


__all__ = [
    "LockInfo",
    "LockAcquisitionError",
    "LockNotHeldError",
    "LockManager",
    "contact_lock_key",
]
