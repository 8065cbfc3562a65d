"""
Per-contact lock utilities.

A migration holds the lock for its contact for the whole unit of work,
so two migrations of the same person id never interleave.

Example:
    >>> from contactmigration.locks import PostgreSQLLockManager, contact_lock_key
    >>>
    >>> locks = PostgreSQLLockManager(session_factory)
    >>> async with locks.acquire(contact_lock_key(1234), timeout=30.0):
    ...     await migrate()
"""

from contactmigration.locks.in_memory import InMemoryLockManager
from contactmigration.locks.interface import (
    LockAcquisitionError,
    LockInfo,
    LockManager,
    LockNotHeldError,
    contact_lock_key,
)
from contactmigration.locks.postgresql import PostgreSQLLockManager

__all__ = [
    "LockAcquisitionError",
    "LockInfo",
    "LockManager",
    "LockNotHeldError",
    "InMemoryLockManager",
    "PostgreSQLLockManager",
    "contact_lock_key",
]
