"""
Connection handling helper for SQLAlchemy-backed stores.

Lets a store accept either an AsyncEngine or an AsyncConnection and
always run a unit of work inside a transaction it controls.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def transactional_connection(
    conn: AsyncConnection | AsyncEngine,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager yielding a connection inside a transaction.

    - AsyncEngine: checks out a connection and begins a transaction
    - AsyncConnection not in a transaction: begins one
    - AsyncConnection already in a transaction: begins a SAVEPOINT

    The transaction (or savepoint) commits when the block exits normally
    and rolls back when it raises.

    Args:
        conn: Database connection or engine

    Yields:
        AsyncConnection ready for execute() calls

    Example:
        >>> async with transactional_connection(self._conn) as conn:
        ...     await conn.execute(query, params)

    Note:
        With a savepoint, releasing it does not commit the outer
        transaction; the caller that opened it still has to.
    """
    if isinstance(conn, AsyncEngine):
        async with conn.begin() as connection:
            yield connection
    elif conn.in_transaction():
        async with conn.begin_nested():
            yield conn
    else:
        async with conn.begin():
            yield conn
