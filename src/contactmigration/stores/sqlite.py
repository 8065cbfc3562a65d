"""
SQLite contact store.

Lightweight store using SQLite with async support via aiosqlite.

This implementation is suitable for:
- Development and testing environments
- Single-instance deployments
- Embedded applications

SQLite-specific adaptations:
- Dates and timestamps stored as TEXT in ISO 8601 format
- Booleans stored as INTEGER (0/1)
- Generated keys use INTEGER PRIMARY KEY AUTOINCREMENT with the
  sequence seeded at the configured start value
- Foreign keys enforced via PRAGMA foreign_keys = ON
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

import aiosqlite

from contactmigration.config import GENERATED_ID_START
from contactmigration.entities import MigratedEntity
from contactmigration.exceptions import (
    DuplicateKeyError,
    ForeignKeyViolationError,
    PersistenceError,
)
from contactmigration.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_ENTITY_TYPE,
    ATTR_PARENT_ID,
    Tracer,
    create_tracer,
)
from contactmigration.stores.interface import ContactStore, UnitOfWork
from contactmigration.stores.schema import generate_full_schema

logger = logging.getLogger(__name__)

TEntity = TypeVar("TEntity", bound=MigratedEntity)


class SQLiteEntityRepository(Generic[TEntity]):
    """
    Repository for one entity kind on an aiosqlite connection.

    Does not commit; the owning SQLiteContactStore unit of work does.
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        entity_class: type[TEntity],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._connection = connection
        self._entity_class = entity_class
        self._table_name = entity_class.table_name()
        self._key_field = entity_class.key_field()
        self._parent_field = entity_class.parent_field()
        self._field_names = entity_class.field_names()

    def _span_attributes(self, operation: str) -> dict[str, Any]:
        return {
            ATTR_ENTITY_TYPE: self._entity_class.__name__,
            ATTR_DB_SYSTEM: "sqlite",
            ATTR_DB_TABLE: self._table_name,
            ATTR_DB_OPERATION: operation,
        }

    def _row_to_entity(self, row: aiosqlite.Row) -> TEntity:
        return self._entity_class.model_validate(dict(row))

    def _require_parent_field(self) -> str:
        if self._parent_field is None:
            raise PersistenceError(f"{self._table_name} has no parent column")
        return self._parent_field

    async def exists_by_id(self, key: int) -> bool:
        cursor = await self._connection.execute(
            f"SELECT 1 FROM {self._table_name} WHERE {self._key_field} = ?",  # nosec B608
            (key,),
        )
        return await cursor.fetchone() is not None

    async def get(self, key: int) -> TEntity | None:
        with self._tracer.span("contactmigration.repository.get", self._span_attributes("SELECT")):
            query = f"""
                SELECT {", ".join(self._field_names)}
                FROM {self._table_name}
                WHERE {self._key_field} = ?
            """  # nosec B608 - table and columns from trusted entity class
            cursor = await self._connection.execute(query, (key,))
            row = await cursor.fetchone()
            return self._row_to_entity(row) if row is not None else None

    async def save(self, entity: TEntity) -> TEntity:
        with self._tracer.span("contactmigration.repository.save", self._span_attributes("INSERT")):
            values = entity.model_dump(mode="json")
            if self._entity_class.__key_generated__:
                values.pop(self._key_field)
            columns = list(values)
            placeholders = ", ".join("?" for _ in columns)
            query = f"""
                INSERT INTO {self._table_name} ({", ".join(columns)})
                VALUES ({placeholders})
            """  # nosec B608 - table and columns from trusted entity class

            try:
                cursor = await self._connection.execute(query, tuple(values.values()))
            except aiosqlite.IntegrityError as e:
                raise self._translate_integrity_error(entity, e) from e

            if self._entity_class.__key_generated__:
                if cursor.lastrowid is None:
                    raise PersistenceError(f"No key generated for {self._table_name} row")
                return entity.with_key(cursor.lastrowid)
            return entity

    def _translate_integrity_error(
        self, entity: TEntity, error: aiosqlite.IntegrityError
    ) -> PersistenceError:
        message = str(error).lower()
        if "foreign key" in message:
            parent_field = self._parent_field
            parent_key = getattr(entity, parent_field) if parent_field else None
            parent_table = (
                self._entity_class.foreign_keys()[parent_field].table_name()
                if parent_field
                else "unknown"
            )
            return ForeignKeyViolationError(self._table_name, parent_table, parent_key)
        if "unique" in message and entity.key is not None:
            return DuplicateKeyError(self._table_name, entity.key)
        return PersistenceError(f"Integrity error on {self._table_name}: {error}")

    async def find_all_by_parent_id(self, parent_id: int) -> list[TEntity]:
        parent_field = self._require_parent_field()
        query = f"""
            SELECT {", ".join(self._field_names)}
            FROM {self._table_name}
            WHERE {parent_field} = ?
            ORDER BY {self._key_field}
        """  # nosec B608 - table and columns from trusted entity class
        cursor = await self._connection.execute(query, (parent_id,))
        rows = await cursor.fetchall()
        return [self._row_to_entity(row) for row in rows]

    async def _delete_where(self, column: str, value: int) -> int:
        try:
            cursor = await self._connection.execute(
                f"DELETE FROM {self._table_name} WHERE {column} = ?",  # nosec B608
                (value,),
            )
        except aiosqlite.IntegrityError as e:
            raise PersistenceError(
                f"Cannot delete from {self._table_name} where {column} = {value}: {e}"
            ) from e
        return cursor.rowcount

    async def delete_all_by_parent_id(self, parent_id: int) -> int:
        parent_field = self._require_parent_field()
        attributes = self._span_attributes("DELETE")
        attributes[ATTR_PARENT_ID] = parent_id
        with self._tracer.span("contactmigration.repository.delete_all_by_parent_id", attributes):
            return await self._delete_where(parent_field, parent_id)

    async def delete_by_id(self, key: int) -> bool:
        with self._tracer.span(
            "contactmigration.repository.delete_by_id",
            self._span_attributes("DELETE"),
        ):
            return await self._delete_where(self._key_field, key) > 0

    async def count(self) -> int:
        cursor = await self._connection.execute(
            f"SELECT COUNT(*) FROM {self._table_name}"  # nosec B608
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0


class SQLiteContactStore(ContactStore):
    """
    SQLite implementation of the contact store.

    Uses a single aiosqlite connection. Units of work are serialized by an
    asyncio lock, committed on success and rolled back on any exception.

    Example:
        >>> async with SQLiteContactStore(":memory:") as store:
        ...     await store.initialize()
        ...     async with store.transaction() as uow:
        ...         await uow.contacts.save(contact)
    """

    def __init__(
        self,
        database: str,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        generated_id_start: int = GENERATED_ID_START,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite contact store.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            wal_mode: If True, enable WAL mode for better concurrency (default: True)
            busy_timeout: Timeout in milliseconds when database is locked (default: 5000)
            generated_id_start: First generated key for nested kinds
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True and OpenTelemetry is available, emit traces.
                          Ignored if tracer is explicitly provided.
        """
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._generated_id_start = generated_id_start
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def __aenter__(self) -> SQLiteContactStore:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        """
        Open the database connection and configure settings.

        Called automatically by __aenter__ and initialize().
        """
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)

        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")

        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create all contact tables if they don't exist.

        This method is idempotent - safe to call multiple times.
        """
        await self._connect()
        conn = self._ensure_connected()

        statements = generate_full_schema("sqlite", generated_id_start=self._generated_id_start)
        await conn.executescript("\n".join(statements))
        await conn.commit()

        logger.info("Initialized SQLite contact schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call initialize() first."
            )
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        conn = self._ensure_connected()
        async with self._lock:
            try:
                yield UnitOfWork.build(
                    lambda entity_class: SQLiteEntityRepository(conn, entity_class, self._tracer)
                )
            except BaseException:
                await conn.rollback()
                logger.debug("Rolled back SQLite unit of work: %s", self._database)
                raise
            await conn.commit()


__all__ = [
    "SQLiteEntityRepository",
    "SQLiteContactStore",
]
