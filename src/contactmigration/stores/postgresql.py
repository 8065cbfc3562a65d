"""
PostgreSQL contact store.

Production store built on SQLAlchemy's async Core API (asyncpg driver).
Each unit of work runs in one transaction on one connection; generated
keys come from identity columns starting at the configured value.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

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
from contactmigration.stores._connection import transactional_connection
from contactmigration.stores.interface import ContactStore, UnitOfWork
from contactmigration.stores.schema import generate_full_schema

logger = logging.getLogger(__name__)

TEntity = TypeVar("TEntity", bound=MigratedEntity)

# PostgreSQL SQLSTATE codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def _sqlstate(error: IntegrityError) -> str | None:
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return str(code) if code is not None else None


class PostgreSQLEntityRepository(Generic[TEntity]):
    """
    Repository for one entity kind on an open SQLAlchemy connection.

    The connection's transaction belongs to the unit of work; this class
    never commits.
    """

    def __init__(
        self,
        conn: AsyncConnection,
        entity_class: type[TEntity],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn
        self._entity_class = entity_class
        self._table_name = entity_class.table_name()
        self._key_field = entity_class.key_field()
        self._parent_field = entity_class.parent_field()
        self._field_names = entity_class.field_names()

    def _span_attributes(self, operation: str) -> dict[str, Any]:
        return {
            ATTR_ENTITY_TYPE: self._entity_class.__name__,
            ATTR_DB_SYSTEM: "postgresql",
            ATTR_DB_TABLE: self._table_name,
            ATTR_DB_OPERATION: operation,
        }

    def _require_parent_field(self) -> str:
        if self._parent_field is None:
            raise PersistenceError(f"{self._table_name} has no parent column")
        return self._parent_field

    async def exists_by_id(self, key: int) -> bool:
        query = text(
            f"SELECT 1 FROM {self._table_name} WHERE {self._key_field} = :key"  # nosec B608
        )
        result = await self._conn.execute(query, {"key": key})
        return result.first() is not None

    async def get(self, key: int) -> TEntity | None:
        with self._tracer.span("contactmigration.repository.get", self._span_attributes("SELECT")):
            query = text(f"""
                SELECT {", ".join(self._field_names)}
                FROM {self._table_name}
                WHERE {self._key_field} = :key
            """)  # nosec B608 - table and columns from trusted entity class
            result = await self._conn.execute(query, {"key": key})
            row = result.mappings().first()
            return self._entity_class.model_validate(dict(row)) if row is not None else None

    async def save(self, entity: TEntity) -> TEntity:
        with self._tracer.span("contactmigration.repository.save", self._span_attributes("INSERT")):
            values = entity.model_dump(mode="python")
            if self._entity_class.__key_generated__:
                values.pop(self._key_field)
            columns = list(values)
            query = text(f"""
                INSERT INTO {self._table_name} ({", ".join(columns)})
                VALUES ({", ".join(f":{column}" for column in columns)})
                RETURNING {self._key_field}
            """)  # nosec B608 - table and columns from trusted entity class

            try:
                result = await self._conn.execute(query, values)
            except IntegrityError as e:
                raise self._translate_integrity_error(entity, e) from e

            key = result.scalar_one()
            return entity.with_key(key)

    def _translate_integrity_error(self, entity: TEntity, error: IntegrityError) -> PersistenceError:
        code = _sqlstate(error)
        message = str(error).lower()
        if code == FOREIGN_KEY_VIOLATION or "foreign key" in message:
            parent_field = self._parent_field
            parent_key = getattr(entity, parent_field) if parent_field else None
            parent_table = (
                self._entity_class.foreign_keys()[parent_field].table_name()
                if parent_field
                else "unknown"
            )
            return ForeignKeyViolationError(self._table_name, parent_table, parent_key)
        if (code == UNIQUE_VIOLATION or "duplicate key" in message) and entity.key is not None:
            return DuplicateKeyError(self._table_name, entity.key)
        return PersistenceError(f"Integrity error on {self._table_name}: {error}")

    async def find_all_by_parent_id(self, parent_id: int) -> list[TEntity]:
        parent_field = self._require_parent_field()
        query = text(f"""
            SELECT {", ".join(self._field_names)}
            FROM {self._table_name}
            WHERE {parent_field} = :parent_id
            ORDER BY {self._key_field}
        """)  # nosec B608 - table and columns from trusted entity class
        result = await self._conn.execute(query, {"parent_id": parent_id})
        return [self._entity_class.model_validate(dict(row)) for row in result.mappings()]

    async def _delete_where(self, column: str, value: int) -> int:
        query = text(
            f"DELETE FROM {self._table_name} WHERE {column} = :value"  # nosec B608
        )
        try:
            result = await self._conn.execute(query, {"value": value})
        except IntegrityError as e:
            raise PersistenceError(
                f"Cannot delete from {self._table_name} where {column} = {value}: {e}"
            ) from e
        return result.rowcount

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
        result = await self._conn.execute(
            text(f"SELECT COUNT(*) FROM {self._table_name}")  # nosec B608
        )
        return int(result.scalar_one())


class PostgreSQLContactStore(ContactStore):
    """
    PostgreSQL implementation of the contact store.

    Accepts an AsyncEngine (a connection is checked out per unit of work)
    or an AsyncConnection (units of work run on it, as a SAVEPOINT when
    the caller already holds a transaction).

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/contacts")
        >>> store = PostgreSQLContactStore(engine)
        >>> await store.initialize()
        >>> async with store.transaction() as uow:
        ...     await uow.contacts.save(contact)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        generated_id_start: int = GENERATED_ID_START,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the PostgreSQL contact store.

        Args:
            conn: Database connection or engine
            generated_id_start: First generated key for nested kinds
                (used when creating the schema)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True and OpenTelemetry is available, emit traces.
                          Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._generated_id_start = generated_id_start

    async def initialize(self) -> None:
        """
        Create all contact tables and indexes if they don't exist.

        Statements run one at a time for asyncpg compatibility.
        """
        statements = generate_full_schema(
            "postgresql", generated_id_start=self._generated_id_start
        )
        async with transactional_connection(self._conn) as conn:
            for statement in statements:
                await conn.execute(text(statement))
        logger.info("Initialized PostgreSQL contact schema (%d statements)", len(statements))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        async with transactional_connection(self._conn) as conn:
            yield UnitOfWork.build(
                lambda entity_class: PostgreSQLEntityRepository(conn, entity_class, self._tracer)
            )


__all__ = [
    "PostgreSQLEntityRepository",
    "PostgreSQLContactStore",
]
