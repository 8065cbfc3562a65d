"""
In-memory contact store.

Useful for testing and development. Not suitable for production as all
data is lost when the process terminates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

from contactmigration.config import GENERATED_ID_START
from contactmigration.entities import ENTITY_CLASSES, MigratedEntity
from contactmigration.exceptions import (
    DuplicateKeyError,
    ForeignKeyViolationError,
    PersistenceError,
)
from contactmigration.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_TYPE,
    ATTR_PARENT_ID,
    Tracer,
    create_tracer,
)
from contactmigration.stores.interface import ContactStore, UnitOfWork

logger = logging.getLogger(__name__)

TEntity = TypeVar("TEntity", bound=MigratedEntity)

_Tables = dict[type[MigratedEntity], dict[int, MigratedEntity]]


class InMemoryEntityRepository(Generic[TEntity]):
    """
    Repository for one entity kind inside an InMemoryContactStore.

    Enforces the same constraints as the SQL schema: unique keys, parents
    that exist on insert, and no deletes of rows that are still referenced.
    Entities are copied on the way in and out.
    """

    def __init__(
        self,
        store: InMemoryContactStore,
        entity_class: type[TEntity],
        tracer: Tracer,
    ) -> None:
        self._store = store
        self._entity_class = entity_class
        self._tracer = tracer

    @property
    def _rows(self) -> dict[int, TEntity]:
        return self._store._tables[self._entity_class]  # type: ignore[return-value]

    def _span_attributes(self, operation: str) -> dict[str, Any]:
        return {
            ATTR_ENTITY_TYPE: self._entity_class.__name__,
            ATTR_DB_SYSTEM: "memory",
            ATTR_DB_OPERATION: operation,
        }

    async def exists_by_id(self, key: int) -> bool:
        return key in self._rows

    async def get(self, key: int) -> TEntity | None:
        entity = self._rows.get(key)
        return entity.model_copy() if entity is not None else None

    async def save(self, entity: TEntity) -> TEntity:
        with self._tracer.span(
            "contactmigration.repository.save",
            self._span_attributes("INSERT"),
        ):
            table = self._entity_class.table_name()
            if self._entity_class.__key_generated__:
                entity = entity.with_key(self._store._allocate_key(self._entity_class))
            elif entity.key is None:
                raise PersistenceError(f"{table} rows need a key, got none")

            key = entity.key
            assert key is not None
            if key in self._rows:
                raise DuplicateKeyError(table, key)

            for field_name, referenced in self._entity_class.foreign_keys().items():
                value = getattr(entity, field_name)
                if value not in self._store._tables[referenced]:
                    raise ForeignKeyViolationError(table, referenced.table_name(), value)

            self._rows[key] = entity.model_copy()
            return entity.model_copy()

    async def find_all_by_parent_id(self, parent_id: int) -> list[TEntity]:
        return [
            entity.model_copy()
            for _, entity in sorted(self._rows.items())
            if entity.parent_key == parent_id
        ]

    async def delete_all_by_parent_id(self, parent_id: int) -> int:
        attributes = self._span_attributes("DELETE")
        attributes[ATTR_PARENT_ID] = parent_id
        with self._tracer.span("contactmigration.repository.delete_all_by_parent_id", attributes):
            keys = [key for key, entity in self._rows.items() if entity.parent_key == parent_id]
            self._store._check_not_referenced(self._entity_class, keys)
            for key in keys:
                del self._rows[key]
            return len(keys)

    async def delete_by_id(self, key: int) -> bool:
        with self._tracer.span(
            "contactmigration.repository.delete_by_id",
            self._span_attributes("DELETE"),
        ):
            if key not in self._rows:
                return False
            self._store._check_not_referenced(self._entity_class, [key])
            del self._rows[key]
            return True

    async def count(self) -> int:
        return len(self._rows)


class InMemoryContactStore(ContactStore):
    """
    In-memory implementation of the contact store.

    Thread-safety:
        One unit of work runs at a time: ``transaction()`` holds a store-wide
        asyncio lock until the unit of work ends. Units of work must not be
        nested within one task.

    Rollback:
        The tables are snapshotted when a unit of work starts and restored
        if it exits with an exception. Key sequences are not rolled back,
        the same as database sequences.

    Example:
        >>> store = InMemoryContactStore()
        >>> async with store.transaction() as uow:
        ...     await uow.contacts.save(contact)
    """

    def __init__(
        self,
        *,
        generated_id_start: int = GENERATED_ID_START,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty in-memory store.

        Args:
            generated_id_start: First key handed out for kinds with generated keys
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True and OpenTelemetry is available, emit traces.
                          Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._generated_id_start = generated_id_start
        self._tables: _Tables = {entity_class: {} for entity_class in ENTITY_CLASSES}
        self._next_keys: dict[type[MigratedEntity], int] = {
            entity_class: generated_id_start for entity_class in ENTITY_CLASSES
        }
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Nothing to create; tables exist from construction."""
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        async with self._lock:
            snapshot = {entity_class: dict(rows) for entity_class, rows in self._tables.items()}
            try:
                yield UnitOfWork.build(self._repository)
            except BaseException:
                for entity_class, rows in snapshot.items():
                    table = self._tables[entity_class]
                    table.clear()
                    table.update(rows)
                logger.debug("Rolled back in-memory unit of work")
                raise

    def _repository(self, entity_class: type[MigratedEntity]) -> InMemoryEntityRepository[Any]:
        return InMemoryEntityRepository(self, entity_class, self._tracer)

    def _allocate_key(self, entity_class: type[MigratedEntity]) -> int:
        key = self._next_keys[entity_class]
        self._next_keys[entity_class] = key + 1
        return key

    def _check_not_referenced(self, entity_class: type[MigratedEntity], keys: list[int]) -> None:
        """
        Raise if any row in another table still points at one of the keys.

        Raises:
            ForeignKeyViolationError: On the first referencing row found
        """
        if not keys:
            return
        doomed = set(keys)
        for child_class in ENTITY_CLASSES:
            for field_name, referenced in child_class.foreign_keys().items():
                if referenced is not entity_class:
                    continue
                for child in self._tables[child_class].values():
                    value = getattr(child, field_name)
                    if value in doomed:
                        raise ForeignKeyViolationError(
                            child_class.table_name(), entity_class.table_name(), value
                        )

    def row_count(self, entity_class: type[MigratedEntity] | None = None) -> int:
        """
        Count stored rows outside of a unit of work.

        Args:
            entity_class: Count one kind only; all kinds if None
        """
        if entity_class is not None:
            return len(self._tables[entity_class])
        return sum(len(rows) for rows in self._tables.values())

    async def clear(self) -> None:
        """Remove all rows and reset key sequences."""
        async with self._lock:
            for entity_class in ENTITY_CLASSES:
                self._tables[entity_class].clear()
                self._next_keys[entity_class] = self._generated_id_start


__all__ = [
    "InMemoryEntityRepository",
    "InMemoryContactStore",
]
