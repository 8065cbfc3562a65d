"""
Library exceptions for the contactmigration package.

Exception Hierarchy:
    ContactMigrationError (base)
    +-- PersistenceError
    |   +-- DuplicateKeyError
    |   +-- ForeignKeyViolationError
    +-- EntityPersistenceError
    +-- CorrelationError
    +-- InvalidStageTransitionError
    +-- MigrationFailedError

Lock errors (LockAcquisitionError, LockNotHeldError) live in
contactmigration.locks and share the same base.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contactmigration.report import ElementType
    from contactmigration.service import MigrationStage


class ContactMigrationError(Exception):
    """Base exception for the contactmigration library."""

    pass


class PersistenceError(ContactMigrationError):
    """Raised when a store rejects a write."""

    pass


class DuplicateKeyError(PersistenceError):
    """Raised when a row with the same primary key already exists."""

    def __init__(self, table: str, key: int) -> None:
        self.table = table
        self.key = key
        super().__init__(f"Duplicate key {key} in table {table}")


class ForeignKeyViolationError(PersistenceError):
    """Raised when a row references a parent that does not exist."""

    def __init__(self, table: str, parent_table: str, parent_key: int | None) -> None:
        self.table = table
        self.parent_table = parent_table
        self.parent_key = parent_key
        super().__init__(
            f"Row in {table} references missing {parent_table} row with key {parent_key}"
        )


class EntityPersistenceError(ContactMigrationError):
    """
    Raised by an extractor when one source item could not be persisted.

    Attributes:
        element_type: Kind of the item being saved
        source_id: Source system identifier of the item
    """

    def __init__(self, element_type: ElementType, source_id: int, message: str) -> None:
        self.element_type = element_type
        self.source_id = source_id
        super().__init__(f"Failed to persist {element_type.value} {source_id}: {message}")


class CorrelationError(ContactMigrationError):
    """Raised when extracted parents and their children cannot be matched up."""

    pass


class InvalidStageTransitionError(ContactMigrationError):
    """Raised when a migration attempts an invalid stage transition."""

    def __init__(self, current_stage: MigrationStage, target_stage: MigrationStage) -> None:
        self.current_stage = current_stage
        self.target_stage = target_stage
        super().__init__(
            f"Invalid stage transition: {current_stage.value} -> {target_stage.value}"
        )


class MigrationFailedError(ContactMigrationError):
    """
    Raised when a contact migration fails and its unit of work is rolled back.

    The original exception is always available as ``__cause__``.

    Attributes:
        person_id: Source identifier of the contact being migrated
        stage: Last stage the migration reached before failing
        element_type: Kind of the item that failed, when known
        item_source_id: Source identifier of the item that failed, when known
    """

    def __init__(
        self,
        person_id: int,
        stage: MigrationStage,
        message: str,
        *,
        element_type: ElementType | None = None,
        item_source_id: int | None = None,
    ) -> None:
        self.person_id = person_id
        self.stage = stage
        self.element_type = element_type
        self.item_source_id = item_source_id
        item_info = ""
        if element_type is not None:
            item_info = f" at {element_type.value} {item_source_id}"
        super().__init__(
            f"Migration of person {person_id} failed after stage {stage.value}{item_info}: "
            f"{message}"
        )


__all__ = [
    "ContactMigrationError",
    "PersistenceError",
    "DuplicateKeyError",
    "ForeignKeyViolationError",
    "EntityPersistenceError",
    "CorrelationError",
    "InvalidStageTransitionError",
    "MigrationFailedError",
]
