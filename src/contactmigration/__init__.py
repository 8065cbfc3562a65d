"""
contactmigration - Bulk migration of contacts from a source system of record.

This library provides:
- Migration records and correlation reports as Pydantic models/dataclasses
- One atomic unit of work per contact, with idempotent replace on re-migration
- Stores: In-Memory, SQLite (aiosqlite) and PostgreSQL (SQLAlchemy async)
- Per-contact locking: In-Memory and PostgreSQL advisory locks
- Optional OpenTelemetry tracing
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("contact-migration")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from contactmigration.config import DEFAULT_USERNAME, GENERATED_ID_START, MigrationConfig
from contactmigration.correlation import (
    Extracted,
    ExtractionResult,
    NestedExtracted,
    assemble_report,
)
from contactmigration.exceptions import (
    ContactMigrationError,
    CorrelationError,
    DuplicateKeyError,
    EntityPersistenceError,
    ForeignKeyViolationError,
    InvalidStageTransitionError,
    MigrationFailedError,
    PersistenceError,
)
from contactmigration.guard import DuplicateGuard
from contactmigration.locks import (
    InMemoryLockManager,
    LockAcquisitionError,
    LockInfo,
    LockManager,
    LockNotHeldError,
    PostgreSQLLockManager,
    contact_lock_key,
)
from contactmigration.report import (
    AddressAndPhones,
    ContactsAndRestrictions,
    ElementType,
    IdPair,
    MigrateContactResponse,
)
from contactmigration.requests import MigrateContactRequest
from contactmigration.service import (
    ContactMigrationService,
    MigrationProgress,
    MigrationStage,
)
from contactmigration.stores import (
    ContactStore,
    EntityRepository,
    InMemoryContactStore,
    PostgreSQLContactStore,
    UnitOfWork,
)

__all__ = [
    "__version__",
    # Service
    "ContactMigrationService",
    "MigrationStage",
    "MigrationProgress",
    "DuplicateGuard",
    # Config
    "MigrationConfig",
    "DEFAULT_USERNAME",
    "GENERATED_ID_START",
    # Records and reports
    "MigrateContactRequest",
    "MigrateContactResponse",
    "ElementType",
    "IdPair",
    "AddressAndPhones",
    "ContactsAndRestrictions",
    "Extracted",
    "NestedExtracted",
    "ExtractionResult",
    "assemble_report",
    # Stores
    "ContactStore",
    "EntityRepository",
    "UnitOfWork",
    "InMemoryContactStore",
    "PostgreSQLContactStore",
    # Locks
    "LockManager",
    "LockInfo",
    "InMemoryLockManager",
    "PostgreSQLLockManager",
    "contact_lock_key",
    # Exceptions
    "ContactMigrationError",
    "PersistenceError",
    "DuplicateKeyError",
    "ForeignKeyViolationError",
    "EntityPersistenceError",
    "CorrelationError",
    "InvalidStageTransitionError",
    "MigrationFailedError",
    "LockAcquisitionError",
    "LockNotHeldError",
]
