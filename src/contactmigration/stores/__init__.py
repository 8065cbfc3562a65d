"""Contact store implementations for the contactmigration library."""

from contactmigration.stores.in_memory import InMemoryContactStore, InMemoryEntityRepository
from contactmigration.stores.interface import (
    ContactStore,
    EntityRepository,
    UnitOfWork,
)
from contactmigration.stores.postgresql import (
    PostgreSQLContactStore,
    PostgreSQLEntityRepository,
)
from contactmigration.stores.schema import (
    generate_full_schema,
    generate_indexes,
    generate_schema,
)

# SQLite support is optional - only import if aiosqlite is available
try:
    from contactmigration.stores.sqlite import (  # noqa: F401
        SQLiteContactStore,
        SQLiteEntityRepository,
    )

    _SQLITE_AVAILABLE = True
except ImportError:
    _SQLITE_AVAILABLE = False

__all__ = [
    # Port
    "ContactStore",
    "EntityRepository",
    "UnitOfWork",
    # Concrete implementations
    "InMemoryContactStore",
    "InMemoryEntityRepository",
    "PostgreSQLContactStore",
    "PostgreSQLEntityRepository",
    # Schema
    "generate_schema",
    "generate_indexes",
    "generate_full_schema",
]

# Add SQLite store to __all__ only if available
if _SQLITE_AVAILABLE:
    __all__.extend(["SQLiteContactStore", "SQLiteEntityRepository"])
