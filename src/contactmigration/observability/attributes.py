"""
Standard span attributes for contactmigration.

Attribute constants used across all components for consistent span
attributes. Database attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from contactmigration.observability.attributes import ATTR_PERSON_ID
    >>>
    >>> with tracer.span(
    ...     "contactmigration.migrate_contact",
    ...     {ATTR_PERSON_ID: request.person_id},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_PERSON_ID = "contactmigration.person.id"
"""Source identifier of the contact being migrated (integer)."""

ATTR_ELEMENT_TYPE = "contactmigration.element.type"
"""Kind of record being extracted (e.g., 'Phone', 'PrisonerContact')."""

ATTR_ITEM_COUNT = "contactmigration.item.count"
"""Number of source items handled by an operation (integer)."""

ATTR_DUPLICATE = "contactmigration.duplicate"
"""Whether a previously migrated aggregate was replaced (boolean)."""

ATTR_STAGE = "contactmigration.stage"
"""Migration stage reached (string)."""

# =============================================================================
# Entity Attributes
# =============================================================================

ATTR_ENTITY_TYPE = "contactmigration.entity.type"
"""Entity class name handled by a repository (string)."""

ATTR_ENTITY_ID = "contactmigration.entity.id"
"""Destination identifier of an entity (integer)."""

ATTR_PARENT_ID = "contactmigration.parent.id"
"""Destination identifier of the parent entity (integer)."""

# =============================================================================
# Lock Attributes
# =============================================================================

ATTR_LOCK_KEY = "contactmigration.lock.key"
"""String key identifying an advisory lock."""

ATTR_LOCK_ID = "contactmigration.lock.id"
"""Numeric lock id derived from the key (integer)."""

ATTR_LOCK_TIMEOUT = "contactmigration.lock.timeout"
"""Lock wait timeout in seconds, -1 for none (float)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'INSERT', 'SELECT', 'DELETE')."""

ATTR_DB_TABLE = "db.sql.table"
"""Table the operation targets."""


__all__ = [
    "ATTR_PERSON_ID",
    "ATTR_ELEMENT_TYPE",
    "ATTR_ITEM_COUNT",
    "ATTR_DUPLICATE",
    "ATTR_STAGE",
    "ATTR_ENTITY_TYPE",
    "ATTR_ENTITY_ID",
    "ATTR_PARENT_ID",
    "ATTR_LOCK_KEY",
    "ATTR_LOCK_ID",
    "ATTR_LOCK_TIMEOUT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_TABLE",
]
