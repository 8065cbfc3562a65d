"""
Schema generation for migrated contact tables.

Generates CREATE TABLE and CREATE INDEX statements from the entity
classes. Supports PostgreSQL and SQLite dialects with appropriate type
mappings.

Example:
    >>> from contactmigration.entities import ContactPhoneEntity
    >>> from contactmigration.stores.schema import generate_schema
    >>>
    >>> print(generate_schema(ContactPhoneEntity, dialect="postgresql"))
    CREATE TABLE IF NOT EXISTS contact_phone (
        contact_phone_id BIGINT GENERATED BY DEFAULT AS IDENTITY (START WITH 20000000) PRIMARY KEY,
        created_by TEXT NOT NULL,
        created_time TIMESTAMP NOT NULL,
        updated_by TEXT,
        updated_time TIMESTAMP,
        contact_id BIGINT NOT NULL REFERENCES contact(contact_id),
        phone_type TEXT NOT NULL,
        phone_number TEXT NOT NULL,
        ext_number TEXT
    );
"""

import types
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any, Literal, Union, get_args, get_origin

from pydantic.fields import FieldInfo

from contactmigration.config import GENERATED_ID_START
from contactmigration.entities import ENTITY_CLASSES, MigratedEntity

Dialect = Literal["postgresql", "sqlite"]

# Type mappings for PostgreSQL
POSTGRESQL_TYPE_MAP: dict[type, str] = {
    str: "TEXT",
    int: "BIGINT",
    float: "DOUBLE PRECISION",
    bool: "BOOLEAN",
    datetime: "TIMESTAMP",
    date: "DATE",
}

# Type mappings for SQLite
SQLITE_TYPE_MAP: dict[type, str] = {
    str: "TEXT",
    int: "INTEGER",
    float: "REAL",
    bool: "INTEGER",
    datetime: "TEXT",
    date: "TEXT",
}


def generate_schema(
    entity_class: type[MigratedEntity],
    dialect: Dialect = "postgresql",
    if_not_exists: bool = True,
    generated_id_start: int = GENERATED_ID_START,
) -> str:
    """
    Generate CREATE TABLE SQL for an entity class.

    Args:
        entity_class: The entity to generate the table for
        dialect: Database dialect ('postgresql' or 'sqlite')
        if_not_exists: Include IF NOT EXISTS clause (default True)
        generated_id_start: First value of generated keys (PostgreSQL only;
            SQLite sequences are seeded by generate_full_schema)

    Returns:
        CREATE TABLE SQL statement

    Note:
        - The key column comes first
        - Required fields (not Optional) get NOT NULL
        - Foreign key columns get a REFERENCES clause
    """
    type_map = POSTGRESQL_TYPE_MAP if dialect == "postgresql" else SQLITE_TYPE_MAP
    table_name = entity_class.table_name()
    foreign_keys = entity_class.foreign_keys()

    columns = [_generate_key_column(entity_class, dialect, generated_id_start)]
    for field_name, field_info in entity_class.model_fields.items():
        if field_name == entity_class.key_field():
            continue
        column_sql = _generate_column(field_name, field_info, type_map, dialect)
        referenced = foreign_keys.get(field_name)
        if referenced is not None:
            column_sql += f" REFERENCES {referenced.table_name()}({referenced.key_field()})"
        columns.append(column_sql)

    exists_clause = "IF NOT EXISTS " if if_not_exists else ""
    columns_sql = ",\n    ".join(columns)

    return f"""CREATE TABLE {exists_clause}{table_name} (
    {columns_sql}
);"""


def generate_indexes(entity_class: type[MigratedEntity]) -> list[str]:
    """
    Generate CREATE INDEX statements for every foreign key column.

    Parent lookups (find and delete by parent id) use these.
    """
    table_name = entity_class.table_name()
    return [
        f"CREATE INDEX IF NOT EXISTS idx_{table_name}_{column} ON {table_name}({column});"
        for column in entity_class.foreign_keys()
    ]


def generate_full_schema(
    dialect: Dialect = "postgresql",
    entity_classes: Sequence[type[MigratedEntity]] = ENTITY_CLASSES,
    generated_id_start: int = GENERATED_ID_START,
) -> list[str]:
    """
    Generate every statement needed to create the contact schema.

    Statements are returned separately (asyncpg runs one statement per
    execute) and in dependency order, parents first.

    For SQLite, AUTOINCREMENT sequences are seeded so the first generated
    key is ``generated_id_start``. Seeding only happens for tables whose
    sequence does not exist yet, so re-running is safe.

    Args:
        dialect: Database dialect ('postgresql' or 'sqlite')
        entity_classes: Entities to include (default: all)
        generated_id_start: First value of generated keys

    Returns:
        List of SQL statements
    """
    statements: list[str] = []
    for entity_class in entity_classes:
        statements.append(generate_schema(entity_class, dialect, True, generated_id_start))
        statements.extend(generate_indexes(entity_class))

    if dialect == "sqlite":
        for entity_class in entity_classes:
            if not entity_class.__key_generated__:
                continue
            table_name = entity_class.table_name()
            statements.append(
                "INSERT INTO sqlite_sequence (name, seq) "
                f"SELECT '{table_name}', {generated_id_start - 1} "
                "WHERE NOT EXISTS "
                f"(SELECT 1 FROM sqlite_sequence WHERE name = '{table_name}');"
            )

    return statements


def _generate_key_column(
    entity_class: type[MigratedEntity],
    dialect: str,
    generated_id_start: int,
) -> str:
    key = entity_class.key_field()
    if not entity_class.__key_generated__:
        sql_type = "BIGINT" if dialect == "postgresql" else "INTEGER"
        return f"{key} {sql_type} PRIMARY KEY"
    if dialect == "postgresql":
        return (
            f"{key} BIGINT GENERATED BY DEFAULT AS IDENTITY "
            f"(START WITH {generated_id_start}) PRIMARY KEY"
        )
    return f"{key} INTEGER PRIMARY KEY AUTOINCREMENT"


def _generate_column(
    field_name: str,
    field_info: FieldInfo,
    type_map: dict[type, str],
    dialect: str,
) -> str:
    """
    Generate a single column definition.

    Args:
        field_name: Name of the field/column
        field_info: Pydantic FieldInfo for the field
        type_map: Mapping of Python types to SQL types
        dialect: Database dialect ('postgresql' or 'sqlite')

    Returns:
        SQL column definition string
    """
    python_type = _extract_type(field_info.annotation)
    sql_type = type_map.get(python_type, "TEXT")

    parts = [field_name, sql_type]

    if not _is_optional(field_info.annotation):
        parts.append("NOT NULL")

    if field_info.default is not None:
        default_value = _format_default(field_info.default, dialect)
        if default_value is not None:
            parts.append(f"DEFAULT {default_value}")

    return " ".join(parts)


def _extract_type(annotation: Any) -> type:
    """
    Extract the base type from a type annotation.

    Handles Optional[T], Union[T, None] and T | None.
    """
    if annotation is None:
        return str

    origin = get_origin(annotation)
    if origin is not None:
        if origin is Union or origin is types.UnionType:
            for arg in get_args(annotation):
                if arg is not type(None):
                    return _extract_type(arg)
        return origin if isinstance(origin, type) else type(origin)

    return annotation if isinstance(annotation, type) else type(annotation)


def _is_optional(annotation: Any) -> bool:
    """Check if a type annotation allows None."""
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return type(None) in get_args(annotation)
    return False


def _format_default(value: Any, dialect: str) -> str | None:
    """
    Format a Python default value for SQL.

    Returns:
        SQL literal string, or None if the value cannot be formatted
    """
    if isinstance(value, bool):
        if dialect == "sqlite":
            return "1" if value else "0"
        return "TRUE" if value else "FALSE"
    elif isinstance(value, (int, float)):
        return str(value)
    elif isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"

    return None


__all__ = [
    "generate_schema",
    "generate_indexes",
    "generate_full_schema",
    "POSTGRESQL_TYPE_MAP",
    "SQLITE_TYPE_MAP",
]
