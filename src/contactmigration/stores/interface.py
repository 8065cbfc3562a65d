"""
Persistence port for migrated contacts.

A ``ContactStore`` opens units of work. Each ``UnitOfWork`` is one
transaction exposing one ``EntityRepository`` per entity kind; everything
written through it is committed together when the ``transaction()``
context exits normally and rolled back when it exits with an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, fields
from typing import Any, Protocol, TypeVar, runtime_checkable

from contactmigration.entities import (
    ContactAddressEntity,
    ContactAddressPhoneEntity,
    ContactEmailEntity,
    ContactEmploymentEntity,
    ContactEntity,
    ContactIdentityEntity,
    ContactPhoneEntity,
    ContactRestrictionEntity,
    MigratedEntity,
    PrisonerContactEntity,
    PrisonerContactRestrictionEntity,
)

TEntity = TypeVar("TEntity", bound=MigratedEntity)


@runtime_checkable
class EntityRepository(Protocol[TEntity]):
    """
    Protocol for per-kind repositories within a unit of work.

    Keys are destination identifiers. Deleting rows that do not exist is
    never an error.
    """

    async def exists_by_id(self, key: int) -> bool:
        """Check whether a row with this key exists."""
        ...

    async def get(self, key: int) -> TEntity | None:
        """Get one entity by key, or None if absent."""
        ...

    async def save(self, entity: TEntity) -> TEntity:
        """
        Insert an entity.

        Kinds with generated keys ignore any key set on the entity and
        return a copy carrying the key assigned by the store.

        Raises:
            PersistenceError: If a key is duplicated or a referenced
                parent does not exist
        """
        ...

    async def find_all_by_parent_id(self, parent_id: int) -> list[TEntity]:
        """All entities whose parent key equals parent_id, in key order."""
        ...

    async def delete_all_by_parent_id(self, parent_id: int) -> int:
        """Delete all entities under a parent. Returns the number deleted."""
        ...

    async def delete_by_id(self, key: int) -> bool:
        """Delete one entity. Returns True if a row was deleted."""
        ...

    async def count(self) -> int:
        """Number of rows of this kind."""
        ...


@dataclass(frozen=True)
class UnitOfWork:
    """
    Repositories for every entity kind, bound to one transaction.

    Attributes:
        contacts: Contacts (keyed by the source person id)
        phones: Phone numbers, including those held at an address
        addresses: Addresses
        address_phones: Links between an address and a phone number
        emails: Email addresses
        identities: Identity documents
        restrictions: Restrictions on the contact
        employments: Employments
        relationships: Relationships to prisoners
        relationship_restrictions: Restrictions on a relationship
    """

    contacts: EntityRepository[ContactEntity]
    phones: EntityRepository[ContactPhoneEntity]
    addresses: EntityRepository[ContactAddressEntity]
    address_phones: EntityRepository[ContactAddressPhoneEntity]
    emails: EntityRepository[ContactEmailEntity]
    identities: EntityRepository[ContactIdentityEntity]
    restrictions: EntityRepository[ContactRestrictionEntity]
    employments: EntityRepository[ContactEmploymentEntity]
    relationships: EntityRepository[PrisonerContactEntity]
    relationship_restrictions: EntityRepository[PrisonerContactRestrictionEntity]

    @classmethod
    def build(
        cls,
        factory: Callable[[type[MigratedEntity]], EntityRepository[Any]],
    ) -> UnitOfWork:
        """
        Create a unit of work with one repository per entity kind.

        Args:
            factory: Called with each entity class, returns its repository
        """
        return cls(
            contacts=factory(ContactEntity),
            phones=factory(ContactPhoneEntity),
            addresses=factory(ContactAddressEntity),
            address_phones=factory(ContactAddressPhoneEntity),
            emails=factory(ContactEmailEntity),
            identities=factory(ContactIdentityEntity),
            restrictions=factory(ContactRestrictionEntity),
            employments=factory(ContactEmploymentEntity),
            relationships=factory(PrisonerContactEntity),
            relationship_restrictions=factory(PrisonerContactRestrictionEntity),
        )

    def repositories(self) -> dict[str, EntityRepository[Any]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class ContactStore(ABC):
    """
    Abstract base class for contact stores.

    Implementations:
    - InMemoryContactStore: dict-backed, for tests and development
    - SQLiteContactStore: aiosqlite, for single-process deployments
    - PostgreSQLContactStore: SQLAlchemy async over asyncpg
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[UnitOfWork]:
        """
        Open a unit of work.

        Commits when the context exits normally, rolls back on any
        exception (including cancellation) and re-raises it.

        Example:
            >>> async with store.transaction() as uow:
            ...     await uow.contacts.save(contact)
        """
        ...

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema if it does not exist. Safe to call repeatedly."""
        ...


__all__ = [
    "EntityRepository",
    "UnitOfWork",
    "ContactStore",
]
