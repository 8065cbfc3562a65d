"""
Correlation of source identifiers with persisted entities.

Extractors return ``Extracted`` pairs (source id plus the entity as
persisted, including its generated key). Nested kinds, such as the
restrictions of each relationship, are grouped per parent in a
``NestedExtracted``. ``assemble_report`` folds all of them into the
correlation report without touching the store.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

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
from contactmigration.exceptions import CorrelationError
from contactmigration.report import (
    AddressAndPhones,
    ContactsAndRestrictions,
    ElementType,
    IdPair,
    MigrateContactResponse,
)

TEntity = TypeVar("TEntity", bound=MigratedEntity)
TParent = TypeVar("TParent", bound=MigratedEntity)
TChild = TypeVar("TChild", bound=MigratedEntity)
TGroup = TypeVar("TGroup")


@dataclass(frozen=True)
class Extracted(Generic[TEntity]):
    """
    A source item's identifier and the entity persisted for it.

    Attributes:
        source_id: Identifier assigned by the source system
        entity: The entity as returned by the store, key populated
    """

    source_id: int
    entity: TEntity

    @property
    def destination_id(self) -> int:
        key = self.entity.key
        if key is None:
            raise CorrelationError(
                f"{type(self.entity).__name__} for source id {self.source_id} has no key"
            )
        return key

    def to_pair(self, element_type: ElementType) -> IdPair:
        return IdPair(element_type, self.source_id, self.destination_id)


@dataclass(frozen=True)
class NestedExtracted(Generic[TEntity]):
    """The extracted children of one parent, keyed by the parent's source id."""

    parent_source_id: int
    children: list[Extracted[TEntity]] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionResult:
    """Everything persisted for one contact, grouped by kind."""

    contact: Extracted[ContactEntity]
    phones: list[Extracted[ContactPhoneEntity]] = field(default_factory=list)
    addresses: list[Extracted[ContactAddressEntity]] = field(default_factory=list)
    address_phones: list[NestedExtracted[ContactAddressPhoneEntity]] = field(
        default_factory=list
    )
    emails: list[Extracted[ContactEmailEntity]] = field(default_factory=list)
    identities: list[Extracted[ContactIdentityEntity]] = field(default_factory=list)
    restrictions: list[Extracted[ContactRestrictionEntity]] = field(default_factory=list)
    employments: list[Extracted[ContactEmploymentEntity]] = field(default_factory=list)
    relationships: list[Extracted[PrisonerContactEntity]] = field(default_factory=list)
    relationship_restrictions: list[NestedExtracted[PrisonerContactRestrictionEntity]] = field(
        default_factory=list
    )


def match_parents(
    parents: Sequence[Extracted[TParent]],
    source_ids: Sequence[int],
) -> list[Extracted[TParent]]:
    """
    Check that extracted parents line up with the source parents, in order.

    Args:
        parents: Parents as extracted by the previous stage
        source_ids: Source ids of the parents, in submission order

    Returns:
        The parents, one per source id

    Raises:
        CorrelationError: If counts differ or a source id is out of place
    """
    if len(parents) != len(source_ids):
        raise CorrelationError(
            f"Expected {len(source_ids)} extracted parents, got {len(parents)}"
        )
    for parent, source_id in zip(parents, source_ids, strict=True):
        if parent.source_id != source_id:
            raise CorrelationError(
                f"Parent source id {parent.source_id} does not match expected {source_id}"
            )
    return list(parents)


def _nest(
    parents: Sequence[Extracted[TParent]],
    nested: Sequence[NestedExtracted[TChild]],
    parent_type: ElementType,
    child_type: ElementType,
    build: Callable[[IdPair, list[IdPair]], TGroup],
) -> list[TGroup]:
    matched = match_parents(parents, [group.parent_source_id for group in nested])
    return [
        build(
            parent.to_pair(parent_type),
            [child.to_pair(child_type) for child in group.children],
        )
        for parent, group in zip(matched, nested, strict=True)
    ]


def assemble_report(result: ExtractionResult) -> MigrateContactResponse:
    """
    Build the correlation report for one migrated contact.

    Pure: one pair per extracted entity, in extraction order, with address
    phones nested under their address and relationship restrictions under
    their relationship.

    Raises:
        CorrelationError: If nested groups do not line up with their parents
    """
    contact = result.contact.entity
    return MigrateContactResponse(
        contact=result.contact.to_pair(ElementType.CONTACT),
        last_name=contact.last_name,
        date_of_birth=contact.date_of_birth,
        phone_numbers=[item.to_pair(ElementType.PHONE) for item in result.phones],
        addresses=_nest(
            result.addresses,
            result.address_phones,
            ElementType.ADDRESS,
            ElementType.ADDRESS_PHONE,
            AddressAndPhones,
        ),
        email_addresses=[item.to_pair(ElementType.EMAIL) for item in result.emails],
        identities=[item.to_pair(ElementType.IDENTITY) for item in result.identities],
        restrictions=[item.to_pair(ElementType.RESTRICTION) for item in result.restrictions],
        relationships=_nest(
            result.relationships,
            result.relationship_restrictions,
            ElementType.PRISONER_CONTACT,
            ElementType.PRISONER_CONTACT_RESTRICTION,
            ContactsAndRestrictions,
        ),
        employments=[item.to_pair(ElementType.EMPLOYMENT) for item in result.employments],
    )


__all__ = [
    "Extracted",
    "NestedExtracted",
    "ExtractionResult",
    "match_parents",
    "assemble_report",
]
