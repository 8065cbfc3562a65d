"""
Per-kind extraction of a migration record into destination entities.

Every extractor maps the source items of one kind, saves them through the
unit of work and returns ``Extracted`` pairs in submission order. The
contact itself is extracted first by ``extract_contact``; nested kinds
that hang off another extracted kind (restrictions of relationships,
phones of addresses) use ``NestedKindExtractor`` and take the parent
stage's output as input.

Extractors hold no state. They run one after another on the unit of
work's single connection.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

from contactmigration.config import MigrationConfig
from contactmigration.correlation import Extracted, NestedExtracted, match_parents
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
from contactmigration.exceptions import EntityPersistenceError
from contactmigration.observability import (
    ATTR_ELEMENT_TYPE,
    ATTR_ITEM_COUNT,
    ATTR_PERSON_ID,
    NullTracer,
    Tracer,
)
from contactmigration.report import ElementType
from contactmigration.requests import (
    AuditedItem,
    CodedValue,
    MigrateAddress,
    MigrateContactRequest,
    MigrateEmailAddress,
    MigrateEmployment,
    MigrateIdentifier,
    MigratePhoneNumber,
    MigratePrisonerContactRestriction,
    MigrateRelationship,
    MigrateRestriction,
)
from contactmigration.stores.interface import EntityRepository, UnitOfWork

logger = logging.getLogger(__name__)

TItem = TypeVar("TItem", bound=AuditedItem)
TParentItem = TypeVar("TParentItem", bound=AuditedItem)
TEntity = TypeVar("TEntity", bound=MigratedEntity)
TParent = TypeVar("TParent", bound=MigratedEntity)


def audit_fields(item: AuditedItem, config: MigrationConfig) -> dict[str, Any]:
    """
    Audit columns for an entity created from ``item``.

    Falls back to the configured default username and the current local
    time when the source system sent no create audit.
    """
    return {
        "created_by": item.create_username or config.default_username,
        "created_time": item.create_date_time or datetime.now(),
        "updated_by": item.modify_username,
        "updated_time": item.modify_date_time,
    }


def _code(value: CodedValue | None) -> str | None:
    return value.code if value is not None else None


async def _save(
    repository: EntityRepository[TEntity],
    entity: TEntity,
    element_type: ElementType,
    source_id: int,
) -> TEntity:
    try:
        return await repository.save(entity)
    except Exception as e:
        raise EntityPersistenceError(element_type, source_id, str(e)) from e


# =============================================================================
# Contact
# =============================================================================


async def extract_contact(
    uow: UnitOfWork,
    request: MigrateContactRequest,
    config: MigrationConfig,
    tracer: Tracer | None = None,
) -> Extracted[ContactEntity]:
    """
    Save the contact itself, keyed by the source person id.

    Raises:
        EntityPersistenceError: If the contact could not be saved
    """
    tracer = tracer or NullTracer()
    entity = ContactEntity(
        contact_id=request.person_id,
        title=_code(request.title),
        last_name=request.last_name,
        first_name=request.first_name,
        middle_names=request.middle_name,
        date_of_birth=request.date_of_birth,
        deceased_date=request.deceased_date,
        is_deceased=request.deceased_date is not None,
        staff_flag=request.staff,
        remitter_flag=request.remitter,
        gender=_code(request.gender),
        language_code=_code(request.language),
        domestic_status=_code(request.domestic_status),
        interpreter_required=request.interpreter_required,
        **audit_fields(request, config),
    )

    with tracer.span(
        "contactmigration.extract.contact",
        {ATTR_PERSON_ID: request.person_id, ATTR_ELEMENT_TYPE: ElementType.CONTACT.value},
    ):
        saved = await _save(uow.contacts, entity, ElementType.CONTACT, request.person_id)

    return Extracted(request.person_id, saved)


# =============================================================================
# Flat kinds
# =============================================================================


@dataclass(frozen=True)
class KindExtractor(Generic[TItem, TEntity]):
    """
    Extracts one flat collection of the contact (phones, emails, ...).

    Attributes:
        name: Kind name used in span names and log lines
        element_type: Report element type of the saved items
        items: Selects the source items from the request
        source_id: Reads an item's source id
        to_entity: Maps an item to an unsaved entity for the given contact id
        repository: Selects the repository for the kind from the unit of work
    """

    name: str
    element_type: ElementType
    items: Callable[[MigrateContactRequest], Sequence[TItem]]
    source_id: Callable[[TItem], int]
    to_entity: Callable[[TItem, int, MigrationConfig], TEntity]
    repository: Callable[[UnitOfWork], EntityRepository[TEntity]]

    async def extract(
        self,
        uow: UnitOfWork,
        request: MigrateContactRequest,
        contact_id: int,
        config: MigrationConfig,
        tracer: Tracer | None = None,
    ) -> list[Extracted[TEntity]]:
        """
        Save every item of this kind, preserving submission order.

        Raises:
            EntityPersistenceError: On the first item that could not be saved
        """
        tracer = tracer or NullTracer()
        items = self.items(request)
        repository = self.repository(uow)
        extracted: list[Extracted[TEntity]] = []

        with tracer.span(
            f"contactmigration.extract.{self.name}",
            {
                ATTR_PERSON_ID: contact_id,
                ATTR_ELEMENT_TYPE: self.element_type.value,
                ATTR_ITEM_COUNT: len(items),
            },
        ):
            for item in items:
                source_id = self.source_id(item)
                entity = self.to_entity(item, contact_id, config)
                saved = await _save(repository, entity, self.element_type, source_id)
                extracted.append(Extracted(source_id, saved))

        logger.debug("Extracted %d %s for contact %s", len(extracted), self.name, contact_id)
        return extracted


def _phone(item: MigratePhoneNumber, contact_id: int, config: MigrationConfig) -> ContactPhoneEntity:
    return ContactPhoneEntity(
        contact_id=contact_id,
        phone_type=item.type.code,
        phone_number=item.number,
        ext_number=item.extension,
        **audit_fields(item, config),
    )


def _address(
    item: MigrateAddress, contact_id: int, config: MigrationConfig
) -> ContactAddressEntity:
    return ContactAddressEntity(
        contact_id=contact_id,
        address_type=_code(item.type),
        primary_address=item.primary_address,
        flat=item.flat,
        property=item.premise,
        street=item.street,
        area=item.locality,
        city_code=_code(item.city),
        county_code=_code(item.county),
        post_code=item.post_code,
        country_code=_code(item.country),
        verified=item.validated_paf,
        mail_flag=item.mail_address,
        start_date=item.start_date,
        end_date=item.end_date,
        no_fixed_address=item.no_fixed_address,
        comments=item.comment,
        **audit_fields(item, config),
    )


def _email(
    item: MigrateEmailAddress, contact_id: int, config: MigrationConfig
) -> ContactEmailEntity:
    return ContactEmailEntity(
        contact_id=contact_id,
        email_address=item.email,
        **audit_fields(item, config),
    )


def _identity(
    item: MigrateIdentifier, contact_id: int, config: MigrationConfig
) -> ContactIdentityEntity:
    return ContactIdentityEntity(
        contact_id=contact_id,
        identity_type=item.type.code,
        identity_value=item.identifier,
        issuing_authority=item.issued_authority,
        **audit_fields(item, config),
    )


def _restriction(
    item: MigrateRestriction, contact_id: int, config: MigrationConfig
) -> ContactRestrictionEntity:
    return ContactRestrictionEntity(
        contact_id=contact_id,
        restriction_type=item.type.code,
        start_date=item.effective_date,
        expiry_date=item.expiry_date,
        comments=item.comment,
        **audit_fields(item, config),
    )


def _employment(
    item: MigrateEmployment, contact_id: int, config: MigrationConfig
) -> ContactEmploymentEntity:
    return ContactEmploymentEntity(
        contact_id=contact_id,
        organisation_id=item.corporate.id,
        active=item.active,
        **audit_fields(item, config),
    )


def _relationship(
    item: MigrateRelationship, contact_id: int, config: MigrationConfig
) -> PrisonerContactEntity:
    # contact_type is the relationship kind (social/official); relationship_type
    # is the relationship to the prisoner.
    return PrisonerContactEntity(
        contact_id=contact_id,
        prisoner_number=item.prisoner_number,
        relationship_type=item.contact_type.code,
        relationship_to_prisoner=item.relationship_type.code,
        next_of_kin=item.next_of_kin,
        emergency_contact=item.emergency_contact,
        approved_visitor=item.approved_visitor,
        active=item.active,
        current_term=item.current_term,
        expiry_date=item.expiry_date,
        comments=item.comment,
        **audit_fields(item, config),
    )


PHONES: KindExtractor[MigratePhoneNumber, ContactPhoneEntity] = KindExtractor(
    name="phones",
    element_type=ElementType.PHONE,
    items=lambda request: request.phone_numbers,
    source_id=lambda item: item.phone_id,
    to_entity=_phone,
    repository=lambda uow: uow.phones,
)

ADDRESSES: KindExtractor[MigrateAddress, ContactAddressEntity] = KindExtractor(
    name="addresses",
    element_type=ElementType.ADDRESS,
    items=lambda request: request.addresses,
    source_id=lambda item: item.address_id,
    to_entity=_address,
    repository=lambda uow: uow.addresses,
)

EMAILS: KindExtractor[MigrateEmailAddress, ContactEmailEntity] = KindExtractor(
    name="emails",
    element_type=ElementType.EMAIL,
    items=lambda request: request.email_addresses,
    source_id=lambda item: item.email_address_id,
    to_entity=_email,
    repository=lambda uow: uow.emails,
)

IDENTITIES: KindExtractor[MigrateIdentifier, ContactIdentityEntity] = KindExtractor(
    name="identities",
    element_type=ElementType.IDENTITY,
    items=lambda request: request.identifiers,
    source_id=lambda item: item.sequence,
    to_entity=_identity,
    repository=lambda uow: uow.identities,
)

RESTRICTIONS: KindExtractor[MigrateRestriction, ContactRestrictionEntity] = KindExtractor(
    name="restrictions",
    element_type=ElementType.RESTRICTION,
    items=lambda request: request.restrictions,
    source_id=lambda item: item.id,
    to_entity=_restriction,
    repository=lambda uow: uow.restrictions,
)

EMPLOYMENTS: KindExtractor[MigrateEmployment, ContactEmploymentEntity] = KindExtractor(
    name="employments",
    element_type=ElementType.EMPLOYMENT,
    items=lambda request: request.employments,
    source_id=lambda item: item.sequence,
    to_entity=_employment,
    repository=lambda uow: uow.employments,
)

RELATIONSHIPS: KindExtractor[MigrateRelationship, PrisonerContactEntity] = KindExtractor(
    name="relationships",
    element_type=ElementType.PRISONER_CONTACT,
    items=lambda request: request.contacts,
    source_id=lambda item: item.id,
    to_entity=_relationship,
    repository=lambda uow: uow.relationships,
)


# =============================================================================
# Nested kinds
# =============================================================================


@dataclass(frozen=True)
class NestedKindExtractor(Generic[TParentItem, TItem, TParent, TEntity]):
    """
    Extracts children of an already extracted kind.

    Each source parent is matched to its extracted counterpart by position
    and source id; children are saved under the parent's new destination id.

    Attributes:
        name: Kind name used in span names and log lines
        element_type: Report element type of the saved children
        parents: Selects the source parents from the request
        parent_source_id: Reads a source parent's id
        children: Selects the source children of one parent
        source_id: Reads a child's source id
        persist: Saves one child for (unit of work, child, contact id,
            extracted parent, config) and returns the entity to report
    """

    name: str
    element_type: ElementType
    parents: Callable[[MigrateContactRequest], Sequence[TParentItem]]
    parent_source_id: Callable[[TParentItem], int]
    children: Callable[[TParentItem], Sequence[TItem]]
    source_id: Callable[[TItem], int]
    persist: Callable[
        [UnitOfWork, TItem, int, Extracted[TParent], MigrationConfig], Awaitable[TEntity]
    ]

    async def extract(
        self,
        uow: UnitOfWork,
        request: MigrateContactRequest,
        contact_id: int,
        parents: Sequence[Extracted[TParent]],
        config: MigrationConfig,
        tracer: Tracer | None = None,
    ) -> list[NestedExtracted[TEntity]]:
        """
        Save the children of every parent, one group per parent.

        Raises:
            CorrelationError: If ``parents`` does not line up with the request
            EntityPersistenceError: On the first child that could not be saved
        """
        tracer = tracer or NullTracer()
        source_parents = self.parents(request)
        matched = match_parents(parents, [self.parent_source_id(p) for p in source_parents])
        total = sum(len(self.children(p)) for p in source_parents)
        groups: list[NestedExtracted[TEntity]] = []

        with tracer.span(
            f"contactmigration.extract.{self.name}",
            {
                ATTR_PERSON_ID: contact_id,
                ATTR_ELEMENT_TYPE: self.element_type.value,
                ATTR_ITEM_COUNT: total,
            },
        ):
            for source_parent, parent in zip(source_parents, matched, strict=True):
                children: list[Extracted[TEntity]] = []
                for item in self.children(source_parent):
                    source_id = self.source_id(item)
                    try:
                        saved = await self.persist(uow, item, contact_id, parent, config)
                    except EntityPersistenceError:
                        raise
                    except Exception as e:
                        raise EntityPersistenceError(self.element_type, source_id, str(e)) from e
                    children.append(Extracted(source_id, saved))
                groups.append(NestedExtracted(parent.source_id, children))

        logger.debug("Extracted %d %s for contact %s", total, self.name, contact_id)
        return groups


async def _persist_relationship_restriction(
    uow: UnitOfWork,
    item: MigratePrisonerContactRestriction,
    contact_id: int,
    relationship: Extracted[PrisonerContactEntity],
    config: MigrationConfig,
) -> PrisonerContactRestrictionEntity:
    return await uow.relationship_restrictions.save(
        PrisonerContactRestrictionEntity(
            prisoner_contact_id=relationship.destination_id,
            restriction_type=item.restriction_type.code,
            start_date=item.start_date,
            expiry_date=item.expiry_date,
            comments=item.comment,
            **audit_fields(item, config),
        )
    )


async def _persist_address_phone(
    uow: UnitOfWork,
    item: MigratePhoneNumber,
    contact_id: int,
    address: Extracted[ContactAddressEntity],
    config: MigrationConfig,
) -> ContactAddressPhoneEntity:
    phone = await uow.phones.save(_phone(item, contact_id, config))
    if phone.key is None:
        raise EntityPersistenceError(ElementType.PHONE, item.phone_id, "no key assigned")
    return await uow.address_phones.save(
        ContactAddressPhoneEntity(
            contact_id=contact_id,
            contact_address_id=address.destination_id,
            contact_phone_id=phone.key,
            **audit_fields(item, config),
        )
    )


RELATIONSHIP_RESTRICTIONS: NestedKindExtractor[
    MigrateRelationship,
    MigratePrisonerContactRestriction,
    PrisonerContactEntity,
    PrisonerContactRestrictionEntity,
] = NestedKindExtractor(
    name="relationship_restrictions",
    element_type=ElementType.PRISONER_CONTACT_RESTRICTION,
    parents=lambda request: request.contacts,
    parent_source_id=lambda relationship: relationship.id,
    children=lambda relationship: relationship.restrictions,
    source_id=lambda item: item.id,
    persist=_persist_relationship_restriction,
)

ADDRESS_PHONES: NestedKindExtractor[
    MigrateAddress,
    MigratePhoneNumber,
    ContactAddressEntity,
    ContactAddressPhoneEntity,
] = NestedKindExtractor(
    name="address_phones",
    element_type=ElementType.ADDRESS_PHONE,
    parents=lambda request: request.addresses,
    parent_source_id=lambda address: address.address_id,
    children=lambda address: address.phone_numbers,
    source_id=lambda item: item.phone_id,
    persist=_persist_address_phone,
)


__all__ = [
    "audit_fields",
    "extract_contact",
    "KindExtractor",
    "NestedKindExtractor",
    "PHONES",
    "ADDRESSES",
    "EMAILS",
    "IDENTITIES",
    "RESTRICTIONS",
    "EMPLOYMENTS",
    "RELATIONSHIPS",
    "RELATIONSHIP_RESTRICTIONS",
    "ADDRESS_PHONES",
]
