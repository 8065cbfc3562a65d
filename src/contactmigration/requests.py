"""
Inbound migration record models.

The source system sends one complete contact per request, as camelCase
JSON. Every model accepts either the camelCase wire names or the Python
attribute names, so requests can be built from a decoded payload or
directly in code:

    >>> MigrateContactRequest.model_validate(
    ...     {"personId": 1, "lastName": "Smith", "firstName": "Jo"}
    ... )
    >>> MigrateContactRequest(person_id=1, last_name="Smith", first_name="Jo")

Every item carries its own audit fields. Identifiers are the source
system's and are only ever used for correlation, never as destination
keys (except ``person_id``, which becomes the contact id).
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MigrationModel(BaseModel):
    """Base for all inbound models: camelCase aliases, immutable."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class CodedValue(MigrationModel):
    """A reference-data code with its display text. Only the code is stored."""

    code: str
    description: str | None = None


class AuditedItem(MigrationModel):
    """Audit fields as recorded by the source system."""

    create_date_time: datetime | None = None
    create_username: str | None = None
    modify_date_time: datetime | None = None
    modify_username: str | None = None


class MigratePhoneNumber(AuditedItem):
    phone_id: int
    number: str
    extension: str | None = None
    type: CodedValue


class MigrateAddress(AuditedItem):
    address_id: int
    type: CodedValue | None = None
    flat: str | None = None
    premise: str | None = None
    street: str | None = None
    locality: str | None = None
    post_code: str | None = None
    city: CodedValue | None = None
    county: CodedValue | None = None
    country: CodedValue | None = None
    validated_paf: bool = Field(default=False, alias="validatedPAF")
    no_fixed_address: bool = False
    primary_address: bool = False
    mail_address: bool = False
    comment: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    phone_numbers: list[MigratePhoneNumber] = Field(default_factory=list)


class MigrateEmailAddress(AuditedItem):
    email_address_id: int
    email: str


class MigrateIdentifier(AuditedItem):
    sequence: int
    type: CodedValue
    identifier: str | None = None
    issued_authority: str | None = None


class MigrateRestriction(AuditedItem):
    """A restriction placed on the contact across all prisoners."""

    id: int
    type: CodedValue
    comment: str | None = None
    effective_date: date | None = None
    expiry_date: date | None = None
    staff_username: str | None = None


class Corporate(MigrationModel):
    id: int
    name: str | None = None


class MigrateEmployment(AuditedItem):
    sequence: int
    corporate: Corporate
    active: bool = True


class MigratePrisonerContactRestriction(AuditedItem):
    """A restriction that applies to one relationship only."""

    id: int
    restriction_type: CodedValue
    comment: str | None = None
    start_date: date | None = None
    expiry_date: date | None = None
    staff_username: str | None = None


class MigrateRelationship(AuditedItem):
    """
    Link between the contact and one prisoner.

    ``contact_type`` is the kind of relationship (social, official) and
    ``relationship_type`` the relationship to the prisoner (brother, solicitor).
    """

    id: int
    contact_type: CodedValue
    relationship_type: CodedValue
    prisoner_number: str
    current_term: bool = True
    active: bool = True
    expiry_date: date | None = None
    approved_visitor: bool = False
    next_of_kin: bool = False
    emergency_contact: bool = False
    comment: str | None = None
    restrictions: list[MigratePrisonerContactRestriction] = Field(default_factory=list)


class MigrateContactRequest(AuditedItem):
    """
    A complete contact and all of its nested records.

    Attributes:
        person_id: Source identifier, reused as the destination contact id
        contacts: Relationships to prisoners, each with its own restrictions
    """

    person_id: int
    title: CodedValue | None = None
    last_name: str
    first_name: str
    middle_name: str | None = None
    date_of_birth: date | None = None
    gender: CodedValue | None = None
    language: CodedValue | None = None
    interpreter_required: bool = False
    domestic_status: CodedValue | None = None
    deceased_date: date | None = None
    staff: bool = False
    remitter: bool = False
    keep_biometrics: bool = False
    phone_numbers: list[MigratePhoneNumber] = Field(default_factory=list)
    addresses: list[MigrateAddress] = Field(default_factory=list)
    email_addresses: list[MigrateEmailAddress] = Field(default_factory=list)
    identifiers: list[MigrateIdentifier] = Field(default_factory=list)
    restrictions: list[MigrateRestriction] = Field(default_factory=list)
    employments: list[MigrateEmployment] = Field(default_factory=list)
    contacts: list[MigrateRelationship] = Field(default_factory=list)


__all__ = [
    "MigrationModel",
    "CodedValue",
    "AuditedItem",
    "MigratePhoneNumber",
    "MigrateAddress",
    "MigrateEmailAddress",
    "MigrateIdentifier",
    "MigrateRestriction",
    "Corporate",
    "MigrateEmployment",
    "MigratePrisonerContactRestriction",
    "MigrateRelationship",
    "MigrateContactRequest",
]
