"""
Destination entities for migrated contacts.

Each entity maps to one table. Class-level metadata tells the stores and
the schema generator how the table is keyed and how it hangs off its
parent:

    __table_name__      table the rows live in
    __key_field__       primary key column
    __key_generated__   True if the store assigns the key on save
    __parent__          (parent entity class, foreign key column)
    __references__      other foreign key columns and the entity they point at

The contact is the aggregate root and keeps the source person id as its
key; every other entity gets a generated key from the store.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import ClassVar, Self

from pydantic import BaseModel, ConfigDict


class MigratedEntity(BaseModel):
    """
    Base class for all destination entities.

    Carries the audit columns shared by every table. Subclasses declare
    their key, parent and table through class variables.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )

    __table_name__: ClassVar[str]
    __key_field__: ClassVar[str]
    __key_generated__: ClassVar[bool] = True
    __parent__: ClassVar[tuple[type[MigratedEntity], str] | None] = None
    __references__: ClassVar[dict[str, type[MigratedEntity]]] = {}

    created_by: str
    created_time: datetime
    updated_by: str | None = None
    updated_time: datetime | None = None

    @classmethod
    def table_name(cls) -> str:
        return cls.__table_name__

    @classmethod
    def key_field(cls) -> str:
        return cls.__key_field__

    @classmethod
    def parent_field(cls) -> str | None:
        """Foreign key column pointing at the parent, None for the root."""
        return cls.__parent__[1] if cls.__parent__ else None

    @classmethod
    def foreign_keys(cls) -> dict[str, type[MigratedEntity]]:
        """
        All foreign key columns of this entity.

        Returns:
            Mapping of column name to the entity class it references,
            parent first
        """
        keys: dict[str, type[MigratedEntity]] = {}
        if cls.__parent__:
            parent_class, parent_field = cls.__parent__
            keys[parent_field] = parent_class
        keys.update(cls.__references__)
        return keys

    @classmethod
    def field_names(cls) -> list[str]:
        """Column names with the key first."""
        names = [name for name in cls.model_fields if name != cls.__key_field__]
        return [cls.__key_field__, *names]

    @property
    def key(self) -> int | None:
        value: int | None = getattr(self, self.__key_field__)
        return value

    @property
    def parent_key(self) -> int | None:
        field = self.parent_field()
        return getattr(self, field) if field else None

    def with_key(self, key: int) -> Self:
        """Return a copy of this entity carrying the given primary key."""
        return self.model_copy(update={self.__key_field__: key})


class ContactEntity(MigratedEntity):
    """The migrated person. Keyed by the source person id."""

    __table_name__ = "contact"
    __key_field__ = "contact_id"
    __key_generated__ = False

    contact_id: int
    title: str | None = None
    last_name: str
    first_name: str
    middle_names: str | None = None
    date_of_birth: date | None = None
    deceased_date: date | None = None
    is_deceased: bool = False
    staff_flag: bool = False
    remitter_flag: bool = False
    gender: str | None = None
    language_code: str | None = None
    domestic_status: str | None = None
    interpreter_required: bool = False


class ContactPhoneEntity(MigratedEntity):
    __table_name__ = "contact_phone"
    __key_field__ = "contact_phone_id"
    __parent__ = (ContactEntity, "contact_id")

    contact_phone_id: int | None = None
    contact_id: int
    phone_type: str
    phone_number: str
    ext_number: str | None = None


class ContactAddressEntity(MigratedEntity):
    __table_name__ = "contact_address"
    __key_field__ = "contact_address_id"
    __parent__ = (ContactEntity, "contact_id")

    contact_address_id: int | None = None
    contact_id: int
    address_type: str | None = None
    primary_address: bool = False
    flat: str | None = None
    property: str | None = None
    street: str | None = None
    area: str | None = None
    city_code: str | None = None
    county_code: str | None = None
    post_code: str | None = None
    country_code: str | None = None
    verified: bool = False
    mail_flag: bool = False
    start_date: date | None = None
    end_date: date | None = None
    no_fixed_address: bool = False
    comments: str | None = None


class ContactAddressPhoneEntity(MigratedEntity):
    """Links a phone number to the address it belongs to."""

    __table_name__ = "contact_address_phone"
    __key_field__ = "contact_address_phone_id"
    __parent__ = (ContactEntity, "contact_id")
    __references__ = {
        "contact_address_id": ContactAddressEntity,
        "contact_phone_id": ContactPhoneEntity,
    }

    contact_address_phone_id: int | None = None
    contact_id: int
    contact_address_id: int
    contact_phone_id: int


class ContactEmailEntity(MigratedEntity):
    __table_name__ = "contact_email"
    __key_field__ = "contact_email_id"
    __parent__ = (ContactEntity, "contact_id")

    contact_email_id: int | None = None
    contact_id: int
    email_address: str


class ContactIdentityEntity(MigratedEntity):
    __table_name__ = "contact_identity"
    __key_field__ = "contact_identity_id"
    __parent__ = (ContactEntity, "contact_id")

    contact_identity_id: int | None = None
    contact_id: int
    identity_type: str
    identity_value: str | None = None
    issuing_authority: str | None = None


class ContactRestrictionEntity(MigratedEntity):
    __table_name__ = "contact_restriction"
    __key_field__ = "contact_restriction_id"
    __parent__ = (ContactEntity, "contact_id")

    contact_restriction_id: int | None = None
    contact_id: int
    restriction_type: str
    start_date: date | None = None
    expiry_date: date | None = None
    comments: str | None = None


class ContactEmploymentEntity(MigratedEntity):
    """Employment of the contact by an organisation (kept by id only)."""

    __table_name__ = "employment"
    __key_field__ = "employment_id"
    __parent__ = (ContactEntity, "contact_id")

    employment_id: int | None = None
    contact_id: int
    organisation_id: int
    active: bool = True


class PrisonerContactEntity(MigratedEntity):
    """A relationship between the contact and a prisoner."""

    __table_name__ = "prisoner_contact"
    __key_field__ = "prisoner_contact_id"
    __parent__ = (ContactEntity, "contact_id")

    prisoner_contact_id: int | None = None
    contact_id: int
    prisoner_number: str
    relationship_type: str
    relationship_to_prisoner: str
    next_of_kin: bool = False
    emergency_contact: bool = False
    approved_visitor: bool = False
    active: bool = True
    current_term: bool = True
    expiry_date: date | None = None
    comments: str | None = None


class PrisonerContactRestrictionEntity(MigratedEntity):
    __table_name__ = "prisoner_contact_restriction"
    __key_field__ = "prisoner_contact_restriction_id"
    __parent__ = (PrisonerContactEntity, "prisoner_contact_id")

    prisoner_contact_restriction_id: int | None = None
    prisoner_contact_id: int
    restriction_type: str
    start_date: date | None = None
    expiry_date: date | None = None
    comments: str | None = None


# Parents before children: safe order for CREATE TABLE and inserts.
ENTITY_CLASSES: tuple[type[MigratedEntity], ...] = (
    ContactEntity,
    ContactPhoneEntity,
    ContactAddressEntity,
    ContactAddressPhoneEntity,
    ContactEmailEntity,
    ContactIdentityEntity,
    ContactRestrictionEntity,
    ContactEmploymentEntity,
    PrisonerContactEntity,
    PrisonerContactRestrictionEntity,
)


__all__ = [
    "MigratedEntity",
    "ContactEntity",
    "ContactPhoneEntity",
    "ContactAddressEntity",
    "ContactAddressPhoneEntity",
    "ContactEmailEntity",
    "ContactIdentityEntity",
    "ContactRestrictionEntity",
    "ContactEmploymentEntity",
    "PrisonerContactEntity",
    "PrisonerContactRestrictionEntity",
    "ENTITY_CLASSES",
]
