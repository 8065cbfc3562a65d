"""
Correlation report returned by a contact migration.

The report pairs every source identifier with the destination identifier
created for it, so the caller can record the mapping and route later
updates for the same records. Pairs appear in the order the source items
were submitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any


class ElementType(Enum):
    """
    Kind of record a correlation pair refers to.

    Serialized by name. Relationship restrictions are reported as
    PRISONER_CONTACT_RESTRICTION, never as RESTRICTION, which is reserved
    for restrictions on the contact itself.
    """

    CONTACT = "CONTACT"
    PHONE = "PHONE"
    ADDRESS = "ADDRESS"
    ADDRESS_PHONE = "ADDRESS_PHONE"
    EMAIL = "EMAIL"
    IDENTITY = "IDENTITY"
    RESTRICTION = "RESTRICTION"
    EMPLOYMENT = "EMPLOYMENT"
    PRISONER_CONTACT = "PRISONER_CONTACT"
    PRISONER_CONTACT_RESTRICTION = "PRISONER_CONTACT_RESTRICTION"

    @property
    def label(self) -> str:
        """Display form, e.g. 'PrisonerContactRestriction'."""
        return "".join(part.capitalize() for part in self.value.split("_"))


@dataclass(frozen=True)
class IdPair:
    """
    One source identifier and the destination identifier created for it.

    Attributes:
        element_type: Kind of record
        source_id: Identifier assigned by the source system
        destination_id: Identifier assigned by this system
    """

    element_type: ElementType
    source_id: int
    destination_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "elementType": self.element_type.value,
            "nomisId": self.source_id,
            "dpsId": self.destination_id,
        }


@dataclass(frozen=True)
class AddressAndPhones:
    """An address pair with the pairs of the phone numbers held at it."""

    address: IdPair
    phones: list[IdPair] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address.to_dict(),
            "phones": [phone.to_dict() for phone in self.phones],
        }


@dataclass(frozen=True)
class ContactsAndRestrictions:
    """A relationship pair with the pairs of its restrictions."""

    relationship: IdPair
    restrictions: list[IdPair] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationship": self.relationship.to_dict(),
            "restrictions": [restriction.to_dict() for restriction in self.restrictions],
        }


@dataclass(frozen=True)
class MigrateContactResponse:
    """
    Full correlation report for one migrated contact.

    Attributes:
        contact: Pair for the contact itself (source and destination ids are equal)
        last_name: Last name as persisted
        date_of_birth: Date of birth as persisted
        phone_numbers: Pairs for the contact's own phone numbers
        addresses: Address pairs, each with its phone pairs
        email_addresses: Pairs for email addresses
        identities: Pairs for identity documents
        restrictions: Pairs for restrictions on the contact
        relationships: Relationship pairs, each with its restriction pairs
        employments: Pairs for employments
    """

    contact: IdPair
    last_name: str
    date_of_birth: date | None = None
    phone_numbers: list[IdPair] = field(default_factory=list)
    addresses: list[AddressAndPhones] = field(default_factory=list)
    email_addresses: list[IdPair] = field(default_factory=list)
    identities: list[IdPair] = field(default_factory=list)
    restrictions: list[IdPair] = field(default_factory=list)
    relationships: list[ContactsAndRestrictions] = field(default_factory=list)
    employments: list[IdPair] = field(default_factory=list)

    def all_pairs(self) -> list[IdPair]:
        """Every pair in the report, nested pairs directly after their parent."""
        pairs = [self.contact, *self.phone_numbers]
        for address in self.addresses:
            pairs.append(address.address)
            pairs.extend(address.phones)
        pairs.extend(self.email_addresses)
        pairs.extend(self.identities)
        pairs.extend(self.restrictions)
        for relationship in self.relationships:
            pairs.append(relationship.relationship)
            pairs.extend(relationship.restrictions)
        pairs.extend(self.employments)
        return pairs

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase JSON shape expected by the source system."""
        return {
            "contact": self.contact.to_dict(),
            "lastName": self.last_name,
            "dateOfBirth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "phoneNumbers": [pair.to_dict() for pair in self.phone_numbers],
            "addresses": [address.to_dict() for address in self.addresses],
            "emailAddresses": [pair.to_dict() for pair in self.email_addresses],
            "identities": [pair.to_dict() for pair in self.identities],
            "restrictions": [pair.to_dict() for pair in self.restrictions],
            "relationships": [relationship.to_dict() for relationship in self.relationships],
            "employments": [pair.to_dict() for pair in self.employments],
        }


__all__ = [
    "ElementType",
    "IdPair",
    "AddressAndPhones",
    "ContactsAndRestrictions",
    "MigrateContactResponse",
]
