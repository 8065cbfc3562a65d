"""
Removal of a previously migrated contact before it is migrated again.
"""

from __future__ import annotations

import logging

from contactmigration.observability import (
    ATTR_DUPLICATE,
    ATTR_PERSON_ID,
    NullTracer,
    Tracer,
)
from contactmigration.stores.interface import UnitOfWork

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """
    Deletes an existing contact aggregate so it can be recreated.

    Runs inside the caller's unit of work: a migration that fails after the
    guard rolls the deletes back together with everything else.

    Children are deleted before the rows they reference:

        address phones, addresses, phones, emails, identities,
        restrictions, employments, relationship restrictions,
        relationships, contact
    """

    def __init__(self, tracer: Tracer | None = None) -> None:
        self._tracer = tracer or NullTracer()

    async def remove_existing(self, uow: UnitOfWork, contact_id: int) -> bool:
        """
        Delete the contact with this id and everything under it.

        Args:
            uow: Unit of work of the running migration
            contact_id: Destination id of the contact (equal to its source id)

        Returns:
            True if a contact existed and was removed, False otherwise
        """
        with self._tracer.span(
            "contactmigration.guard.remove_existing",
            {ATTR_PERSON_ID: contact_id},
        ) as span:
            if not await uow.contacts.exists_by_id(contact_id):
                if span is not None:
                    span.set_attribute(ATTR_DUPLICATE, False)
                return False

            logger.info("Duplicate person ID received %s - replacing it", contact_id)
            if span is not None:
                span.set_attribute(ATTR_DUPLICATE, True)

            await uow.address_phones.delete_all_by_parent_id(contact_id)
            await uow.addresses.delete_all_by_parent_id(contact_id)
            await uow.phones.delete_all_by_parent_id(contact_id)
            await uow.emails.delete_all_by_parent_id(contact_id)
            await uow.identities.delete_all_by_parent_id(contact_id)
            await uow.restrictions.delete_all_by_parent_id(contact_id)
            await uow.employments.delete_all_by_parent_id(contact_id)

            relationships = await uow.relationships.find_all_by_parent_id(contact_id)
            for relationship in relationships:
                if relationship.key is not None:
                    await uow.relationship_restrictions.delete_all_by_parent_id(
                        relationship.key
                    )
            await uow.relationships.delete_all_by_parent_id(contact_id)

            await uow.contacts.delete_by_id(contact_id)

            logger.debug(
                "Removed contact %s with %d relationships", contact_id, len(relationships)
            )
            return True


__all__ = ["DuplicateGuard"]
