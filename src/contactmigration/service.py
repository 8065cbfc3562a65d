"""
Contact migration service.

Migrates one complete contact per call. Everything for the contact is
written in a single unit of work, so the destination holds either the
whole aggregate or none of it. Re-migrating a person id replaces the
previous aggregate: the contact keeps its id and every nested record gets
a new one.

Example:
    >>> store = PostgreSQLContactStore(engine)
    >>> locks = PostgreSQLLockManager(session_factory)
    >>> service = ContactMigrationService(store, lock_manager=locks)
    >>> response = await service.migrate_contact(payload)
    >>> response.to_dict()["contact"]
    {'elementType': 'CONTACT', 'nomisId': 1234, 'dpsId': 1234}
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from contactmigration.config import MigrationConfig
from contactmigration.correlation import Extracted, ExtractionResult, assemble_report
from contactmigration.entities import ContactEntity
from contactmigration.exceptions import (
    EntityPersistenceError,
    InvalidStageTransitionError,
    MigrationFailedError,
)
from contactmigration.extractors import (
    ADDRESS_PHONES,
    ADDRESSES,
    EMAILS,
    EMPLOYMENTS,
    IDENTITIES,
    PHONES,
    RELATIONSHIP_RESTRICTIONS,
    RELATIONSHIPS,
    RESTRICTIONS,
    extract_contact,
)
from contactmigration.guard import DuplicateGuard
from contactmigration.locks.interface import LockManager, contact_lock_key
from contactmigration.observability import (
    ATTR_PERSON_ID,
    ATTR_STAGE,
    Tracer,
    create_tracer,
)
from contactmigration.report import ElementType, MigrateContactResponse
from contactmigration.requests import MigrateContactRequest
from contactmigration.stores.interface import ContactStore, UnitOfWork

logger = logging.getLogger(__name__)


class MigrationStage(Enum):
    """
    Stages of a single contact migration.

    State machine transitions:
        RECEIVED -> GUARDED -> TOP_LEVEL_SAVED -> CHILDREN_SAVED -> ASSEMBLED
            |
        Any non-terminal stage ------------------------------> FAILED

    ASSEMBLED is reached once the unit of work has committed.
    """

    RECEIVED = "received"
    GUARDED = "guarded"
    TOP_LEVEL_SAVED = "top_level_saved"
    CHILDREN_SAVED = "children_saved"
    ASSEMBLED = "assembled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationStage.ASSEMBLED, MigrationStage.FAILED)

    def can_transition_to(self, target: MigrationStage) -> bool:
        """Check if transition to target stage is valid."""
        if self.is_terminal:
            return False

        if target == MigrationStage.FAILED:
            return True

        valid_transitions: dict[MigrationStage, MigrationStage] = {
            MigrationStage.RECEIVED: MigrationStage.GUARDED,
            MigrationStage.GUARDED: MigrationStage.TOP_LEVEL_SAVED,
            MigrationStage.TOP_LEVEL_SAVED: MigrationStage.CHILDREN_SAVED,
            MigrationStage.CHILDREN_SAVED: MigrationStage.ASSEMBLED,
        }
        return valid_transitions.get(self) == target


@dataclass
class MigrationProgress:
    """
    Tracks the stage of one migration.

    Attributes:
        person_id: Source id of the contact being migrated
        stage: Current stage
        history: Stages passed through, in order, starting with RECEIVED
    """

    person_id: int
    stage: MigrationStage = MigrationStage.RECEIVED
    history: list[MigrationStage] = field(default_factory=lambda: [MigrationStage.RECEIVED])

    def advance(self, target: MigrationStage) -> None:
        """
        Move to the target stage.

        Raises:
            InvalidStageTransitionError: If the transition is not allowed
        """
        if not self.stage.can_transition_to(target):
            raise InvalidStageTransitionError(self.stage, target)
        logger.debug(
            "Migration of person %s: %s -> %s", self.person_id, self.stage.value, target.value
        )
        self.stage = target
        self.history.append(target)


class ContactMigrationService:
    """
    Migrates complete contacts from the source system.

    Each call runs the duplicate guard, saves the contact and then every
    nested kind inside one unit of work, and returns the correlation
    report. When a lock manager is given, calls for the same person id are
    serialized by a lock held around the whole unit of work.

    Example:
        >>> service = ContactMigrationService(
        ...     InMemoryContactStore(),
        ...     lock_manager=InMemoryLockManager(),
        ...     config=MigrationConfig(lock_timeout=5.0),
        ... )
        >>> response = await service.migrate_contact(request)
    """

    def __init__(
        self,
        store: ContactStore,
        *,
        lock_manager: LockManager | None = None,
        config: MigrationConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the service.

        Args:
            store: Store the contacts are written to
            lock_manager: Serializes migrations of the same person id.
                         None disables locking.
            config: Migration settings (defaults if not provided)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing and config.enable_tracing.
            enable_tracing: Whether to enable OpenTelemetry tracing.
                          Ignored if tracer is explicitly provided.
        """
        self._store = store
        self._lock_manager = lock_manager
        self._config = config or MigrationConfig()
        self._tracer = tracer or create_tracer(
            __name__, enable_tracing and self._config.enable_tracing
        )
        self._guard = DuplicateGuard(self._tracer)

    @property
    def config(self) -> MigrationConfig:
        return self._config

    async def migrate_contact(
        self,
        request: MigrateContactRequest | Mapping[str, Any],
    ) -> MigrateContactResponse:
        """
        Migrate one contact and everything nested under it.

        Args:
            request: The migration record, as a model or as decoded JSON

        Returns:
            Report pairing every source id with its new destination id

        Raises:
            pydantic.ValidationError: If a mapping is not a valid record
            LockAcquisitionError: If the contact's lock is not acquired in time
            MigrationFailedError: If anything fails inside the unit of work;
                nothing from this call is left in the store
        """
        if not isinstance(request, MigrateContactRequest):
            request = MigrateContactRequest.model_validate(request)

        logger.info(
            "Migrate person %s with %d addresses, %d phones, %d emails, %d identifiers, "
            "%d restrictions, %d employments and %d relationships",
            request.person_id,
            len(request.addresses),
            len(request.phone_numbers),
            len(request.email_addresses),
            len(request.identifiers),
            len(request.restrictions),
            len(request.employments),
            len(request.contacts),
        )

        with self._tracer.span(
            "contactmigration.migrate_contact",
            {ATTR_PERSON_ID: request.person_id},
        ) as span:
            async with self._contact_lock(request.person_id):
                progress = MigrationProgress(request.person_id)
                try:
                    return await self._migrate(request, progress)
                finally:
                    if span is not None:
                        span.set_attribute(ATTR_STAGE, progress.stage.value)

    @asynccontextmanager
    async def _contact_lock(self, person_id: int) -> AsyncIterator[None]:
        if self._lock_manager is None:
            yield
            return
        async with self._lock_manager.acquire(
            contact_lock_key(person_id),
            timeout=self._config.lock_timeout,
            retry_interval=self._config.lock_retry_interval,
        ):
            yield

    async def _migrate(
        self,
        request: MigrateContactRequest,
        progress: MigrationProgress,
    ) -> MigrateContactResponse:
        person_id = request.person_id
        try:
            async with self._store.transaction() as uow:
                replaced = await self._guard.remove_existing(uow, person_id)
                progress.advance(MigrationStage.GUARDED)

                contact = await extract_contact(uow, request, self._config, self._tracer)
                progress.advance(MigrationStage.TOP_LEVEL_SAVED)

                result = await self._extract_children(uow, request, contact)
                progress.advance(MigrationStage.CHILDREN_SAVED)

                response = assemble_report(result)
            progress.advance(MigrationStage.ASSEMBLED)
        except Exception as e:
            failed_after = progress.stage
            if progress.stage.can_transition_to(MigrationStage.FAILED):
                progress.advance(MigrationStage.FAILED)

            element_type: ElementType | None = None
            item_source_id: int | None = None
            if isinstance(e, EntityPersistenceError):
                element_type = e.element_type
                item_source_id = e.source_id

            logger.exception(
                "Migration of person %s failed after stage %s",
                person_id,
                failed_after.value,
            )
            raise MigrationFailedError(
                person_id,
                failed_after,
                str(e),
                element_type=element_type,
                item_source_id=item_source_id,
            ) from e

        logger.info(
            "Migrated person %s (%s, %d records)",
            person_id,
            "replaced" if replaced else "new",
            len(response.all_pairs()),
        )
        return response

    async def _extract_children(
        self,
        uow: UnitOfWork,
        request: MigrateContactRequest,
        contact: Extracted[ContactEntity],
    ) -> ExtractionResult:
        contact_id = contact.destination_id
        config = self._config
        tracer = self._tracer

        phones = await PHONES.extract(uow, request, contact_id, config, tracer)
        addresses = await ADDRESSES.extract(uow, request, contact_id, config, tracer)
        address_phones = await ADDRESS_PHONES.extract(
            uow, request, contact_id, addresses, config, tracer
        )
        emails = await EMAILS.extract(uow, request, contact_id, config, tracer)
        identities = await IDENTITIES.extract(uow, request, contact_id, config, tracer)
        restrictions = await RESTRICTIONS.extract(uow, request, contact_id, config, tracer)
        employments = await EMPLOYMENTS.extract(uow, request, contact_id, config, tracer)
        relationships = await RELATIONSHIPS.extract(uow, request, contact_id, config, tracer)
        relationship_restrictions = await RELATIONSHIP_RESTRICTIONS.extract(
            uow, request, contact_id, relationships, config, tracer
        )

        return ExtractionResult(
            contact=contact,
            phones=phones,
            addresses=addresses,
            address_phones=address_phones,
            emails=emails,
            identities=identities,
            restrictions=restrictions,
            employments=employments,
            relationships=relationships,
            relationship_restrictions=relationship_restrictions,
        )


__all__ = [
    "MigrationStage",
    "MigrationProgress",
    "ContactMigrationService",
]
