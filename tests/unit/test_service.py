"""
Unit tests for ContactMigrationService.

Covers the migration scenario end to end over the in-memory store:
idempotent replace, identifier spaces, all-or-nothing failure handling,
order preservation, stages, locking and tracing.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import pytest
from pydantic import ValidationError

from contactmigration.config import MigrationConfig
from contactmigration.entities import (
    ContactEntity,
    ContactPhoneEntity,
    MigratedEntity,
    PrisonerContactEntity,
    PrisonerContactRestrictionEntity,
)
from contactmigration.exceptions import (
    DuplicateKeyError,
    InvalidStageTransitionError,
    MigrationFailedError,
)
from contactmigration.guard import DuplicateGuard
from contactmigration.locks import InMemoryLockManager, LockAcquisitionError, LockInfo
from contactmigration.observability import MockTracer
from contactmigration.report import ElementType, MigrateContactResponse
from contactmigration.requests import MigrateContactRequest
from contactmigration.service import ContactMigrationService, MigrationProgress, MigrationStage
from contactmigration.stores.in_memory import InMemoryContactStore, InMemoryEntityRepository

RequestFactory = Callable[..., MigrateContactRequest]


def _fail_saving(
    monkeypatch: pytest.MonkeyPatch,
    entity_class: type[MigratedEntity],
    source_key: Callable[[Any], bool] | None = None,
) -> None:
    """Make saves of one entity kind raise, optionally only for matching entities."""
    original_save = InMemoryEntityRepository.save

    async def save(self: InMemoryEntityRepository[Any], entity: Any) -> Any:
        if isinstance(entity, entity_class) and (source_key is None or source_key(entity)):
            raise DuplicateKeyError(entity_class.table_name(), 0)
        return await original_save(self, entity)

    monkeypatch.setattr(InMemoryEntityRepository, "save", save)


class RecordingLockManager:
    """Lock manager that records what it was asked to lock."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, float | None, float]] = []

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
        retry_interval: float = 0.1,
    ) -> AsyncIterator[LockInfo]:
        self.calls.append((key, timeout, retry_interval))
        yield LockInfo(key=key, lock_id=0, acquired_at=datetime.now(UTC))


# =============================================================================
# Stage machine
# =============================================================================


class TestMigrationStage:
    """Tests for MigrationStage transitions."""

    def test_forward_path(self) -> None:
        path = [
            MigrationStage.RECEIVED,
            MigrationStage.GUARDED,
            MigrationStage.TOP_LEVEL_SAVED,
            MigrationStage.CHILDREN_SAVED,
            MigrationStage.ASSEMBLED,
        ]

        for current, target in zip(path, path[1:], strict=False):
            assert current.can_transition_to(target)

    def test_skipping_a_stage_is_invalid(self) -> None:
        assert not MigrationStage.RECEIVED.can_transition_to(MigrationStage.TOP_LEVEL_SAVED)
        assert not MigrationStage.GUARDED.can_transition_to(MigrationStage.ASSEMBLED)

    def test_any_non_terminal_stage_can_fail(self) -> None:
        for stage in MigrationStage:
            if not stage.is_terminal:
                assert stage.can_transition_to(MigrationStage.FAILED)

    def test_terminal_stages(self) -> None:
        assert MigrationStage.ASSEMBLED.is_terminal
        assert MigrationStage.FAILED.is_terminal
        assert not MigrationStage.ASSEMBLED.can_transition_to(MigrationStage.FAILED)
        assert not MigrationStage.FAILED.can_transition_to(MigrationStage.RECEIVED)


class TestMigrationProgress:
    """Tests for MigrationProgress."""

    def test_advance_records_history(self) -> None:
        progress = MigrationProgress(1)

        progress.advance(MigrationStage.GUARDED)
        progress.advance(MigrationStage.FAILED)

        assert progress.stage is MigrationStage.FAILED
        assert progress.history == [
            MigrationStage.RECEIVED,
            MigrationStage.GUARDED,
            MigrationStage.FAILED,
        ]

    def test_invalid_advance_raises(self) -> None:
        progress = MigrationProgress(1)

        with pytest.raises(InvalidStageTransitionError) as exc_info:
            progress.advance(MigrationStage.ASSEMBLED)

        assert exc_info.value.current_stage is MigrationStage.RECEIVED
        assert exc_info.value.target_stage is MigrationStage.ASSEMBLED
        assert progress.stage is MigrationStage.RECEIVED


# =============================================================================
# Migration scenario
# =============================================================================


class TestMigrateContact:
    """Tests for a single successful migration."""

    @pytest.mark.asyncio
    async def test_scenario(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
    ) -> None:
        """Person 1, phone 10, relationship 100 with restrictions 200 and 201."""
        response = await service.migrate_contact(scenario_request)

        assert response.contact.source_id == 1
        assert response.contact.destination_id == 1
        assert response.contact.element_type is ElementType.CONTACT
        assert len(response.phone_numbers) == 1
        assert response.phone_numbers[0].source_id == 10
        assert len(response.relationships) == 1
        relationship = response.relationships[0]
        assert relationship.relationship.source_id == 100
        assert [pair.source_id for pair in relationship.restrictions] == [200, 201]
        assert {pair.element_type for pair in relationship.restrictions} == {
            ElementType.PRISONER_CONTACT_RESTRICTION
        }
        assert response.restrictions == []

    @pytest.mark.asyncio
    async def test_response_carries_name_and_birth_date(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
    ) -> None:
        response = await service.migrate_contact(scenario_request)

        assert response.last_name == "Smith"
        assert response.date_of_birth == scenario_request.date_of_birth

    @pytest.mark.asyncio
    async def test_accepts_decoded_payload(self, service: ContactMigrationService) -> None:
        response = await service.migrate_contact(
            {
                "personId": 55,
                "lastName": "Jones",
                "firstName": "Sam",
                "phoneNumbers": [{"phoneId": 1, "number": "1", "type": {"code": "MOB"}}],
            }
        )

        assert response.contact.destination_id == 55
        assert len(response.phone_numbers) == 1

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected_before_migration(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
    ) -> None:
        with pytest.raises(ValidationError):
            await service.migrate_contact({"lastName": "Jones"})

        assert in_memory_store.row_count() == 0

    @pytest.mark.asyncio
    async def test_every_kind_reported(
        self,
        service: ContactMigrationService,
        full_request: MigrateContactRequest,
    ) -> None:
        response = await service.migrate_contact(full_request)

        assert [p.source_id for p in response.phone_numbers] == [11, 12]
        assert [a.address.source_id for a in response.addresses] == [21, 22]
        assert [p.source_id for p in response.addresses[0].phones] == [31, 32]
        assert response.addresses[1].phones == []
        assert [p.source_id for p in response.email_addresses] == [41]
        assert [p.source_id for p in response.identities] == [1, 2]
        assert [p.source_id for p in response.restrictions] == [51]
        assert [p.source_id for p in response.employments] == [1]
        assert [r.relationship.source_id for r in response.relationships] == [61, 62]
        assert [p.source_id for p in response.relationships[0].restrictions] == [71, 72]

    @pytest.mark.asyncio
    async def test_order_preserved(
        self,
        service: ContactMigrationService,
        request_factory: RequestFactory,
    ) -> None:
        response = await service.migrate_contact(
            request_factory(1, phone_ids=[5, 9, 2], email_ids=[8, 3, 6])
        )

        assert [pair.source_id for pair in response.phone_numbers] == [5, 9, 2]
        assert [pair.source_id for pair in response.email_addresses] == [8, 3, 6]

    @pytest.mark.asyncio
    async def test_nested_ids_do_not_reuse_source_ids(
        self,
        service: ContactMigrationService,
        full_request: MigrateContactRequest,
    ) -> None:
        response = await service.migrate_contact(full_request)

        for pair in response.all_pairs():
            if pair.element_type is ElementType.CONTACT:
                assert pair.destination_id == pair.source_id
            else:
                assert pair.destination_id != pair.source_id
                assert pair.destination_id >= service.config.generated_id_start

    @pytest.mark.asyncio
    async def test_relationship_restrictions_persisted_under_relationship(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        request_factory: RequestFactory,
    ) -> None:
        response = await service.migrate_contact(
            request_factory(1, relationships={100: [200, 201, 202]})
        )
        relationship_id = response.relationships[0].relationship.destination_id

        async with in_memory_store.transaction() as uow:
            stored = await uow.relationship_restrictions.find_all_by_parent_id(relationship_id)

        assert len(stored) == 3
        assert [entity.key for entity in stored] == [
            pair.destination_id for pair in response.relationships[0].restrictions
        ]

    @pytest.mark.asyncio
    async def test_summary_logged(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level("INFO", logger="contactmigration.service"):
            await service.migrate_contact(scenario_request)

        assert "Migrate person 1 with 0 addresses, 1 phones" in caplog.text
        assert "1 relationships" in caplog.text


class TestRemigration:
    """Tests for idempotent replace of an existing contact."""

    @pytest.mark.asyncio
    async def test_resubmission_keeps_contact_id_and_renews_nested_ids(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
    ) -> None:
        first = await service.migrate_contact(scenario_request)
        second = await service.migrate_contact(scenario_request)

        assert second.contact == first.contact
        assert [p.source_id for p in second.all_pairs()] == [p.source_id for p in first.all_pairs()]
        assert [p.element_type for p in second.all_pairs()] == [
            p.element_type for p in first.all_pairs()
        ]

        # Each kind has its own id sequence, so compare entry by entry.
        for before, after in zip(first.all_pairs()[1:], second.all_pairs()[1:], strict=True):
            assert after.element_type == before.element_type
            assert after.destination_id != before.destination_id

    @pytest.mark.asyncio
    async def test_resubmission_replaces_rows(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        full_request: MigrateContactRequest,
    ) -> None:
        await service.migrate_contact(full_request)
        rows_after_first = in_memory_store.row_count()

        await service.migrate_contact(full_request)

        assert in_memory_store.row_count() == rows_after_first
        assert in_memory_store.row_count(ContactEntity) == 1

    @pytest.mark.asyncio
    async def test_resubmission_with_fewer_items(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        request_factory: RequestFactory,
    ) -> None:
        await service.migrate_contact(request_factory(1, phone_ids=[10, 11, 12]))

        response = await service.migrate_contact(request_factory(1, phone_ids=[10]))

        assert len(response.phone_numbers) == 1
        assert in_memory_store.row_count(ContactPhoneEntity) == 1

    @pytest.mark.asyncio
    async def test_replacement_logged(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await service.migrate_contact(scenario_request)

        with caplog.at_level("INFO"):
            await service.migrate_contact(scenario_request)

        assert "Duplicate person ID received 1 - replacing it" in caplog.text


# =============================================================================
# Failure handling
# =============================================================================


class TestMigrationFailure:
    """Tests for all-or-nothing behaviour."""

    @pytest.mark.asyncio
    async def test_nested_failure_leaves_nothing(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _fail_saving(monkeypatch, PrisonerContactRestrictionEntity)

        with pytest.raises(MigrationFailedError):
            await service.migrate_contact(scenario_request)

        assert in_memory_store.row_count() == 0

    @pytest.mark.asyncio
    async def test_error_names_failing_item(
        self,
        service: ContactMigrationService,
        request_factory: RequestFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """The second restriction of the relationship fails."""
        _fail_saving(
            monkeypatch,
            PrisonerContactRestrictionEntity,
            lambda entity: entity.restriction_type == "NONCON" and entity.comments == "second",
        )
        request = request_factory(1, relationships={100: [200]})
        relationship = request.contacts[0]
        second = relationship.restrictions[0].model_copy(update={"id": 201, "comment": "second"})
        request = request.model_copy(
            update={
                "contacts": [
                    relationship.model_copy(
                        update={"restrictions": [*relationship.restrictions, second]}
                    )
                ]
            }
        )

        with pytest.raises(MigrationFailedError) as exc_info:
            await service.migrate_contact(request)

        error = exc_info.value
        assert error.person_id == 1
        assert error.stage is MigrationStage.TOP_LEVEL_SAVED
        assert error.element_type is ElementType.PRISONER_CONTACT_RESTRICTION
        assert error.item_source_id == 201
        assert error.__cause__ is not None
        assert "PRISONER_CONTACT_RESTRICTION 201" in str(error)

    @pytest.mark.asyncio
    async def test_contact_failure_reports_guarded_stage(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _fail_saving(monkeypatch, ContactEntity)

        with pytest.raises(MigrationFailedError) as exc_info:
            await service.migrate_contact(scenario_request)

        assert exc_info.value.stage is MigrationStage.GUARDED
        assert exc_info.value.element_type is ElementType.CONTACT

    @pytest.mark.asyncio
    async def test_guard_failure_reports_received_stage(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def broken(self: DuplicateGuard, uow: Any, contact_id: int) -> bool:
            raise RuntimeError("connection lost")

        monkeypatch.setattr(DuplicateGuard, "remove_existing", broken)

        with pytest.raises(MigrationFailedError) as exc_info:
            await service.migrate_contact(scenario_request)

        assert exc_info.value.stage is MigrationStage.RECEIVED
        assert exc_info.value.element_type is None
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_failed_remigration_keeps_previous_aggregate(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        first = await service.migrate_contact(scenario_request)
        rows = in_memory_store.row_count()

        _fail_saving(monkeypatch, PrisonerContactEntity)
        with pytest.raises(MigrationFailedError):
            await service.migrate_contact(scenario_request)

        assert in_memory_store.row_count() == rows
        async with in_memory_store.transaction() as uow:
            phones = await uow.phones.find_all_by_parent_id(1)
        assert [phone.key for phone in phones] == [first.phone_numbers[0].destination_id]

    @pytest.mark.asyncio
    async def test_failure_logged_with_traceback(
        self,
        service: ContactMigrationService,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        _fail_saving(monkeypatch, ContactPhoneEntity)

        with caplog.at_level("ERROR"), pytest.raises(MigrationFailedError):
            await service.migrate_contact(scenario_request)

        records = [r for r in caplog.records if r.levelname == "ERROR"]
        assert len(records) == 1
        assert records[0].exc_info is not None
        assert "Migration of person 1 failed after stage top_level_saved" in records[0].message


# =============================================================================
# Locking
# =============================================================================


class TestLocking:
    """Tests for per-contact locking."""

    @pytest.mark.asyncio
    async def test_lock_taken_with_configured_timeout(
        self,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
    ) -> None:
        locks = RecordingLockManager()
        service = ContactMigrationService(
            in_memory_store,
            lock_manager=locks,
            config=MigrationConfig(lock_timeout=7.5, lock_retry_interval=0.25),
            enable_tracing=False,
        )

        await service.migrate_contact(scenario_request)

        assert locks.calls == [("contact-migration:1", 7.5, 0.25)]

    @pytest.mark.asyncio
    async def test_lock_timeout_propagates(
        self,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
    ) -> None:
        held = InMemoryLockManager()
        service = ContactMigrationService(
            in_memory_store,
            lock_manager=held,
            config=MigrationConfig(lock_timeout=0.05, enable_tracing=False),
        )

        async with held.acquire("contact-migration:1"):
            with pytest.raises(LockAcquisitionError):
                await service.migrate_contact(scenario_request)

        assert in_memory_store.row_count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_migrations_of_same_contact(
        self,
        service: ContactMigrationService,
        in_memory_store: InMemoryContactStore,
        full_request: MigrateContactRequest,
    ) -> None:
        responses: list[MigrateContactResponse] = await asyncio.gather(
            service.migrate_contact(full_request),
            service.migrate_contact(full_request),
        )

        assert responses[0].contact == responses[1].contact
        assert in_memory_store.row_count(ContactEntity) == 1
        assert in_memory_store.row_count() == len(responses[1].all_pairs()) + len(
            full_request.addresses[0].phone_numbers
        )

    @pytest.mark.asyncio
    async def test_without_lock_manager(
        self,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
        config: MigrationConfig,
    ) -> None:
        service = ContactMigrationService(in_memory_store, config=config)

        response = await service.migrate_contact(scenario_request)

        assert response.contact.destination_id == 1


# =============================================================================
# Tracing
# =============================================================================


class TestTracing:
    """Tests for spans emitted by the service."""

    @pytest.mark.asyncio
    async def test_spans_for_every_step(
        self,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
    ) -> None:
        tracer = MockTracer()
        service = ContactMigrationService(in_memory_store, tracer=tracer)

        await service.migrate_contact(scenario_request)

        assert tracer.span_names == [
            "contactmigration.migrate_contact",
            "contactmigration.guard.remove_existing",
            "contactmigration.extract.contact",
            "contactmigration.extract.phones",
            "contactmigration.extract.addresses",
            "contactmigration.extract.address_phones",
            "contactmigration.extract.emails",
            "contactmigration.extract.identities",
            "contactmigration.extract.restrictions",
            "contactmigration.extract.employments",
            "contactmigration.extract.relationships",
            "contactmigration.extract.relationship_restrictions",
        ]
        assert tracer.spans[0][1] == {"contactmigration.person.id": 1}
        assert tracer.recorded[0].late_attributes == {"contactmigration.stage": "assembled"}

    @pytest.mark.asyncio
    async def test_failed_stage_recorded_on_span(
        self,
        in_memory_store: InMemoryContactStore,
        scenario_request: MigrateContactRequest,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _fail_saving(monkeypatch, ContactPhoneEntity)
        tracer = MockTracer()
        service = ContactMigrationService(in_memory_store, tracer=tracer)

        with pytest.raises(MigrationFailedError):
            await service.migrate_contact(scenario_request)

        assert tracer.recorded[0].name == "contactmigration.migrate_contact"
        assert tracer.recorded[0].late_attributes == {"contactmigration.stage": "failed"}

    def test_tracing_disabled_by_config(self, in_memory_store: InMemoryContactStore) -> None:
        service = ContactMigrationService(
            in_memory_store, config=MigrationConfig(enable_tracing=False)
        )

        assert service._tracer.enabled is False
