"""
Shared pytest fixtures for the contactmigration library tests.

This module provides:
- Migration record fixtures (request_factory, full_request, scenario_request)
- Store fixtures (in_memory_store, sqlite_store)
- Service fixtures (config, mock_tracer, lock_manager, service)

Records are built from camelCase payloads, the way the source system
sends them, so the model aliases are exercised by every test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterable, Mapping
from typing import Any

import pytest
import pytest_asyncio

from contactmigration.config import MigrationConfig
from contactmigration.locks import InMemoryLockManager
from contactmigration.observability import MockTracer
from contactmigration.requests import MigrateContactRequest
from contactmigration.service import ContactMigrationService
from contactmigration.stores.in_memory import InMemoryContactStore

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")


# =============================================================================
# Migration Record Builders
# =============================================================================

AUDIT = {
    "createUsername": "J999X",
    "createDateTime": "2024-01-01T10:15:00",
}


def _audited(payload: dict[str, Any]) -> dict[str, Any]:
    return {**payload, **AUDIT}


def _phone(phone_id: int) -> dict[str, Any]:
    return _audited(
        {
            "phoneId": phone_id,
            "number": f"0114 {phone_id:06d}",
            "type": {"code": "MOB", "description": "Mobile"},
        }
    )


def build_request(
    person_id: int = 1,
    *,
    phone_ids: Iterable[int] = (),
    addresses: Mapping[int, Iterable[int]] | None = None,
    email_ids: Iterable[int] = (),
    identifier_sequences: Iterable[int] = (),
    restriction_ids: Iterable[int] = (),
    employment_sequences: Iterable[int] = (),
    relationships: Mapping[int, Iterable[int]] | None = None,
    **overrides: Any,
) -> MigrateContactRequest:
    """
    Build a migration record from source ids.

    Args:
        person_id: Source person id
        phone_ids: Source ids of the contact's own phone numbers
        addresses: Address source id -> source ids of its phone numbers
        email_ids: Source ids of email addresses
        identifier_sequences: Sequences of identity documents
        restriction_ids: Source ids of restrictions on the contact
        employment_sequences: Sequences of employments
        relationships: Relationship source id -> source ids of its restrictions
        **overrides: camelCase top-level fields to set or replace

    Returns:
        A validated MigrateContactRequest
    """
    payload: dict[str, Any] = _audited(
        {
            "personId": person_id,
            "lastName": "Smith",
            "firstName": "Jo",
            "dateOfBirth": "1980-02-03",
            "phoneNumbers": [_phone(phone_id) for phone_id in phone_ids],
            "addresses": [
                _audited(
                    {
                        "addressId": address_id,
                        "type": {"code": "HOME"},
                        "premise": "24",
                        "street": "Acacia Avenue",
                        "postCode": "S2 3LK",
                        "city": {"code": "25343", "description": "Sheffield"},
                        "validatedPAF": True,
                        "primaryAddress": True,
                        "phoneNumbers": [_phone(phone_id) for phone_id in phone_ids_at_address],
                    }
                )
                for address_id, phone_ids_at_address in (addresses or {}).items()
            ],
            "emailAddresses": [
                _audited({"emailAddressId": email_id, "email": f"jo{email_id}@example.com"})
                for email_id in email_ids
            ],
            "identifiers": [
                _audited(
                    {
                        "sequence": sequence,
                        "type": {"code": "DL"},
                        "identifier": f"SMITH{sequence}",
                        "issuedAuthority": "DVLA",
                    }
                )
                for sequence in identifier_sequences
            ],
            "restrictions": [
                _audited(
                    {
                        "id": restriction_id,
                        "type": {"code": "BAN"},
                        "effectiveDate": "2024-01-01",
                        "comment": "Banned",
                    }
                )
                for restriction_id in restriction_ids
            ],
            "employments": [
                _audited({"sequence": sequence, "corporate": {"id": 5000 + sequence}})
                for sequence in employment_sequences
            ],
            "contacts": [
                _audited(
                    {
                        "id": relationship_id,
                        "contactType": {"code": "S"},
                        "relationshipType": {"code": "BRO"},
                        "prisonerNumber": "A1234BC",
                        "nextOfKin": True,
                        "restrictions": [
                            _audited(
                                {
                                    "id": restriction_id,
                                    "restrictionType": {"code": "NONCON"},
                                    "startDate": "2024-02-01",
                                }
                            )
                            for restriction_id in restriction_ids_of_relationship
                        ],
                    }
                )
                for relationship_id, restriction_ids_of_relationship in (
                    relationships or {}
                ).items()
            ],
        }
    )
    payload.update(overrides)
    return MigrateContactRequest.model_validate(payload)


@pytest.fixture
def request_factory() -> Callable[..., MigrateContactRequest]:
    """
    Factory fixture for building migration records from source ids.

    Usage:
        def test_something(request_factory):
            request = request_factory(1, phone_ids=[10], relationships={100: [200]})
    """
    return build_request


@pytest.fixture
def scenario_request() -> MigrateContactRequest:
    """Person 1 with phone 10 and relationship 100 holding restrictions 200 and 201."""
    return build_request(1, phone_ids=[10], relationships={100: [200, 201]})


@pytest.fixture
def full_request() -> MigrateContactRequest:
    """A record with at least one item of every kind."""
    return build_request(
        7,
        phone_ids=[11, 12],
        addresses={21: [31, 32], 22: []},
        email_ids=[41],
        identifier_sequences=[1, 2],
        restriction_ids=[51],
        employment_sequences=[1],
        relationships={61: [71, 72], 62: []},
    )


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def config() -> MigrationConfig:
    """Migration settings with tracing off and a short lock timeout."""
    return MigrationConfig(lock_timeout=1.0, lock_retry_interval=0.01, enable_tracing=False)


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def in_memory_store(config: MigrationConfig) -> InMemoryContactStore:
    """Fresh in-memory store per test."""
    return InMemoryContactStore(
        generated_id_start=config.generated_id_start,
        enable_tracing=False,
    )


@pytest.fixture
def lock_manager() -> InMemoryLockManager:
    return InMemoryLockManager(enable_tracing=False)


@pytest.fixture
def service(
    in_memory_store: InMemoryContactStore,
    lock_manager: InMemoryLockManager,
    config: MigrationConfig,
) -> ContactMigrationService:
    """Service over the in-memory store with per-contact locking."""
    return ContactMigrationService(
        in_memory_store,
        lock_manager=lock_manager,
        config=config,
    )


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_store(config: MigrationConfig) -> AsyncGenerator[Any, None]:
    """
    Provide an initialized SQLiteContactStore with in-memory database.

    Yields:
        SQLiteContactStore: Initialized store ready for use
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from contactmigration.stores.sqlite import SQLiteContactStore

    store = SQLiteContactStore(
        ":memory:",
        wal_mode=False,
        generated_id_start=config.generated_id_start,
        enable_tracing=False,
    )
    await store.initialize()

    yield store

    await store.close()

