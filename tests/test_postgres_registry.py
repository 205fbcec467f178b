from __future__ import annotations

import os
from collections.abc import AsyncIterator
from uuid import uuid4

import pytest

from verichain.errors import CredentialNotFoundError, DuplicateCredentialError
from verichain.hashing import credential_digest
from verichain.models import CredentialSearchFilter, RegistryEntry
from verichain.store import PostgresRegistry

_POSTGRES_DSN = os.getenv("VERICHAIN_TEST_POSTGRES_DSN")

pytestmark = pytest.mark.skipif(
    _POSTGRES_DSN is None,
    reason="Set VERICHAIN_TEST_POSTGRES_DSN to run Postgres registry integration tests.",
)


@pytest.fixture
async def registry() -> AsyncIterator[PostgresRegistry]:
    postgres_registry = PostgresRegistry(_dsn_for_tests())
    try:
        yield postgres_registry
    finally:
        await postgres_registry.close()


def _dsn_for_tests() -> str:
    if _POSTGRES_DSN is None:
        raise RuntimeError("VERICHAIN_TEST_POSTGRES_DSN is required for this test module.")
    return _POSTGRES_DSN


def _entry(**overrides: str) -> RegistryEntry:
    # Unique student names keep runs against a shared database independent.
    fields = {
        "student_name": f"Student {uuid4().hex}",
        "university_name": "Stanford University",
        "degree_type": "Bachelor of Science",
        "major": "Computer Science",
        "gpa": "3.9",
        "graduation_date": "2023",
    }
    fields.update(overrides)
    return RegistryEntry(
        entry_id=uuid4().hex,
        **fields,
        credential_hash=credential_digest(fields),
        wallet_address="0xissuer",
        transaction_id="0x" + "1" * 64,
        raw_json="{}",
    )


@pytest.mark.asyncio
async def test_insert_lookup_and_revoke(registry: PostgresRegistry) -> None:
    entry = _entry()
    await registry.insert_entry(entry)

    loaded = await registry.get_entry_by_hash(entry.credential_hash)
    assert loaded is not None
    assert loaded.entry_id == entry.entry_id
    assert loaded.is_revoked is False

    revoked = await registry.revoke(entry.credential_hash)
    assert revoked.is_revoked is True


@pytest.mark.asyncio
async def test_duplicate_hash_is_rejected(registry: PostgresRegistry) -> None:
    entry = _entry()
    await registry.insert_entry(entry)

    with pytest.raises(DuplicateCredentialError):
        await registry.insert_entry(entry.model_copy(update={"entry_id": uuid4().hex}))


@pytest.mark.asyncio
async def test_revoke_unknown_hash_raises(registry: PostgresRegistry) -> None:
    with pytest.raises(CredentialNotFoundError):
        await registry.revoke(credential_digest({"missing": uuid4().hex}))


@pytest.mark.asyncio
async def test_search_uses_case_insensitive_substrings(registry: PostgresRegistry) -> None:
    marker = uuid4().hex[:12]
    matching = _entry(university_name=f"Stanford {marker}", gpa="3.8")
    low_gpa = _entry(university_name=f"Stanford {marker}", gpa="3.1")
    revoked = _entry(university_name=f"Stanford {marker}", gpa="4.0")
    for entry in (matching, low_gpa, revoked):
        await registry.insert_entry(entry)
    await registry.revoke(revoked.credential_hash)

    results = await registry.search_entries(
        CredentialSearchFilter(university_terms=(marker.upper(),), min_gpa=3.5)
    )
    assert [entry.entry_id for entry in results] == [matching.entry_id]


def test_constructor_validates_pool_sizes() -> None:
    with pytest.raises(ValueError, match="max_pool_size must be >= min_pool_size"):
        PostgresRegistry("postgresql://unused", min_pool_size=5, max_pool_size=2)
