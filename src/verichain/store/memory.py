from __future__ import annotations

import asyncio

from verichain.errors import CredentialNotFoundError, DuplicateCredentialError
from verichain.models import CredentialSearchFilter, RegistryEntry
from verichain.search import entry_matches
from verichain.store.base import CredentialRegistry


class InMemoryRegistry(CredentialRegistry):
    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._write_lock = asyncio.Lock()

    async def insert_entry(self, entry: RegistryEntry) -> RegistryEntry:
        async with self._write_lock:
            if entry.credential_hash in self._entries:
                raise DuplicateCredentialError(entry.credential_hash)
            self._entries[entry.credential_hash] = entry
        return entry

    async def get_entry_by_hash(self, credential_hash: str) -> RegistryEntry | None:
        return self._entries.get(credential_hash)

    async def search_entries(
        self,
        search_filter: CredentialSearchFilter,
    ) -> list[RegistryEntry]:
        matched = [
            entry for entry in self._entries.values() if entry_matches(entry, search_filter)
        ]
        return sorted(matched, key=lambda entry: entry.issued_at, reverse=True)

    async def revoke(self, credential_hash: str) -> RegistryEntry:
        async with self._write_lock:
            current = self._entries.get(credential_hash)
            if current is None:
                raise CredentialNotFoundError(credential_hash)
            revoked = current.model_copy(update={"is_revoked": True})
            self._entries[credential_hash] = revoked
        return revoked

    async def close(self) -> None:
        return None
