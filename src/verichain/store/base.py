from __future__ import annotations

from typing import Protocol

from verichain.models import CredentialSearchFilter, RegistryEntry


class CredentialRegistry(Protocol):
    async def insert_entry(self, entry: RegistryEntry) -> RegistryEntry:
        ...

    async def get_entry_by_hash(self, credential_hash: str) -> RegistryEntry | None:
        ...

    async def search_entries(
        self,
        search_filter: CredentialSearchFilter,
    ) -> list[RegistryEntry]:
        ...

    async def revoke(self, credential_hash: str) -> RegistryEntry:
        ...

    async def close(self) -> None:
        ...
