from verichain.store.base import CredentialRegistry
from verichain.store.memory import InMemoryRegistry
from verichain.store.postgres import PostgresRegistry
from verichain.store.sqlite import SQLiteRegistry

__all__ = [
    "CredentialRegistry",
    "InMemoryRegistry",
    "PostgresRegistry",
    "SQLiteRegistry",
]
