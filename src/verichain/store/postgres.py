from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import asyncpg  # type: ignore[import-untyped]

from verichain.errors import CredentialNotFoundError, DuplicateCredentialError
from verichain.models import CREDENTIAL_FIELDS, CredentialSearchFilter, RegistryEntry
from verichain.search import meets_gpa_threshold
from verichain.store.base import CredentialRegistry

logger = logging.getLogger(__name__)

_ReadResultT = TypeVar("_ReadResultT")

_ENTRY_COLUMNS = (
    "entry_id",
    *CREDENTIAL_FIELDS,
    "credential_hash",
    "wallet_address",
    "transaction_id",
    "raw_json",
    "is_revoked",
    "issued_at",
)
_SELECT_ENTRY = f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM credentials"


class PostgresRegistry(CredentialRegistry):
    def __init__(
        self,
        dsn: str,
        *,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        command_timeout_seconds: float = 30.0,
        max_retry_attempts: int = 5,
        retry_backoff_seconds: float = 0.02,
    ) -> None:
        if min_pool_size <= 0:
            raise ValueError("min_pool_size must be > 0")
        if max_pool_size <= 0:
            raise ValueError("max_pool_size must be > 0")
        if max_pool_size < min_pool_size:
            raise ValueError("max_pool_size must be >= min_pool_size")
        if command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be > 0")
        if max_retry_attempts <= 0:
            raise ValueError("max_retry_attempts must be > 0")
        if retry_backoff_seconds <= 0:
            raise ValueError("retry_backoff_seconds must be > 0")

        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._command_timeout_seconds = command_timeout_seconds
        self._max_retry_attempts = max_retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds

        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def insert_entry(self, entry: RegistryEntry) -> RegistryEntry:
        pool = await self._ensure_pool()
        placeholders = ", ".join(f"${index}" for index in range(1, len(_ENTRY_COLUMNS) + 1))
        try:
            async with pool.acquire() as connection:
                await connection.execute(
                    f"""
                    INSERT INTO credentials ({', '.join(_ENTRY_COLUMNS)})
                    VALUES ({placeholders})
                    """,
                    entry.entry_id,
                    entry.student_name,
                    entry.university_name,
                    entry.degree_type,
                    entry.major,
                    entry.gpa,
                    entry.graduation_date,
                    entry.credential_hash,
                    entry.wallet_address,
                    entry.transaction_id,
                    entry.raw_json,
                    entry.is_revoked,
                    entry.issued_at,
                )
        except asyncpg.UniqueViolationError as exc:
            if _is_duplicate_hash_violation(exc):
                raise DuplicateCredentialError(entry.credential_hash) from exc
            raise
        return entry

    async def get_entry_by_hash(self, credential_hash: str) -> RegistryEntry | None:
        row = await self._fetchrow(
            f"{_SELECT_ENTRY} WHERE credential_hash = $1",
            credential_hash,
        )
        if row is None:
            return None
        return _entry_from_record(row)

    async def search_entries(
        self,
        search_filter: CredentialSearchFilter,
    ) -> list[RegistryEntry]:
        clauses: list[str] = []
        params: list[object] = []
        if not search_filter.include_revoked:
            clauses.append("is_revoked = FALSE")
        for column, terms in (
            ("university_name", search_filter.university_terms),
            ("degree_type", search_filter.degree_terms),
            ("major", search_filter.major_terms),
        ):
            for term in terms:
                params.append(f"%{_escape_like(term)}%")
                clauses.append(f"{column} ILIKE ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetch(f"{_SELECT_ENTRY}{where} ORDER BY issued_at DESC", *params)
        entries = [_entry_from_record(row) for row in rows]
        return [
            entry for entry in entries if meets_gpa_threshold(entry, search_filter.min_gpa)
        ]

    async def revoke(self, credential_hash: str) -> RegistryEntry:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(
                f"""
                UPDATE credentials SET is_revoked = TRUE
                WHERE credential_hash = $1
                RETURNING {', '.join(_ENTRY_COLUMNS)}
                """,
                credential_hash,
            )
        if row is None:
            raise CredentialNotFoundError(credential_hash)
        return _entry_from_record(row)

    async def close(self) -> None:
        pool_to_close: asyncpg.Pool | None = None
        async with self._pool_lock:
            if self._pool is None:
                return
            pool_to_close = self._pool
            self._pool = None
        if pool_to_close is None:
            return
        await pool_to_close.close()

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_pool_size,
                    max_size=self._max_pool_size,
                    command_timeout=self._command_timeout_seconds,
                )
                try:
                    await self._initialize_pool(pool)
                except Exception:
                    await pool.close()
                    raise
                self._pool = pool

        if self._pool is None:
            raise RuntimeError("Failed to initialize Postgres connection pool.")
        return self._pool

    async def _initialize_pool(self, pool: asyncpg.Pool) -> None:
        async with pool.acquire() as connection:
            await connection.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    entry_id TEXT PRIMARY KEY,
                    student_name TEXT NOT NULL,
                    university_name TEXT NOT NULL,
                    degree_type TEXT NOT NULL,
                    major TEXT NOT NULL,
                    gpa TEXT NOT NULL,
                    graduation_date TEXT NOT NULL,
                    credential_hash TEXT NOT NULL,
                    wallet_address TEXT NOT NULL,
                    transaction_id TEXT NOT NULL,
                    raw_json TEXT NOT NULL,
                    is_revoked BOOLEAN NOT NULL DEFAULT FALSE,
                    issued_at TIMESTAMPTZ NOT NULL,
                    CONSTRAINT credentials_credential_hash_key UNIQUE (credential_hash)
                )
                """
            )
            await connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_credentials_revoked_issued
                ON credentials (is_revoked, issued_at DESC)
                """
            )

    async def _fetch(self, query: str, *args: object) -> list[asyncpg.Record]:
        return await self._run_read_with_retry(
            lambda connection: connection.fetch(query, *args),
        )

    async def _fetchrow(self, query: str, *args: object) -> asyncpg.Record | None:
        return await self._run_read_with_retry(
            lambda connection: connection.fetchrow(query, *args),
        )

    async def _run_read_with_retry(
        self,
        operation: Callable[[asyncpg.Connection], Awaitable[_ReadResultT]],
    ) -> _ReadResultT:
        for attempt in range(self._max_retry_attempts):
            pool = await self._ensure_pool()
            try:
                async with pool.acquire() as connection:
                    return await operation(connection)
            except Exception as exc:
                if not _is_retryable_read_exception(exc):
                    raise
                if attempt >= self._max_retry_attempts - 1:
                    raise
                logger.warning(
                    "Postgres registry read failed (attempt %d/%d): %s",
                    attempt + 1,
                    self._max_retry_attempts,
                    exc,
                )
                await self._invalidate_pool()
                await asyncio.sleep(self._retry_backoff(attempt))
        raise RuntimeError("Failed to execute Postgres read after connection retries.")

    async def _invalidate_pool(self) -> None:
        pool_to_close: asyncpg.Pool | None = None
        async with self._pool_lock:
            if self._pool is not None:
                pool_to_close = self._pool
                self._pool = None
        if pool_to_close is None:
            return
        try:
            await pool_to_close.close()
        except Exception:
            pool_to_close.terminate()

    def _retry_backoff(self, attempt: int) -> float:
        multiplier = float(2**attempt)
        delay = float(self._retry_backoff_seconds * multiplier)
        if delay > 1.0:
            return 1.0
        return float(delay)


def _entry_from_record(row: asyncpg.Record) -> RegistryEntry:
    return RegistryEntry.model_validate({column: row[column] for column in _ENTRY_COLUMNS})


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _is_retryable_read_exception(exc: Exception) -> bool:
    if isinstance(exc, asyncpg.PostgresConnectionError):
        return True
    if isinstance(exc, asyncpg.InterfaceError):
        message = str(exc).lower()
        return "closed" in message or "closing" in message or "terminated" in message
    if isinstance(exc, ConnectionError):
        return True
    return False


def _is_duplicate_hash_violation(exc: asyncpg.UniqueViolationError) -> bool:
    constraint_name = getattr(exc, "constraint_name", None)
    return constraint_name == "credentials_credential_hash_key"
