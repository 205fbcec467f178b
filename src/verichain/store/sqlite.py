from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from verichain.errors import CredentialNotFoundError, DuplicateCredentialError
from verichain.models import CREDENTIAL_FIELDS, CredentialSearchFilter, RegistryEntry
from verichain.search import meets_gpa_threshold
from verichain.store.base import CredentialRegistry

logger = logging.getLogger(__name__)

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


class SQLiteRegistry(CredentialRegistry):
    def __init__(
        self,
        database_path: str,
        *,
        busy_timeout_ms: int = 5000,
        max_retry_attempts: int = 5,
        retry_backoff_seconds: float = 0.02,
    ) -> None:
        if busy_timeout_ms <= 0:
            raise ValueError("busy_timeout_ms must be > 0")
        if max_retry_attempts <= 0:
            raise ValueError("max_retry_attempts must be > 0")
        if retry_backoff_seconds <= 0:
            raise ValueError("retry_backoff_seconds must be > 0")

        self._database_path = Path(database_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._max_retry_attempts = max_retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._connection: aiosqlite.Connection | None = None
        self._connection_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def insert_entry(self, entry: RegistryEntry) -> RegistryEntry:
        connection = await self._ensure_connection()

        async with self._write_lock:
            for attempt in range(self._max_retry_attempts):
                try:
                    await self._insert_entry_once(connection=connection, entry=entry)
                    return entry
                except aiosqlite.IntegrityError as exc:
                    if _is_duplicate_hash_error(exc):
                        raise DuplicateCredentialError(entry.credential_hash) from exc
                    raise
                except aiosqlite.OperationalError as exc:
                    if not _is_locked_error(exc):
                        raise
                    if attempt >= self._max_retry_attempts - 1:
                        raise
                    logger.warning(
                        "SQLite registry locked on insert (attempt %d/%d)",
                        attempt + 1,
                        self._max_retry_attempts,
                    )
                await asyncio.sleep(self._retry_backoff(attempt))
        raise RuntimeError(
            "Failed to insert credential due to repeated SQLite write contention."
        )

    async def get_entry_by_hash(self, credential_hash: str) -> RegistryEntry | None:
        connection = await self._ensure_connection()
        cursor = await connection.execute(
            f"{_SELECT_ENTRY} WHERE credential_hash = ?",
            (credential_hash,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _entry_from_row(row)

    async def search_entries(
        self,
        search_filter: CredentialSearchFilter,
    ) -> list[RegistryEntry]:
        connection = await self._ensure_connection()
        clauses: list[str] = []
        params: list[object] = []
        if not search_filter.include_revoked:
            clauses.append("is_revoked = 0")
        for column, terms in (
            ("university_name", search_filter.university_terms),
            ("degree_type", search_filter.degree_terms),
            ("major", search_filter.major_terms),
        ):
            for term in terms:
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(term)}%")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await connection.execute(
            f"{_SELECT_ENTRY}{where} ORDER BY issued_at DESC",
            tuple(params),
        )
        rows = await cursor.fetchall()
        await cursor.close()

        entries = [_entry_from_row(row) for row in rows]
        return [
            entry for entry in entries if meets_gpa_threshold(entry, search_filter.min_gpa)
        ]

    async def revoke(self, credential_hash: str) -> RegistryEntry:
        connection = await self._ensure_connection()
        async with self._write_lock:
            for attempt in range(self._max_retry_attempts):
                try:
                    await self._revoke_once(
                        connection=connection,
                        credential_hash=credential_hash,
                    )
                    break
                except aiosqlite.OperationalError as exc:
                    if not _is_locked_error(exc):
                        raise
                    if attempt >= self._max_retry_attempts - 1:
                        raise
                    logger.warning(
                        "SQLite registry locked on revoke (attempt %d/%d)",
                        attempt + 1,
                        self._max_retry_attempts,
                    )
                await asyncio.sleep(self._retry_backoff(attempt))
        entry = await self.get_entry_by_hash(credential_hash)
        if entry is None:
            raise CredentialNotFoundError(credential_hash)
        return entry

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None

    async def _insert_entry_once(
        self,
        *,
        connection: aiosqlite.Connection,
        entry: RegistryEntry,
    ) -> None:
        await connection.execute("BEGIN IMMEDIATE")
        try:
            await connection.execute(
                f"""
                INSERT INTO credentials ({', '.join(_ENTRY_COLUMNS)})
                VALUES ({', '.join('?' for _ in _ENTRY_COLUMNS)})
                """,
                (
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
                    1 if entry.is_revoked else 0,
                    entry.issued_at.isoformat(),
                ),
            )
            await connection.commit()
        except Exception:
            await _rollback_quietly(connection)
            raise

    async def _revoke_once(
        self,
        *,
        connection: aiosqlite.Connection,
        credential_hash: str,
    ) -> None:
        await connection.execute("BEGIN IMMEDIATE")
        try:
            cursor = await connection.execute(
                "UPDATE credentials SET is_revoked = 1 WHERE credential_hash = ?",
                (credential_hash,),
            )
            updated = cursor.rowcount
            await cursor.close()
            if updated == 0:
                raise CredentialNotFoundError(credential_hash)
            await connection.commit()
        except Exception:
            await _rollback_quietly(connection)
            raise

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._connection is not None:
            return self._connection

        async with self._connection_lock:
            if self._connection is None:
                self._database_path.parent.mkdir(parents=True, exist_ok=True)
                connection = await aiosqlite.connect(self._database_path)
                connection.row_factory = aiosqlite.Row
                try:
                    await self._initialize_connection(connection)
                except Exception:
                    await connection.close()
                    raise
                self._connection = connection
        if self._connection is None:
            raise RuntimeError("Failed to initialize SQLite connection.")
        return self._connection

    async def _initialize_connection(self, connection: aiosqlite.Connection) -> None:
        for attempt in range(self._max_retry_attempts):
            try:
                await connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout_ms};")
                await connection.execute("PRAGMA journal_mode = WAL;")
                await connection.execute("PRAGMA synchronous = NORMAL;")
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
                        credential_hash TEXT NOT NULL UNIQUE,
                        wallet_address TEXT NOT NULL,
                        transaction_id TEXT NOT NULL,
                        raw_json TEXT NOT NULL,
                        is_revoked INTEGER NOT NULL DEFAULT 0,
                        issued_at TEXT NOT NULL
                    )
                    """
                )
                await connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_credentials_revoked_issued
                    ON credentials (is_revoked, issued_at DESC)
                    """
                )
                await connection.commit()
                return
            except aiosqlite.OperationalError as exc:
                await _rollback_quietly(connection)
                if _is_locked_error(exc) and attempt < self._max_retry_attempts - 1:
                    await asyncio.sleep(self._retry_backoff(attempt))
                    continue
                raise RuntimeError(
                    "Failed to initialize SQLiteRegistry due to database lock contention. "
                    "For multi-writer deployments, prefer a Postgres-backed registry."
                ) from exc
            except Exception:
                await _rollback_quietly(connection)
                raise

    def _retry_backoff(self, attempt: int) -> float:
        multiplier = float(2**attempt)
        delay = float(self._retry_backoff_seconds * multiplier)
        if delay > 1.0:
            return 1.0
        return float(delay)


def _entry_from_row(row: aiosqlite.Row) -> RegistryEntry:
    values: dict[str, object] = {}
    for column in _ENTRY_COLUMNS:
        if column in ("is_revoked", "issued_at"):
            continue
        raw: object = row[column]
        if not isinstance(raw, str):
            raise TypeError(f"Invalid {column} row type: {type(raw)!r}")
        values[column] = raw

    is_revoked_raw: object = row["is_revoked"]
    if not isinstance(is_revoked_raw, int):
        raise TypeError(f"Invalid is_revoked row type: {type(is_revoked_raw)!r}")
    issued_at_raw: object = row["issued_at"]
    if not isinstance(issued_at_raw, str):
        raise TypeError(f"Invalid issued_at row type: {type(issued_at_raw)!r}")

    return RegistryEntry.model_validate(
        {
            **values,
            "is_revoked": bool(is_revoked_raw),
            "issued_at": datetime.fromisoformat(issued_at_raw),
        }
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _is_locked_error(exc: aiosqlite.OperationalError) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database schema is locked" in message


def _is_duplicate_hash_error(exc: aiosqlite.IntegrityError) -> bool:
    message = str(exc).lower()
    return "unique constraint failed: credentials.credential_hash" in message


async def _rollback_quietly(connection: aiosqlite.Connection) -> None:
    try:
        await connection.rollback()
    except aiosqlite.OperationalError:
        return
