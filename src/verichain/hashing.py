from __future__ import annotations

import hashlib
import re
from typing import Final, Protocol, runtime_checkable

from verichain.canonicalization import canonical_json_bytes
from verichain.errors import HashingError

DIGEST_HEX_LENGTH: Final[int] = 64
_DIGEST_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]{64}$")


@runtime_checkable
class HashFunction(Protocol):
    """A 256-bit one-way hash over raw bytes."""

    @property
    def name(self) -> str:
        ...

    def hexdigest(self, data: bytes) -> str:
        ...


class HashlibHasher:
    def __init__(self, algorithm: str = "sha256") -> None:
        try:
            probe = hashlib.new(algorithm)
        except (ValueError, TypeError) as exc:
            raise HashingError(f"Hash algorithm {algorithm!r} is unavailable.") from exc
        if probe.digest_size * 2 != DIGEST_HEX_LENGTH:
            raise HashingError(
                f"Hash algorithm {algorithm!r} produces {probe.digest_size * 8}-bit "
                "digests; a 256-bit digest is required."
            )
        self._algorithm = algorithm

    @property
    def name(self) -> str:
        return self._algorithm

    def hexdigest(self, data: bytes) -> str:
        return hashlib.new(self._algorithm, data).hexdigest()


class DigestEngine:
    def __init__(self, hasher: HashFunction | None = None) -> None:
        self._hasher = hasher if hasher is not None else HashlibHasher()

    @property
    def algorithm(self) -> str:
        return self._hasher.name

    def digest(self, value: object) -> str:
        payload = canonical_json_bytes(value)
        try:
            raw = self._hasher.hexdigest(payload)
        except HashingError:
            raise
        except Exception as exc:
            raise HashingError(
                f"Hash function {self._hasher.name!r} failed: {exc}"
            ) from exc
        if not isinstance(raw, str):
            raise HashingError(
                f"Hash function {self._hasher.name!r} returned {type(raw).__name__}, "
                "expected a hex string."
            )
        normalized = raw.lower()
        if _DIGEST_PATTERN.fullmatch(normalized) is None:
            raise HashingError(
                f"Hash function {self._hasher.name!r} returned a malformed digest."
            )
        return normalized


_DEFAULT_ENGINE = DigestEngine()


def credential_digest(value: object) -> str:
    """Compute the SHA-256 digest of a value's canonical JSON encoding."""
    return _DEFAULT_ENGINE.digest(value)


def is_digest(value: str) -> bool:
    return _DIGEST_PATTERN.fullmatch(value) is not None


__all__ = [
    "DIGEST_HEX_LENGTH",
    "DigestEngine",
    "HashFunction",
    "HashlibHasher",
    "credential_digest",
    "is_digest",
]
