from __future__ import annotations

import logging
from typing import Final

from verichain.canonicalization import load_json_value
from verichain.errors import InvalidCredentialJSONError, UnsupportedValueError
from verichain.hashing import DigestEngine, is_digest
from verichain.models import RegistryEntry, VerificationResult, VerificationStatus
from verichain.store.base import CredentialRegistry

logger = logging.getLogger(__name__)

_MESSAGES: Final[dict[VerificationStatus, str]] = {
    VerificationStatus.NOT_FOUND: "This credential could not be found in the registry.",
    VerificationStatus.REVOKED: "This credential has been revoked and is no longer valid.",
    VerificationStatus.VALID: "This credential is valid and verified.",
}


def classify(entry: RegistryEntry | None) -> VerificationStatus:
    if entry is None:
        return VerificationStatus.NOT_FOUND
    if entry.is_revoked:
        return VerificationStatus.REVOKED
    return VerificationStatus.VALID


class CredentialVerifier:
    def __init__(
        self,
        *,
        registry: CredentialRegistry,
        digest_engine: DigestEngine | None = None,
    ) -> None:
        self._registry = registry
        self._digest_engine = digest_engine if digest_engine is not None else DigestEngine()

    async def verify(self, credential: object) -> VerificationResult:
        credential_hash = self._digest_engine.digest(credential)
        return await self.verify_hash(credential_hash)

    async def verify_json(self, raw: str) -> VerificationResult:
        if raw.strip() == "":
            raise InvalidCredentialJSONError("Credential JSON is empty.")
        try:
            credential = load_json_value(raw)
        except (ValueError, UnsupportedValueError) as exc:
            raise InvalidCredentialJSONError(f"Invalid credential JSON: {exc}") from exc
        return await self.verify(credential)

    async def verify_hash(self, credential_hash: str) -> VerificationResult:
        credential_hash = credential_hash.strip().lower()
        if not is_digest(credential_hash):
            raise ValueError("Credential hash must be 64 hexadecimal characters.")
        entry = await self._registry.get_entry_by_hash(credential_hash)
        status = classify(entry)
        logger.info("Verified credential %s...: %s", credential_hash[:16], status.value)
        return VerificationResult(
            status=status,
            credential_hash=credential_hash,
            message=_MESSAGES[status],
            entry=entry,
        )


__all__ = ["CredentialVerifier", "classify"]
