from __future__ import annotations

import logging
from uuid import uuid4

from verichain.canonicalization import canonical_json_dumps
from verichain.errors import IncompleteCredentialError, IssuanceError
from verichain.hashing import DigestEngine
from verichain.models import CredentialRecord, RegistryEntry, utc_now
from verichain.ports.signer import SignerPort, transaction_reference
from verichain.store.base import CredentialRegistry

logger = logging.getLogger(__name__)


class CredentialIssuer:
    """Issue credentials: digest, sign, then append to the registry.

    The append is all-or-nothing. A credential whose entry could not be
    persisted is not issued, even if the signer already produced a signature.
    """

    def __init__(
        self,
        *,
        registry: CredentialRegistry,
        signer: SignerPort,
        digest_engine: DigestEngine | None = None,
    ) -> None:
        self._registry = registry
        self._signer = signer
        self._digest_engine = digest_engine if digest_engine is not None else DigestEngine()

    async def issue(self, record: CredentialRecord) -> RegistryEntry:
        missing = record.missing_fields()
        if missing:
            raise IncompleteCredentialError(missing)

        payload = record.hash_payload()
        credential_hash = self._digest_engine.digest(payload)
        wallet_address = await self._signer.get_address()
        signature = await self._signer.sign_message(credential_hash)

        entry = RegistryEntry(
            entry_id=uuid4().hex,
            **payload,
            credential_hash=credential_hash,
            wallet_address=wallet_address,
            transaction_id=transaction_reference(signature),
            raw_json=canonical_json_dumps(payload),
            is_revoked=False,
            issued_at=utc_now(),
        )
        try:
            stored = await self._registry.insert_entry(entry)
        except Exception as exc:
            logger.error(
                "Credential %s... was not issued: registry append failed: %s",
                credential_hash[:16],
                exc,
            )
            raise IssuanceError(
                f"Failed to record credential {credential_hash}: {exc}",
                credential_hash=credential_hash,
            ) from exc

        logger.info(
            "Issued credential %s... by %s (tx %s)",
            credential_hash[:16],
            wallet_address,
            stored.transaction_id,
        )
        return stored


__all__ = ["CredentialIssuer"]
