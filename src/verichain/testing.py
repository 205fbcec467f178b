from __future__ import annotations

import hashlib
from collections.abc import Callable, Mapping

from verichain.hashing import HashlibHasher
from verichain.models import CredentialRecord


class MockExtractor:
    def __init__(
        self,
        *,
        output: Mapping[str, str] | None = None,
        output_factory: Callable[[str], Mapping[str, str]] | None = None,
        error: Exception | None = None,
    ) -> None:
        if output is None and output_factory is None and error is None:
            raise ValueError("MockExtractor requires output, output_factory or error.")
        self._output = dict(output) if output is not None else None
        self._output_factory = output_factory
        self._error = error
        self.calls = 0

    async def extract(self, image_data_url: str) -> CredentialRecord:
        self.calls += 1
        if self._error is not None:
            raise self._error
        if self._output_factory is not None:
            return CredentialRecord.model_validate(dict(self._output_factory(image_data_url)))
        if self._output is None:
            raise RuntimeError("MockExtractor is missing configured output.")
        return CredentialRecord.model_validate(self._output)


class StaticSigner:
    """Deterministic signer: the signature is SHA-512 over secret and message."""

    def __init__(self, *, address: str = "0x" + "ab" * 20, secret: str = "static") -> None:
        self._address = address
        self._secret = secret
        self.signed_messages: list[str] = []

    async def get_address(self) -> str:
        return self._address

    async def sign_message(self, message: str) -> bytes:
        self.signed_messages.append(message)
        return hashlib.sha512(f"{self._secret}:{message}".encode("utf-8")).digest()


class RecordingHasher(HashlibHasher):
    """SHA-256 hasher that keeps every payload it was asked to hash."""

    def __init__(self) -> None:
        super().__init__("sha256")
        self.payloads: list[bytes] = []

    def hexdigest(self, data: bytes) -> str:
        self.payloads.append(data)
        return super().hexdigest(data)


__all__ = ["MockExtractor", "RecordingHasher", "StaticSigner"]
