from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat


class SignerPort(Protocol):
    async def get_address(self) -> str:
        ...

    async def sign_message(self, message: str) -> bytes:
        ...


class SignerUnavailableError(RuntimeError):
    pass


def transaction_reference(signature: bytes) -> str:
    """Derive the stand-in transaction id stored alongside an entry.

    Only a message signature is produced, so the first 32 bytes of that
    signature serve as an opaque reference.
    """
    if len(signature) < 32:
        raise ValueError("Signature must be at least 32 bytes.")
    return f"0x{signature.hex()[:64]}"


class Ed25519Signer:
    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        public_bytes = private_key.public_key().public_bytes(
            encoding=Encoding.Raw,
            format=PublicFormat.Raw,
        )
        self._address = f"0x{hashlib.sha256(public_bytes).hexdigest()[-40:]}"

    @classmethod
    def generate(cls) -> Ed25519Signer:
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed_hex(cls, seed_hex: str) -> Ed25519Signer:
        normalized = seed_hex.strip().removeprefix("0x")
        try:
            seed = bytes.fromhex(normalized)
        except ValueError as exc:
            raise SignerUnavailableError("Signing key seed must be hex encoded.") from exc
        if len(seed) != 32:
            raise SignerUnavailableError("Signing key seed must be exactly 32 bytes.")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_key_file(cls, path: str | Path) -> Ed25519Signer:
        key_path = Path(path)
        try:
            seed_hex = key_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SignerUnavailableError(f"Cannot read signing key {key_path}: {exc}") from exc
        return cls.from_seed_hex(seed_hex)

    async def get_address(self) -> str:
        return self._address

    async def sign_message(self, message: str) -> bytes:
        return self._private_key.sign(message.encode("utf-8"))

    def verify(self, message: str, signature: bytes) -> bool:
        try:
            self._private_key.public_key().verify(signature, message.encode("utf-8"))
        except InvalidSignature:
            return False
        return True


__all__ = [
    "Ed25519Signer",
    "SignerPort",
    "SignerUnavailableError",
    "transaction_reference",
]
