from __future__ import annotations


class CanonicalizationError(RuntimeError):
    pass


class UnsupportedValueError(CanonicalizationError, TypeError):
    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(f"{message} at {path}")
        self.path = path


class SerializationError(CanonicalizationError):
    pass


class HashingError(CanonicalizationError):
    pass


class IncompleteCredentialError(ValueError):
    def __init__(self, missing_fields: tuple[str, ...]) -> None:
        super().__init__(
            "Credential is missing required fields: " + ", ".join(missing_fields)
        )
        self.missing_fields = missing_fields


class InvalidCredentialJSONError(ValueError):
    pass


class IssuanceError(RuntimeError):
    def __init__(self, message: str, *, credential_hash: str) -> None:
        super().__init__(message)
        self.credential_hash = credential_hash


class DuplicateCredentialError(RuntimeError):
    def __init__(self, credential_hash: str) -> None:
        super().__init__(f"Credential {credential_hash!r} is already registered.")
        self.credential_hash = credential_hash


class CredentialNotFoundError(LookupError):
    def __init__(self, credential_hash: str) -> None:
        super().__init__(f"No credential registered under {credential_hash!r}.")
        self.credential_hash = credential_hash


__all__ = [
    "CanonicalizationError",
    "CredentialNotFoundError",
    "DuplicateCredentialError",
    "HashingError",
    "IncompleteCredentialError",
    "InvalidCredentialJSONError",
    "IssuanceError",
    "SerializationError",
    "UnsupportedValueError",
]
