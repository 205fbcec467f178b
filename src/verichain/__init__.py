from verichain.canonicalization import (
    CANONICAL_JSON_PROFILE,
    JsonNumber,
    JsonValue,
    canonical_json_bytes,
    canonical_json_dumps,
    canonicalize,
)
from verichain.errors import (
    CanonicalizationError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    HashingError,
    IncompleteCredentialError,
    InvalidCredentialJSONError,
    IssuanceError,
    SerializationError,
    UnsupportedValueError,
)
from verichain.hashing import DigestEngine, HashFunction, HashlibHasher, credential_digest
from verichain.issuance import CredentialIssuer
from verichain.models import (
    CredentialRecord,
    CredentialSearchFilter,
    RegistryEntry,
    VerificationResult,
    VerificationStatus,
    demo_credential,
)
from verichain.search import parse_search_query
from verichain.store import InMemoryRegistry, SQLiteRegistry
from verichain.verification import CredentialVerifier

__all__ = [
    "CANONICAL_JSON_PROFILE",
    "CanonicalizationError",
    "CredentialIssuer",
    "CredentialNotFoundError",
    "CredentialRecord",
    "CredentialSearchFilter",
    "CredentialVerifier",
    "DigestEngine",
    "DuplicateCredentialError",
    "HashFunction",
    "HashingError",
    "HashlibHasher",
    "InMemoryRegistry",
    "IncompleteCredentialError",
    "InvalidCredentialJSONError",
    "IssuanceError",
    "JsonNumber",
    "JsonValue",
    "RegistryEntry",
    "SQLiteRegistry",
    "SerializationError",
    "UnsupportedValueError",
    "VerificationResult",
    "VerificationStatus",
    "canonical_json_bytes",
    "canonical_json_dumps",
    "canonicalize",
    "credential_digest",
    "demo_credential",
    "parse_search_query",
]
