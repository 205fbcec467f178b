from verichain.ports.extraction import (
    CredentialExtractor,
    ExtractionCreditsExhaustedError,
    ExtractionError,
    ExtractionRateLimitedError,
    InvalidImageError,
    LiteLLMCredentialExtractor,
)
from verichain.ports.signer import (
    Ed25519Signer,
    SignerPort,
    SignerUnavailableError,
    transaction_reference,
)

__all__ = [
    "CredentialExtractor",
    "Ed25519Signer",
    "ExtractionCreditsExhaustedError",
    "ExtractionError",
    "ExtractionRateLimitedError",
    "InvalidImageError",
    "LiteLLMCredentialExtractor",
    "SignerPort",
    "SignerUnavailableError",
    "transaction_reference",
]
