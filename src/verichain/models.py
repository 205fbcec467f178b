from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

CREDENTIAL_FIELDS: Final[tuple[str, ...]] = (
    "student_name",
    "university_name",
    "degree_type",
    "major",
    "gpa",
    "graduation_date",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRecord(BaseModel):
    """The credential attributes that participate in hashing.

    GPA stays text as originally typed: "3.9" and "3.90" are different
    credentials.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    student_name: str
    university_name: str
    degree_type: str
    major: str
    gpa: str
    graduation_date: str

    def missing_fields(self) -> tuple[str, ...]:
        return tuple(
            field_name
            for field_name in CREDENTIAL_FIELDS
            if getattr(self, field_name) == ""
        )

    def hash_payload(self) -> dict[str, str]:
        return {field_name: getattr(self, field_name) for field_name in CREDENTIAL_FIELDS}


class RegistryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(min_length=1)
    student_name: str = Field(min_length=1)
    university_name: str = Field(min_length=1)
    degree_type: str = Field(min_length=1)
    major: str = Field(min_length=1)
    gpa: str = Field(min_length=1)
    graduation_date: str = Field(min_length=1)
    credential_hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    wallet_address: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    raw_json: str = Field(min_length=2)
    is_revoked: bool = False
    issued_at: datetime = Field(default_factory=utc_now)

    @property
    def record(self) -> CredentialRecord:
        return CredentialRecord(
            **{field_name: getattr(self, field_name) for field_name in CREDENTIAL_FIELDS}
        )


class VerificationStatus(StrEnum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    VALID = "valid"


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: VerificationStatus
    credential_hash: str
    message: str
    entry: RegistryEntry | None = None

    @property
    def is_valid(self) -> bool:
        return self.status is VerificationStatus.VALID


class CredentialSearchFilter(BaseModel):
    """Conjunctive filter over registry entries.

    Every term in a field tuple must appear (case-insensitively) in that
    field.
    """

    model_config = ConfigDict(frozen=True)

    university_terms: tuple[str, ...] = ()
    degree_terms: tuple[str, ...] = ()
    major_terms: tuple[str, ...] = ()
    min_gpa: float | None = None
    include_revoked: bool = False


def demo_credential() -> CredentialRecord:
    return CredentialRecord(
        student_name="Alex Chen",
        university_name="Stanford University",
        degree_type="Bachelor of Science",
        major="Computer Science",
        gpa="3.9",
        graduation_date="2023",
    )


__all__ = [
    "CREDENTIAL_FIELDS",
    "CredentialRecord",
    "CredentialSearchFilter",
    "RegistryEntry",
    "VerificationResult",
    "VerificationStatus",
    "demo_credential",
    "utc_now",
]
