from __future__ import annotations

import hashlib
import itertools
import random

import pytest

from verichain.errors import HashingError, UnsupportedValueError
from verichain.hashing import DigestEngine, HashlibHasher, credential_digest, is_digest
from verichain.models import CREDENTIAL_FIELDS
from verichain.testing import RecordingHasher

SAMPLE_RECORD = {
    "student_name": "Alex Chen",
    "university_name": "Stanford University",
    "degree_type": "Bachelor of Science",
    "major": "Computer Science",
    "gpa": "3.9",
    "graduation_date": "2023",
}


def test_digest_is_sha256_of_compact_canonical_json() -> None:
    expected = hashlib.sha256(b'{"a":1,"b":2}').hexdigest()

    assert credential_digest({"b": 2, "a": 1}) == expected


def test_digest_is_64_lowercase_hex_characters() -> None:
    value = credential_digest(SAMPLE_RECORD)

    assert len(value) == 64
    assert is_digest(value)


def test_digest_is_deterministic_across_calls_and_engines() -> None:
    first = credential_digest(SAMPLE_RECORD)

    assert credential_digest(SAMPLE_RECORD) == first
    assert DigestEngine().digest(dict(SAMPLE_RECORD)) == first


def test_known_digest_is_pinned() -> None:
    # Any change here means previously issued credentials no longer verify.
    canonical = (
        '{"degree_type":"Bachelor of Science","gpa":"3.9","graduation_date":"2023",'
        '"major":"Computer Science","student_name":"Alex Chen",'
        '"university_name":"Stanford University"}'
    )
    assert credential_digest(SAMPLE_RECORD) == hashlib.sha256(
        canonical.encode("utf-8")
    ).hexdigest()


def test_digest_is_invariant_to_key_permutations() -> None:
    expected = credential_digest(SAMPLE_RECORD)
    keys = list(SAMPLE_RECORD)
    permutations = list(itertools.permutations(keys))
    for permutation in random.Random(7).sample(permutations, 25):
        reordered = {key: SAMPLE_RECORD[key] for key in permutation}
        assert credential_digest(reordered) == expected


def test_simple_key_order_scenario() -> None:
    assert credential_digest({"a": 1, "b": 2}) == credential_digest({"b": 2, "a": 1})


def test_gpa_text_is_not_normalized() -> None:
    assert credential_digest({"gpa": "3.9"}) != credential_digest({"gpa": "3.90"})


@pytest.mark.parametrize("field_name", CREDENTIAL_FIELDS)
def test_changing_any_single_field_changes_digest(field_name: str) -> None:
    mutated = dict(SAMPLE_RECORD)
    mutated[field_name] = mutated[field_name] + " "

    assert credential_digest(mutated) != credential_digest(SAMPLE_RECORD)


def test_field_presence_and_name_change_digest() -> None:
    baseline = credential_digest(SAMPLE_RECORD)
    without_major = {key: value for key, value in SAMPLE_RECORD.items() if key != "major"}
    renamed = {**without_major, "Major": SAMPLE_RECORD["major"]}

    assert credential_digest(without_major) != baseline
    assert credential_digest(renamed) != baseline


def test_array_reordering_changes_digest() -> None:
    first = {"credentials": ["BSc", "MSc"]}
    second = {"credentials": ["MSc", "BSc"]}

    assert credential_digest(first) != credential_digest(second)


def test_string_and_number_are_distinct() -> None:
    assert credential_digest({"gpa": "3.9"}) != credential_digest({"gpa": 3.9})


def test_nested_key_order_scenario() -> None:
    assert credential_digest({"x": {"b": 1, "a": 2}}) == credential_digest(
        {"x": {"a": 2, "b": 1}}
    )


def test_engine_hashes_exact_canonical_bytes() -> None:
    hasher = RecordingHasher()
    engine = DigestEngine(hasher)

    engine.digest({"x": {"b": 1, "a": 2}})
    engine.digest({"x": {"a": 2, "b": 1}})

    assert hasher.payloads == [b'{"x":{"a":2,"b":1}}', b'{"x":{"a":2,"b":1}}']


def test_engine_accepts_other_256_bit_algorithms() -> None:
    engine = DigestEngine(HashlibHasher("sha3_256"))
    expected = hashlib.sha3_256(b'{"a":1}').hexdigest()

    assert engine.algorithm == "sha3_256"
    assert engine.digest({"a": 1}) == expected


def test_unknown_algorithm_raises_hashing_error() -> None:
    with pytest.raises(HashingError, match="unavailable"):
        HashlibHasher("not-a-real-hash")


def test_non_256_bit_algorithm_is_rejected() -> None:
    with pytest.raises(HashingError, match="256-bit"):
        HashlibHasher("sha512")


class _BrokenHasher:
    name = "broken"

    def hexdigest(self, data: bytes) -> str:
        raise OSError("primitive unavailable")


class _ShortHasher:
    name = "short"

    def hexdigest(self, data: bytes) -> str:
        return "abc123"


def test_hasher_failure_is_surfaced_as_hashing_error() -> None:
    with pytest.raises(HashingError, match="primitive unavailable"):
        DigestEngine(_BrokenHasher()).digest({"a": 1})


def test_malformed_hasher_output_is_rejected() -> None:
    with pytest.raises(HashingError, match="malformed"):
        DigestEngine(_ShortHasher()).digest({"a": 1})


def test_canonicalization_errors_propagate_through_digest() -> None:
    with pytest.raises(UnsupportedValueError):
        credential_digest({"gpa": float("nan")})
