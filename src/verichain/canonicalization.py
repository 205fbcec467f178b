from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final, NoReturn, TypeAlias

from verichain.errors import SerializationError, UnsupportedValueError

# Hash-critical canonicalization profile. Changing the serialization rules
# invalidates every digest issued under the previous profile.
CANONICAL_JSON_PROFILE: Final[str] = "v1"

MAX_NESTING_DEPTH: Final[int] = 256

_NUMBER_TOKEN: Final[re.Pattern[str]] = re.compile(
    r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?"
)


@dataclass(frozen=True, slots=True)
class JsonNumber:
    """A JSON number token kept exactly as it was written.

    ``3.90`` and ``3.9`` stay distinct, as do ``1E2`` and ``100``.
    """

    text: str

    def __post_init__(self) -> None:
        if _NUMBER_TOKEN.fullmatch(self.text) is None:
            raise ValueError(f"Invalid JSON number token {self.text!r}.")

    def __str__(self) -> str:
        return self.text


JsonScalar: TypeAlias = str | int | float | bool | JsonNumber | None
JsonValue: TypeAlias = JsonScalar | list["JsonValue"] | dict[str, "JsonValue"]


def canonicalize(value: object) -> JsonValue:
    """Return the canonical form of a JSON-like value.

    Mapping keys are re-emitted in ascending code-point order at every depth,
    sequence order is preserved and scalars are returned unchanged. Anything
    that has no exact JSON representation raises ``UnsupportedValueError``,
    as does nesting deeper than ``MAX_NESTING_DEPTH`` containers.
    """
    return _canonicalize(value, path="$", active=set())


def _canonicalize(value: object, *, path: str, active: set[int]) -> JsonValue:
    if value is None or isinstance(value, (bool, str, JsonNumber)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsupportedValueError(f"Non-finite number {value!r}", path=path)
        return value
    if isinstance(value, (list, tuple)):
        marker = _enter(value, path=path, active=active)
        try:
            return [
                _canonicalize(item, path=f"{path}[{index}]", active=active)
                for index, item in enumerate(value)
            ]
        finally:
            active.discard(marker)
    if isinstance(value, Mapping):
        marker = _enter(value, path=path, active=active)
        try:
            for key in value:
                if not isinstance(key, str):
                    raise UnsupportedValueError(
                        f"Mapping key {key!r} is not a string", path=path
                    )
            return {
                key: _canonicalize(value[key], path=f"{path}.{key}", active=active)
                for key in sorted(value)
            }
        finally:
            active.discard(marker)
    raise UnsupportedValueError(
        f"Unsupported value of type {type(value).__name__}", path=path
    )


def _enter(container: object, *, path: str, active: set[int]) -> int:
    marker = id(container)
    if marker in active:
        raise UnsupportedValueError("Cyclic reference", path=path)
    # Containers on the current path are exactly the nesting depth.
    if len(active) >= MAX_NESTING_DEPTH:
        raise UnsupportedValueError(
            f"Nesting deeper than {MAX_NESTING_DEPTH} levels", path=_depth_path(path)
        )
    active.add(marker)
    return marker


def _depth_path(path: str) -> str:
    if len(path) <= 64:
        return path
    return f"{path[:30]}...{path[-30:]}"


def canonical_json_dumps(value: object) -> str:
    """Serialize a value to canonical JSON text.

    Keys are sorted, no whitespace is inserted between tokens and non-ASCII
    characters are emitted as-is. Parsed number tokens are written back
    verbatim. This text is what gets hashed.
    """
    canonical = canonicalize(value)
    parts: list[str] = []
    try:
        _encode(canonical, parts)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Failed to encode canonical JSON: {exc}") from exc
    return "".join(parts)


def _encode(value: JsonValue, parts: list[str]) -> None:
    if value is None:
        parts.append("null")
    elif value is True:
        parts.append("true")
    elif value is False:
        parts.append("false")
    elif isinstance(value, JsonNumber):
        parts.append(value.text)
    elif isinstance(value, int):
        parts.append(int.__repr__(value))
    elif isinstance(value, float):
        parts.append(float.__repr__(value))
    elif isinstance(value, str):
        parts.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, list):
        parts.append("[")
        for index, item in enumerate(value):
            if index:
                parts.append(",")
            _encode(item, parts)
        parts.append("]")
    elif isinstance(value, dict):
        parts.append("{")
        for index, key in enumerate(sorted(value)):
            if index:
                parts.append(",")
            parts.append(json.dumps(key, ensure_ascii=False))
            parts.append(":")
            _encode(value[key], parts)
        parts.append("}")
    else:
        raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def canonical_json_bytes(value: object) -> bytes:
    text = canonical_json_dumps(value)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise SerializationError(
            f"Canonical JSON is not encodable as UTF-8: {exc.reason}"
        ) from exc


def load_json_value(raw: str) -> JsonValue:
    """Parse JSON text for hashing.

    Numbers come back as ``JsonNumber`` tokens so their spelling survives into
    the digest. The non-standard NaN/Infinity constants are refused.

    Raises ValueError (including json.JSONDecodeError) on malformed input and
    UnsupportedValueError when the document nests too deeply.
    """
    try:
        parsed: object = json.loads(
            raw,
            parse_int=JsonNumber,
            parse_float=JsonNumber,
            parse_constant=_reject_constant,
        )
    except RecursionError as exc:
        raise UnsupportedValueError(
            f"Nesting deeper than {MAX_NESTING_DEPTH} levels", path="$"
        ) from exc
    return canonicalize(parsed)


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"Non-standard JSON constant {name!r} is not allowed.")


__all__ = [
    "CANONICAL_JSON_PROFILE",
    "JsonNumber",
    "JsonScalar",
    "JsonValue",
    "MAX_NESTING_DEPTH",
    "canonical_json_bytes",
    "canonical_json_dumps",
    "canonicalize",
    "load_json_value",
]
