from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Final, Protocol, cast, runtime_checkable

from pydantic import ValidationError

from verichain.models import CREDENTIAL_FIELDS, CredentialRecord

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES: Final[int] = 5 * 1024 * 1024
EXTRACTION_TOOL_NAME: Final[str] = "extract_credential"

LiteLLMCompletionFn = Callable[..., Awaitable[object]]

_SYSTEM_PROMPT: Final[str] = (
    "You are an expert at extracting structured data from academic credentials and "
    "certificates. Extract the following fields exactly as they appear: student_name, "
    "university_name, degree_type, major, gpa, graduation_date. Return ONLY valid JSON "
    "with these exact field names. If a field is not found, use an empty string."
)
_USER_PROMPT: Final[str] = (
    "Extract the academic credential information from this certificate image. Return a "
    "JSON object with these fields: student_name, university_name, degree_type, major, "
    "gpa, graduation_date"
)
_FIELD_DESCRIPTIONS: Final[dict[str, str]] = {
    "student_name": "Full name of the student",
    "university_name": "Name of the university",
    "degree_type": "Type of degree (e.g., Bachelor of Science)",
    "major": "Field of study or major",
    "gpa": "Grade point average",
    "graduation_date": "Year of graduation",
}


class ExtractionError(RuntimeError):
    pass


class ExtractionRateLimitedError(ExtractionError):
    pass


class ExtractionCreditsExhaustedError(ExtractionError):
    pass


class InvalidImageError(ValueError):
    pass


@runtime_checkable
class CredentialExtractor(Protocol):
    async def extract(self, image_data_url: str) -> CredentialRecord:
        ...


def validate_image_data_url(image_data_url: str, *, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    """Check that a payload is a base64 ``data:image/*`` URL within the size limit."""
    if image_data_url.strip() == "":
        raise InvalidImageError("No image data provided.")
    header, separator, encoded = image_data_url.partition(",")
    if separator == "" or not header.startswith("data:image/"):
        raise InvalidImageError("Expected an image data URL (data:image/...).")
    if not header.endswith(";base64"):
        raise InvalidImageError("Image data URL must be base64 encoded.")
    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image data URL contains invalid base64.") from exc
    if len(decoded) == 0:
        raise InvalidImageError("Image payload is empty.")
    if len(decoded) > max_bytes:
        raise InvalidImageError(
            f"Image is {len(decoded)} bytes; the limit is {max_bytes} bytes."
        )
    return decoded


def image_data_url(data: bytes, *, mime_type: str = "image/png") -> str:
    if not mime_type.startswith("image/"):
        raise InvalidImageError(f"Unsupported content type {mime_type!r}.")
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class LiteLLMCredentialExtractor:
    def __init__(
        self,
        completion_fn: LiteLLMCompletionFn | None = None,
        *,
        model: str = "gemini/gemini-2.5-flash",
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        initial_backoff_seconds: float = 0.25,
        max_backoff_seconds: float = 2.0,
        max_image_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        if model.strip() == "":
            raise ValueError("model must not be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if initial_backoff_seconds <= 0:
            raise ValueError("initial_backoff_seconds must be > 0")
        if max_backoff_seconds <= 0:
            raise ValueError("max_backoff_seconds must be > 0")
        if max_image_bytes <= 0:
            raise ValueError("max_image_bytes must be > 0")

        self._model = model
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._initial_backoff_seconds = initial_backoff_seconds
        self._max_backoff_seconds = max_backoff_seconds
        self._max_image_bytes = max_image_bytes

        if completion_fn is not None:
            self._completion_fn = completion_fn
        else:
            from litellm import acompletion

            self._completion_fn = cast(LiteLLMCompletionFn, acompletion)

    async def extract(self, image_data_url: str) -> CredentialRecord:
        validate_image_data_url(image_data_url, max_bytes=self._max_image_bytes)
        logger.info("Requesting credential extraction from %s", self._model)
        response = await self._call_with_retry(image_data_url)
        arguments_json = _extract_tool_arguments(response)
        try:
            arguments = json.loads(arguments_json)
        except json.JSONDecodeError as exc:
            raise ExtractionError("Extraction tool call returned malformed JSON.") from exc
        if not isinstance(arguments, dict):
            raise ExtractionError("Extraction tool call did not return an object.")
        try:
            return CredentialRecord.model_validate(arguments)
        except ValidationError as exc:
            raise ExtractionError(f"Extracted credential failed validation: {exc}") from exc

    async def _call_with_retry(self, image_data_url: str) -> Mapping[str, object]:
        attempt = 0
        while True:
            try:
                response_obj = await asyncio.wait_for(
                    self._completion_fn(
                        model=self._model,
                        messages=_build_messages(image_data_url),
                        tools=[_extraction_tool()],
                        tool_choice={
                            "type": "function",
                            "function": {"name": EXTRACTION_TOOL_NAME},
                        },
                    ),
                    timeout=self._timeout_seconds,
                )
                return _normalize_response(response_obj)
            except asyncio.TimeoutError as exc:
                if attempt >= self._max_retries:
                    raise ExtractionError(
                        f"Extraction timed out after {attempt + 1} attempts."
                    ) from exc
            except Exception as exc:
                status_code = _status_code_from_exception(exc)
                if status_code == 402:
                    logger.error("Credential extraction refused: credits depleted: %s", exc)
                    raise ExtractionCreditsExhaustedError(
                        "AI credits depleted. Please add credits to your workspace."
                    ) from exc
                if not _is_transient(exc, status_code):
                    logger.error("Credential extraction failed: %s", exc)
                    raise ExtractionError(f"Extraction service failure: {exc}") from exc
                if attempt >= self._max_retries:
                    if status_code == 429:
                        raise ExtractionRateLimitedError(
                            "Rate limit exceeded. Please try again later."
                        ) from exc
                    raise ExtractionError(
                        f"Extraction transient failure after {attempt + 1} attempts: {exc}"
                    ) from exc
                logger.warning(
                    "Transient extraction failure (attempt %d/%d): %s",
                    attempt + 1,
                    self._max_retries + 1,
                    exc,
                )
            await asyncio.sleep(self._retry_backoff(attempt))
            attempt += 1

    def _retry_backoff(self, attempt: int) -> float:
        delay = self._initial_backoff_seconds * float(2**attempt)
        return min(delay, self._max_backoff_seconds)


def _build_messages(image_data_url: str) -> list[dict[str, object]]:
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": _USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
        },
    ]


def _extraction_tool() -> dict[str, object]:
    return {
        "type": "function",
        "function": {
            "name": EXTRACTION_TOOL_NAME,
            "description": "Extract structured credential data from academic certificate",
            "parameters": {
                "type": "object",
                "properties": {
                    field_name: {
                        "type": "string",
                        "description": _FIELD_DESCRIPTIONS[field_name],
                    }
                    for field_name in CREDENTIAL_FIELDS
                },
                "required": list(CREDENTIAL_FIELDS),
                "additionalProperties": False,
            },
        },
    }


def _normalize_response(response_obj: object) -> Mapping[str, object]:
    if isinstance(response_obj, Mapping):
        return response_obj
    model_dump = getattr(response_obj, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, Mapping):
            return dumped
    raise ExtractionError(f"Unsupported LiteLLM response object: {type(response_obj)!r}.")


def _extract_tool_arguments(response: Mapping[str, object]) -> str:
    choices_obj = response.get("choices")
    if not isinstance(choices_obj, Sequence) or len(choices_obj) == 0:
        raise ExtractionError("No credential data extracted from image.")
    first = choices_obj[0]
    message_obj = first.get("message") if isinstance(first, Mapping) else None
    if not isinstance(message_obj, Mapping):
        raise ExtractionError("No credential data extracted from image.")
    tool_calls_obj = message_obj.get("tool_calls")
    if not isinstance(tool_calls_obj, Sequence) or len(tool_calls_obj) == 0:
        raise ExtractionError("No credential data extracted from image.")
    tool_call = tool_calls_obj[0]
    function_obj = tool_call.get("function") if isinstance(tool_call, Mapping) else None
    if not isinstance(function_obj, Mapping):
        raise ExtractionError("Extraction tool call is missing its function payload.")
    arguments = function_obj.get("arguments")
    if not isinstance(arguments, str):
        raise ExtractionError("Extraction tool call is missing its arguments.")
    return arguments


def _status_code_from_exception(exc: Exception) -> int | None:
    direct = getattr(exc, "status_code", None)
    if isinstance(direct, int):
        return direct
    response = getattr(exc, "response", None)
    if response is None:
        return None
    response_status = getattr(response, "status_code", None)
    if isinstance(response_status, int):
        return response_status
    return None


def _is_transient(exc: Exception, status_code: int | None) -> bool:
    if status_code is not None:
        return status_code in {408, 409, 429, 500, 502, 503, 504}
    message = str(exc).lower()
    return "rate limit" in message or "temporar" in message


__all__ = [
    "EXTRACTION_TOOL_NAME",
    "MAX_IMAGE_BYTES",
    "CredentialExtractor",
    "ExtractionCreditsExhaustedError",
    "ExtractionError",
    "ExtractionRateLimitedError",
    "InvalidImageError",
    "LiteLLMCompletionFn",
    "LiteLLMCredentialExtractor",
    "image_data_url",
    "validate_image_data_url",
]
