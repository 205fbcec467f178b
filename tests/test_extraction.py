from __future__ import annotations

import json

import pytest

from verichain.models import demo_credential
from verichain.ports.extraction import (
    EXTRACTION_TOOL_NAME,
    ExtractionCreditsExhaustedError,
    ExtractionError,
    ExtractionRateLimitedError,
    InvalidImageError,
    LiteLLMCredentialExtractor,
    image_data_url,
    validate_image_data_url,
)
from verichain.testing import MockExtractor

_IMAGE = image_data_url(b"\x89PNG\r\n\x1a\nfake", mime_type="image/png")


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


def _tool_call_response(arguments: dict[str, object] | str) -> dict[str, object]:
    arguments_json = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {
                                "name": EXTRACTION_TOOL_NAME,
                                "arguments": arguments_json,
                            },
                        }
                    ],
                }
            }
        ]
    }


@pytest.mark.asyncio
async def test_extract_forces_tool_call_and_parses_record() -> None:
    captured: dict[str, object] = {}

    async def completion(**kwargs: object) -> object:
        captured.update(kwargs)
        return _tool_call_response(demo_credential().model_dump())

    extractor = LiteLLMCredentialExtractor(completion, model="test/model")
    record = await extractor.extract(_IMAGE)

    assert record == demo_credential()
    assert captured["model"] == "test/model"
    assert captured["tool_choice"] == {
        "type": "function",
        "function": {"name": EXTRACTION_TOOL_NAME},
    }
    tools = captured["tools"]
    assert isinstance(tools, list)
    parameters = tools[0]["function"]["parameters"]
    assert parameters["required"] == [
        "student_name",
        "university_name",
        "degree_type",
        "major",
        "gpa",
        "graduation_date",
    ]
    messages = captured["messages"]
    assert isinstance(messages, list)
    assert messages[1]["content"][1]["image_url"]["url"] == _IMAGE


@pytest.mark.asyncio
async def test_extract_allows_empty_fields() -> None:
    payload = {**demo_credential().model_dump(), "gpa": ""}

    async def completion(**kwargs: object) -> object:
        return _tool_call_response(payload)

    record = await LiteLLMCredentialExtractor(completion).extract(_IMAGE)

    assert record.gpa == ""
    assert record.missing_fields() == ("gpa",)


@pytest.mark.asyncio
async def test_missing_tool_call_is_an_extraction_error() -> None:
    async def completion(**kwargs: object) -> object:
        return {"choices": [{"message": {"role": "assistant", "content": "no idea"}}]}

    with pytest.raises(ExtractionError, match="No credential data"):
        await LiteLLMCredentialExtractor(completion).extract(_IMAGE)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "arguments",
    [
        "{not json",
        '["a"]',
        json.dumps({**demo_credential().model_dump(), "extra": "field"}),
        json.dumps({**demo_credential().model_dump(), "gpa": 3.9}),
    ],
)
async def test_untrusted_tool_output_is_validated(arguments: str) -> None:
    async def completion(**kwargs: object) -> object:
        return _tool_call_response(arguments)

    with pytest.raises(ExtractionError):
        await LiteLLMCredentialExtractor(completion).extract(_IMAGE)


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    calls = 0

    async def completion(**kwargs: object) -> object:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise _StatusError(503)
        return _tool_call_response(demo_credential().model_dump())

    extractor = LiteLLMCredentialExtractor(completion, initial_backoff_seconds=0.001)
    record = await extractor.extract(_IMAGE)

    assert record == demo_credential()
    assert calls == 2


@pytest.mark.asyncio
async def test_persistent_rate_limit_is_reported() -> None:
    calls = 0

    async def completion(**kwargs: object) -> object:
        nonlocal calls
        calls += 1
        raise _StatusError(429)

    extractor = LiteLLMCredentialExtractor(
        completion,
        max_retries=1,
        initial_backoff_seconds=0.001,
    )
    with pytest.raises(ExtractionRateLimitedError, match="Rate limit"):
        await extractor.extract(_IMAGE)
    assert calls == 2


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried() -> None:
    calls = 0

    async def completion(**kwargs: object) -> object:
        nonlocal calls
        calls += 1
        raise _StatusError(400)

    with pytest.raises(ExtractionError, match="status 400"):
        await LiteLLMCredentialExtractor(completion).extract(_IMAGE)
    assert calls == 1


@pytest.mark.asyncio
async def test_depleted_credits_are_reported_without_retry() -> None:
    calls = 0

    async def completion(**kwargs: object) -> object:
        nonlocal calls
        calls += 1
        raise _StatusError(402)

    with pytest.raises(ExtractionCreditsExhaustedError, match="AI credits depleted"):
        await LiteLLMCredentialExtractor(completion).extract(_IMAGE)
    assert calls == 1


@pytest.mark.asyncio
async def test_invalid_image_is_rejected_before_calling_model() -> None:
    async def completion(**kwargs: object) -> object:
        raise AssertionError("model must not be called")

    extractor = LiteLLMCredentialExtractor(completion)
    with pytest.raises(InvalidImageError):
        await extractor.extract("data:text/plain;base64,aGVsbG8=")


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "not a data url",
        "data:image/png,rawbytes",
        "data:image/png;base64,!!!",
        "data:image/png;base64,",
    ],
)
def test_validate_image_data_url_rejects_bad_payloads(payload: str) -> None:
    with pytest.raises(InvalidImageError):
        validate_image_data_url(payload)


def test_validate_image_data_url_enforces_size_limit() -> None:
    payload = image_data_url(b"x" * 11, mime_type="image/jpeg")

    assert validate_image_data_url(payload, max_bytes=11) == b"x" * 11
    with pytest.raises(InvalidImageError, match="limit"):
        validate_image_data_url(payload, max_bytes=10)


def test_image_data_url_requires_image_mime_type() -> None:
    with pytest.raises(InvalidImageError):
        image_data_url(b"data", mime_type="application/pdf")


@pytest.mark.asyncio
async def test_mock_extractor_returns_configured_record() -> None:
    extractor = MockExtractor(output=demo_credential().model_dump())

    assert await extractor.extract(_IMAGE) == demo_credential()
    assert extractor.calls == 1


def test_constructor_validates_settings() -> None:
    async def completion(**kwargs: object) -> object:
        return {}

    with pytest.raises(ValueError, match="timeout_seconds"):
        LiteLLMCredentialExtractor(completion, timeout_seconds=0)
    with pytest.raises(ValueError, match="max_retries"):
        LiteLLMCredentialExtractor(completion, max_retries=-1)
