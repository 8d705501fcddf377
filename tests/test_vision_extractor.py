from __future__ import annotations

import json

import httpx
import pytest

from formextract.clients.completions_client import VisionCompletionsClient
from formextract.clients.vision_extractor import VisionFieldExtractor
from formextract.core.exceptions import ExternalServiceError, ExtractionFailure
from formextract.core.settings import Settings
from formextract.models.dto import PageImage
from formextract.resilience import RetryConfig


BASE_URL = "https://llm.example.com/v1"
FAST = RetryConfig(max_attempts=3, initial_delay_seconds=0.001, jitter=False)
IMAGES = [
    PageImage(page_number=4, url="https://example.com/p4.png"),
    PageImage(page_number=5, data=b"\x89PNG", mime_type="image/png"),
]


def _completion(content: str, finish_reason: str = "stop", usage: dict | None = None) -> dict:
    body = {"choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}]}
    if usage is not None:
        body["usage"] = usage
    return body


def _extractor(handler, retry_config: RetryConfig = FAST) -> VisionFieldExtractor:
    client = VisionCompletionsClient(
        BASE_URL,
        timeout_seconds=5,
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
    )
    return VisionFieldExtractor(client, retry_config=retry_config)


@pytest.mark.asyncio
async def test_extract_success_parses_fields_and_usage() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["payload"] = json.loads(request.content)
        content = "```json\n" + json.dumps(
            [
                {"label": "Full name", "type": "text", "required": True, "confidence": 0.97, "pageNumber": 1},
                {"label": "Plan", "type": "radio", "options": ["A", "B"], "pageNumber": 2},
            ]
        ) + "\n```"
        usage = {
            "prompt_tokens": 1200,
            "completion_tokens": 300,
            "completion_tokens_details": {"reasoning_tokens": 50},
        }
        return httpx.Response(200, json=_completion(content, usage=usage))

    extractor = _extractor(handler)
    response = await extractor.extract(IMAGES)
    await extractor.aclose()

    assert seen["path"] == "/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    parts = seen["payload"]["messages"][1]["content"]
    assert parts[1]["image_url"]["url"] == "https://example.com/p4.png"
    assert parts[2]["image_url"]["url"].startswith("data:image/png;base64,")

    assert response.success is True
    assert [(f.label, f.page_number) for f in response.fields] == [("Full name", 1), ("Plan", 2)]
    assert response.fields[0].required is True
    assert response.fields[1].options == ["A", "B"]
    assert response.tokens.input == 1200
    assert response.tokens.output == 300
    assert response.tokens.reasoning == 50


@pytest.mark.asyncio
async def test_object_with_fields_and_invalid_items_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        content = json.dumps({"fields": [{"label": "A", "type": "text"}, {"label": "B", "required": "maybe"}]})
        return httpx.Response(200, json=_completion(content))

    response = await _extractor(handler).extract(IMAGES[:1])
    assert [f.label for f in response.fields] == ["A"]
    assert response.tokens is None


@pytest.mark.asyncio
async def test_finish_reason_length_is_token_limit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion('[{"label": "A"}]', finish_reason="length"))

    with pytest.raises(ExtractionFailure) as exc_info:
        await _extractor(handler).extract(IMAGES)
    assert exc_info.value.error_code == "EXTRACTOR_TOKEN_LIMIT"


@pytest.mark.asyncio
async def test_truncated_content_is_token_limit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion('[{"label": "A"}, {"label": "B", "ty'))

    with pytest.raises(ExtractionFailure) as exc_info:
        await _extractor(handler).extract(IMAGES)
    assert exc_info.value.error_type == "token_limit"


@pytest.mark.asyncio
async def test_lone_bracket_in_label_is_not_truncation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        content = json.dumps([{"label": "Amount [in USD", "type": "text", "pageNumber": 1}])
        return httpx.Response(200, json=_completion(content))

    response = await _extractor(handler).extract(IMAGES)
    assert [f.label for f in response.fields] == ["Amount [in USD"]


@pytest.mark.asyncio
async def test_unparsable_content_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion("Sorry, I cannot help with that."))

    with pytest.raises(ExtractionFailure) as exc_info:
        await _extractor(handler).extract(IMAGES)
    assert exc_info.value.error_type == "parse_error"


@pytest.mark.asyncio
async def test_empty_content() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(ExtractionFailure) as exc_info:
        await _extractor(handler).extract(IMAGES)
    assert exc_info.value.error_type == "empty_response"


@pytest.mark.asyncio
async def test_rate_limit_retried_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, json={"error": "slow down"})
        return httpx.Response(200, json=_completion("[]"))

    response = await _extractor(handler).extract(IMAGES)
    assert calls["n"] == 2
    assert response.fields == []


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ExtractionFailure) as exc_info:
        await _extractor(handler).extract(IMAGES)
    assert calls["n"] == 3
    assert exc_info.value.error_type == "exhausted"
    assert exc_info.value.details["upstream_code"] == "EXTRACTOR_ERROR"


@pytest.mark.asyncio
async def test_bad_request_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, text="bad image")

    with pytest.raises(ExtractionFailure):
        await _extractor(handler).extract(IMAGES)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_connect_error_maps_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = VisionCompletionsClient(BASE_URL, 5, transport=httpx.MockTransport(handler))
    with pytest.raises(ExternalServiceError) as exc_info:
        await client.complete([], model="m", temperature=0, max_tokens=10)
    assert exc_info.value.error_type == "unavailable"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_no_images_skips_upstream() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("upstream should not be called")

    response = await _extractor(handler).extract([])
    assert response.success is True
    assert response.fields == []


def test_from_settings() -> None:
    settings = Settings(
        EXTRACTOR_BASE_URL=BASE_URL,
        EXTRACTOR_API_KEY="sk-abc",
        EXTRACTOR_MODEL="gpt-4o-mini",
        EXTRACTOR_MAX_ATTEMPTS=5,
    )
    extractor = VisionFieldExtractor.from_settings(settings)
    assert extractor._model == "gpt-4o-mini"
    assert extractor._retry_config.max_attempts == 5
