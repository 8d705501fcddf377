"""
Field extractor backed by a vision-capable chat-completions model.

Implements FieldExtractorPort: one call per batch of page images, with
transient upstream errors retried and unusable responses reported as
ExtractionFailure.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from formextract.clients.completions_client import (
    VisionCompletionsClient,
    extract_choice,
    extract_usage,
)
from formextract.clients.prompts import build_extract_messages
from formextract.core.config import DEFAULT_EXTRACTOR_MODEL, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from formextract.core.exceptions import ExternalServiceError, ExtractionFailure
from formextract.core.settings import Settings, get_settings
from formextract.models.dto import ExtractionResponse, FieldDescriptor, PageImage, TokenUsage
from formextract.resilience import RetryConfig, async_retry_with_backoff
from formextract.utils.parsers import ResponseParseError, parse_fields_payload
from formextract.utils.timing import elapsed_ms

logger = logging.getLogger(__name__)


def build_fields(items: list[dict[str, Any]]) -> list[FieldDescriptor]:
    """Validate raw field objects, skipping the ones that do not fit."""
    fields: list[FieldDescriptor] = []
    for position, item in enumerate(items):
        try:
            fields.append(FieldDescriptor.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid field at position %d: %d error(s)",
                position,
                exc.error_count(),
            )
    return fields


class VisionFieldExtractor:
    def __init__(
        self,
        client: VisionCompletionsClient,
        *,
        model: str = DEFAULT_EXTRACTOR_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._retry_config = retry_config or RetryConfig()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "VisionFieldExtractor":
        s = settings or get_settings()
        api_key = s.EXTRACTOR_API_KEY.get_secret_value() if s.EXTRACTOR_API_KEY else None
        client = VisionCompletionsClient(
            s.EXTRACTOR_BASE_URL,
            s.EXTRACTOR_TIMEOUT_SECONDS,
            api_key=api_key,
            verify_ssl=s.EXTRACTOR_VERIFY_SSL,
            transport=transport,
        )
        return cls(
            client,
            model=s.EXTRACTOR_MODEL,
            temperature=s.EXTRACTOR_TEMPERATURE,
            max_tokens=s.EXTRACTOR_MAX_TOKENS,
            retry_config=RetryConfig(max_attempts=s.EXTRACTOR_MAX_ATTEMPTS),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def extract(self, images: list[PageImage]) -> ExtractionResponse:
        """
        Extract fields from the given page images in a single upstream call.

        Returns fields numbered relative to `images`.

        Raises:
            ExtractionFailure: When retries are exhausted, the completion hit the
                token limit, or the content cannot be parsed.
        """
        if not images:
            return ExtractionResponse(fields=[], success=True, time_ms=0)

        start = time.perf_counter()
        messages = build_extract_messages(images)
        try:
            data = await async_retry_with_backoff(
                self._client.complete,
                self._retry_config,
                (ExternalServiceError, httpx.HTTPError),
                messages,
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except ExternalServiceError as exc:
            raise ExtractionFailure(
                "exhausted",
                f"Extractor request failed: {exc.message}",
                details={"upstream_code": exc.error_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionFailure("exhausted", f"Extractor request failed: {exc}") from exc

        content, finish_reason = extract_choice(data)
        if finish_reason == "length":
            raise ExtractionFailure(
                "token_limit",
                "Completion was cut off by the token limit; use smaller batches",
            )
        if not content:
            raise ExtractionFailure("empty_response", "No content in extractor response")

        try:
            items = parse_fields_payload(content)
        except ResponseParseError as exc:
            if exc.truncated:
                raise ExtractionFailure(
                    "token_limit", f"Extractor response appears truncated: {exc}"
                ) from exc
            raise ExtractionFailure("parse_error", str(exc)) from exc

        fields = build_fields(items)
        usage = extract_usage(data)
        tokens = None
        if usage is not None:
            prompt_tokens, completion_tokens, reasoning_tokens = usage
            tokens = TokenUsage(input=prompt_tokens, output=completion_tokens, reasoning=reasoning_tokens)

        time_ms = elapsed_ms(start)
        logger.info(
            "Extracted %d fields from %d page(s)",
            len(fields),
            len(images),
            extra={"duration_ms": time_ms, "service": "EXTRACTOR"},
        )
        return ExtractionResponse(fields=fields, success=True, time_ms=time_ms, tokens=tokens)
