from __future__ import annotations

from http import HTTPStatus
from typing import Any

import httpx

from formextract.core.config import ERROR_BODY_MAX_CHARS
from formextract.core.exceptions import ExternalServiceError


SERVICE_NAME = "EXTRACTOR"

# 4xx statuses that may succeed on a later attempt
_RETRYABLE_CLIENT_STATUSES = {HTTPStatus.REQUEST_TIMEOUT, HTTPStatus.TOO_MANY_REQUESTS}


def _raise_extractor_error(
    error_type: str,
    details: dict[str, Any],
    exc: Exception,
    retryable: bool = True,
) -> None:
    raise ExternalServiceError(
        service_name=SERVICE_NAME,
        error_type=error_type,
        details=details,
        retryable=retryable,
    ) from exc


def _error_body(response: httpx.Response) -> str:
    try:
        return response.text[:ERROR_BODY_MAX_CHARS]
    except Exception:
        return ""


class VisionCompletionsClient:
    """
    Async client for an OpenAI-style `chat/completions` endpoint.

    Use as an async context manager, or call `aclose()` when done.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        *,
        api_key: str | None = None,
        verify_ssl: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Extractor base_url is not configured")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout_seconds,
            verify=verify_ssl,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> "VisionCompletionsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        """
        POST one chat completion and return the decoded JSON body.

        Raises:
            ExternalServiceError: On HTTP, network or decoding failure.
        """
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            resp = await self._client.post("chat/completions", json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            _raise_extractor_error(
                "rate_limit" if status == HTTPStatus.TOO_MANY_REQUESTS else "error",
                {"http_code": status, "body": _error_body(e.response)},
                e,
                retryable=status >= 500 or status in _RETRYABLE_CLIENT_STATUSES,
            )
        except httpx.TimeoutException as e:
            _raise_extractor_error("timeout", {"reason": str(e) or type(e).__name__}, e)
        except httpx.TransportError as e:
            _raise_extractor_error("unavailable", {"reason": str(e) or type(e).__name__}, e)

        try:
            data = resp.json()
        except ValueError as e:
            _raise_extractor_error(
                "invalid_response",
                {"reason": "Completion response is not JSON", "body": _error_body(resp)},
                e,
            )
        if not isinstance(data, dict):
            raise ExternalServiceError(
                service_name=SERVICE_NAME,
                error_type="invalid_response",
                details={"reason": f"Expected JSON object, got {type(data).__name__}"},
            )
        return data


def extract_choice(data: dict[str, Any]) -> tuple[str | None, str | None]:
    """Return (message content, finish_reason) of the first choice."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None, None
    choice = choices[0]
    message = choice.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return (content if isinstance(content, str) else None), choice.get("finish_reason")


def extract_usage(data: dict[str, Any]) -> tuple[int, int, int | None] | None:
    """Return (prompt, completion, reasoning) token counts, or None if absent."""
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    details = usage.get("completion_tokens_details") or {}
    reasoning = details.get("reasoning_tokens") if isinstance(details, dict) else None
    return (
        int(usage.get("prompt_tokens") or 0),
        int(usage.get("completion_tokens") or 0),
        int(reasoning) if reasoning is not None else None,
    )
