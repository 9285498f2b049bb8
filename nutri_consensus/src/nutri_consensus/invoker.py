"""Single provider call: one request, one validated payload or one failure."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from .config import EngineConfig
from .errors import (
    ProviderEmptyResultError,
    ProviderError,
    ProviderInputError,
    ProviderParseError,
    ProviderTransportError,
)
from .models import ProviderOutcome, ProviderPayload, ProviderTarget
from .prompts import build_chat_body
from .providers import describe_response, extract_message_text, get_adapter

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences and any prose around the JSON object."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    if cleaned.startswith("{") and cleaned.endswith("}"):
        return cleaned
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start:end + 1]
    return cleaned


def parse_payload(target: ProviderTarget, text: str) -> ProviderPayload:
    """Turn the provider's message text into a validated payload.

    Raises:
        ProviderParseError: text is not JSON or does not match the item schema
        ProviderEmptyResultError: the item list is empty
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ProviderParseError(target.provider, target.model, "empty message content")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ProviderParseError(target.provider, target.model, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderParseError(target.provider, target.model, "response is not a JSON object")
    if not isinstance(data.get("items"), list):
        raise ProviderParseError(target.provider, target.model, "missing 'items' array")
    try:
        payload = ProviderPayload.model_validate(data)
    except ValidationError as e:
        raise ProviderParseError(
            target.provider, target.model, f"schema violation: {e.error_count()} error(s)"
        ) from e
    if not payload.items:
        raise ProviderEmptyResultError(target.provider, target.model, "no items identified")
    return payload


class ProviderInvoker:
    """Executes exactly one inference call against one provider.

    The HTTP client is owned by the caller and shared across concurrent calls.
    """

    def __init__(self, client: Any, config: EngineConfig) -> None:
        self.client = client
        self.config = config

    def _url(self, target: ProviderTarget, endpoint: str) -> str:
        base = self.config.endpoint_for(target.provider)
        if not base:
            raise ProviderInputError(target.provider, target.model, "no endpoint configured")
        return f"{base}{endpoint}"

    async def request_items(self, target: ProviderTarget, credential: str, image_base64: str) -> ProviderPayload:
        if not credential:
            raise ProviderInputError(target.provider, target.model, "missing credential")
        if not image_base64:
            raise ProviderInputError(target.provider, target.model, "empty input")

        adapter = get_adapter(target.provider)
        url = self._url(target, adapter.get_chat_endpoint())
        base_headers = {"HTTP-Referer": self.config.app_referer, "X-Title": self.config.app_title}
        headers = adapter.get_headers(credential, base_headers)
        body = adapter.transform_request(
            build_chat_body(target.model, image_base64, self.config.temperature, self.config.max_tokens)
        )

        try:
            resp = await self.client.post(url, json=body, headers=headers, timeout=self.config.timeout_secs)
        except httpx.TimeoutException as e:
            raise ProviderTransportError(target.provider, target.model, f"timed out: {e}") from e
        except httpx.RequestError as e:
            raise ProviderTransportError(target.provider, target.model, f"transport error: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise ProviderTransportError(
                target.provider, target.model, f"HTTP error status {resp.status_code}", status_code=resp.status_code
            )

        try:
            raw = resp.json()
        except ValueError as e:
            raise ProviderParseError(target.provider, target.model, "response body is not JSON") from e

        text = extract_message_text(adapter.transform_response(raw) if isinstance(raw, dict) else {})
        if text is None:
            logger.debug("No message content from %s: %s", target.label, describe_response(raw))
            raise ProviderParseError(target.provider, target.model, "no message content in response")
        return parse_payload(target, text)

    async def invoke(
        self,
        target: ProviderTarget,
        credential: str,
        image_base64: str,
        request_id: Optional[str] = None,
    ) -> ProviderOutcome:
        """Run request_items and convert provider errors into a failed outcome."""
        start = time.monotonic()
        try:
            payload = await self.request_items(target, credential, image_base64)
        except ProviderError as e:
            latency_ms = round((time.monotonic() - start) * 1000, 2)
            logger.warning("[req=%s] Provider %s failed (%s): %s", request_id, target.label, type(e).__name__, e.cause)
            return ProviderOutcome(
                provider=target.provider,
                model=target.model,
                error=e.cause,
                error_type=type(e).__name__,
                latency_ms=latency_ms,
            )
        latency_ms = round((time.monotonic() - start) * 1000, 2)
        logger.info(
            "[req=%s] Provider %s returned %d item(s) in %.0fms",
            request_id, target.label, len(payload.items), latency_ms,
        )
        return ProviderOutcome(
            provider=target.provider,
            model=target.model,
            success=True,
            payload=payload,
            latency_ms=latency_ms,
        )
