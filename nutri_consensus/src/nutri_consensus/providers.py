"""Provider-specific adapters for inference backends.

Each adapter knows how to:
- Build authentication headers
- Transform the OpenAI-format vision request into the provider's format
- Transform the provider's response back into OpenAI format
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Base class for provider adapters."""

    @abstractmethod
    def get_headers(self, api_key: str, base_headers: Dict[str, str]) -> Dict[str, str]:
        """Return headers with provider-specific auth.

        Args:
            api_key: The credential for this provider
            base_headers: Existing headers to augment

        Returns:
            Headers dict with auth and content-type set
        """
        pass

    def transform_request(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Transform request body for this provider. Default: passthrough."""
        return body

    def transform_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        """Transform response to OpenAI format. Default: passthrough."""
        return response

    def get_chat_endpoint(self) -> str:
        """Return chat completions endpoint path."""
        return "/chat/completions"


def extract_message_text(response: Dict[str, Any]) -> Optional[str]:
    """Pull the assistant text out of an OpenAI-format response.

    Returns None when the response has no usable message content.
    """
    choices = response.get("choices") if isinstance(response, dict) else None
    if not choices or not isinstance(choices, list):
        return None
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, list):
        # Some OpenAI-compatible gateways return content parts
        content = "".join(p["text"] for p in content if isinstance(p, dict) and isinstance(p.get("text"), str))
    if not isinstance(content, str):
        return None
    return content


class OpenAIAdapter(ProviderAdapter):
    """OpenAI and OpenAI-compatible providers (OpenRouter)."""

    def get_headers(self, api_key: str, base_headers: Dict[str, str]) -> Dict[str, str]:
        # Filter out headers that we'll set explicitly (case-insensitive)
        skip_headers = {'content-type', 'accept', 'authorization'}
        headers = {k: v for k, v in base_headers.items() if k.lower() not in skip_headers}
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        headers["Authorization"] = f"Bearer {api_key}"
        return headers


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API adapter.

    Converts the OpenAI vision format to Anthropic content blocks and the
    Anthropic response back to a single OpenAI-style choice.
    """

    def get_headers(self, api_key: str, base_headers: Dict[str, str]) -> Dict[str, str]:
        skip_headers = {'content-type', 'accept', 'authorization', 'x-api-key'}
        headers = {k: v for k, v in base_headers.items() if k.lower() not in skip_headers}
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        headers["x-api-key"] = api_key
        headers["anthropic-version"] = "2023-06-01"
        return headers

    def _transform_content(self, content: Any) -> Any:
        if not isinstance(content, list):
            return content
        blocks = []
        for part in content:
            if part.get("type") == "text":
                blocks.append({"type": "text", "text": part["text"]})
            elif part.get("type") == "image_url":
                url = part["image_url"]["url"]
                if url.startswith("data:"):
                    try:
                        media_type, b64_data = url.split(";base64,")
                    except ValueError:
                        logger.warning("Skipping malformed data URL in image_url")
                        continue
                    blocks.append({
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": media_type.replace("data:", ""),
                            "data": b64_data,
                        },
                    })
                else:
                    blocks.append({"type": "image", "source": {"type": "url", "url": url}})
        return blocks

    def transform_request(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Transform OpenAI format to Anthropic format.

        The analysis prompt travels inside the user message, so there is no
        system prompt to lift out.
        """
        chat_messages = [
            {"role": msg["role"], "content": self._transform_content(msg.get("content"))}
            for msg in body.get("messages", [])
        ]
        result = {
            "model": body.get("model"),
            "messages": chat_messages,
            "max_tokens": body.get("max_tokens", 1000),
        }
        if "temperature" in body:
            result["temperature"] = body["temperature"]
        return result

    def transform_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        """Transform Anthropic response to OpenAI format."""
        blocks = response.get("content")
        if not isinstance(blocks, list):
            blocks = []
        text_content = "".join(
            block["text"]
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        )
        return {
            "id": response.get("id", ""),
            "object": "chat.completion",
            "model": response.get("model", ""),
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": text_content or None},
                "finish_reason": "length" if response.get("stop_reason") == "max_tokens" else "stop",
            }],
        }

    def get_chat_endpoint(self) -> str:
        return "/messages"


# Provider registry
PROVIDER_ADAPTERS: Dict[str, ProviderAdapter] = {
    "openai": OpenAIAdapter(),
    "openrouter": OpenAIAdapter(),
    "anthropic": AnthropicAdapter(),
}


def get_adapter(provider_name: str) -> ProviderAdapter:
    """Get adapter for provider, defaulting to OpenAI-compatible."""
    return PROVIDER_ADAPTERS.get(provider_name, OpenAIAdapter())


def register_adapter(name: str, adapter: ProviderAdapter) -> None:
    """Register a custom adapter for a provider."""
    PROVIDER_ADAPTERS[name] = adapter


def describe_response(response: Any, limit: int = 200) -> str:
    """Short, log-safe preview of a raw response."""
    try:
        text = json.dumps(response) if not isinstance(response, str) else response
    except (TypeError, ValueError):
        text = repr(response)
    return text if len(text) <= limit else text[:limit] + "..."
