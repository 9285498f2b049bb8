"""Tests for provider adapters (format transforms only, no HTTP)."""

import sys
from pathlib import Path

# Ensure package path for local src
ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "nutri_consensus" / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from nutri_consensus.prompts import ANALYSIS_PROMPT, build_chat_body
from nutri_consensus.providers import (
    AnthropicAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    extract_message_text,
    get_adapter,
    register_adapter,
    PROVIDER_ADAPTERS,
)


def test_registry_defaults_to_openai_compatible():
    assert isinstance(get_adapter("openrouter"), OpenAIAdapter)
    assert isinstance(get_adapter("anthropic"), AnthropicAdapter)
    assert isinstance(get_adapter("some-gateway"), OpenAIAdapter)


def test_register_adapter():
    class Custom(OpenAIAdapter):
        def get_chat_endpoint(self) -> str:
            return "/v2/chat"

    register_adapter("custom", Custom())
    try:
        assert get_adapter("custom").get_chat_endpoint() == "/v2/chat"
    finally:
        PROVIDER_ADAPTERS.pop("custom", None)


def test_openai_headers_replace_caller_auth():
    headers = OpenAIAdapter().get_headers("k", {"authorization": "old", "X-Title": "App"})
    assert headers["Authorization"] == "Bearer k"
    assert headers["X-Title"] == "App"
    assert "authorization" not in headers


def test_anthropic_request_transform():
    body = build_chat_body("claude", "QUJD", 0.3, 1000)

    out = AnthropicAdapter().transform_request(body)

    assert "system" not in out
    assert [m["role"] for m in out["messages"]] == ["user"]
    assert out["max_tokens"] == 1000
    assert out["temperature"] == 0.3
    content = out["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": ANALYSIS_PROMPT}
    assert content[1]["source"]["data"] == "QUJD"


def test_anthropic_response_transform():
    resp = {
        "id": "m",
        "model": "claude",
        "content": [{"type": "text", "text": "{\"items\""}, {"type": "text", "text": ": []}"}],
        "stop_reason": "end_turn",
    }
    out = AnthropicAdapter().transform_response(resp)
    assert extract_message_text(out) == '{"items": []}'
    assert out["choices"][0]["finish_reason"] == "stop"


def test_extract_message_text_handles_content_parts_and_missing():
    parts = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
    assert extract_message_text(parts) == "ab"
    assert extract_message_text({"choices": []}) is None
    assert extract_message_text({"choices": [{"message": {"content": None}}]}) is None


def test_base_adapter_passthrough():
    adapter: ProviderAdapter = OpenAIAdapter()
    body = {"model": "x"}
    assert adapter.transform_request(body) is body
    assert adapter.get_chat_endpoint() == "/chat/completions"


def test_extract_message_text_rejects_malformed_choices():
    assert extract_message_text({"choices": ["oops"]}) is None
    assert extract_message_text({"choices": [{"message": "oops"}]}) is None
    assert extract_message_text({"choices": [{"message": {"content": [{"text": 3}, "x"]}}]}) == ""


def test_anthropic_response_transform_skips_malformed_blocks():
    out = AnthropicAdapter().transform_response({"content": ["oops", {"type": "text", "text": "ok"}]})
    assert extract_message_text(out) == "ok"
    out = AnthropicAdapter().transform_response({"content": "oops"})
    assert extract_message_text(out) is None
