"""Tests for the single-provider invoker and its parse boundary."""

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

# Ensure package path for local src
ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "nutri_consensus" / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from nutri_consensus.config import EngineConfig
from nutri_consensus.errors import (
    ProviderEmptyResultError,
    ProviderInputError,
    ProviderParseError,
    ProviderTransportError,
)
from nutri_consensus.invoker import ProviderInvoker, parse_payload, strip_code_fences
from nutri_consensus.models import ProviderTarget

from fakes import FakeHTTPClient, food, items_json

TARGET = ProviderTarget(provider="openrouter", model="m1")


def run(coro):
    return asyncio.run(coro)


def make_config(**overrides):
    defaults = dict(
        provider_targets=(TARGET,),
        provider_endpoints=(
            ("openrouter", "https://openrouter.test/api/v1"),
            ("anthropic", "https://anthropic.test/v1"),
        ),
        timeout_secs=5.0,
    )
    defaults.update(overrides)
    return EngineConfig(**defaults)


class TestStripCodeFences:
    def test_json_fence_removed(self):
        text = '```json\n{"items": []}\n```'
        assert strip_code_fences(text) == '{"items": []}'

    def test_prose_around_object_removed(self):
        text = 'Here is the analysis:\n{"items": [1]}\nHope this helps!'
        assert strip_code_fences(text) == '{"items": [1]}'

    def test_plain_json_untouched(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParsePayload:
    def test_valid_payload_with_total_nutrition_key(self):
        text = items_json(food("Rice", 150, 200), totals={"calories": 200, "carbs": 10, "fats": 5, "proteins": 5})
        payload = parse_payload(TARGET, text)
        assert payload.items[0].name == "Rice"
        assert payload.totals.calories == 200

    def test_fenced_payload_is_parsed(self):
        text = "```json\n" + items_json(food("Egg")) + "\n```"
        payload = parse_payload(TARGET, text)
        assert [i.name for i in payload.items] == ["Egg"]

    def test_missing_items_is_parse_error(self):
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, json.dumps({"totalNutrition": {"calories": 1}}))

    def test_invalid_json_is_parse_error(self):
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, '{"items": [,]}')

    def test_non_object_is_parse_error(self):
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, "[1, 2, 3]")

    def test_negative_measure_is_parse_error(self):
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, items_json(food("Rice", calories=-5)))

    def test_infinite_measure_is_parse_error(self):
        text = '{"items": [{"name": "Rice", "quantity": 100, "calories": Infinity, "carbs": 1, "fats": 1, "proteins": 1}]}'
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, text)

    def test_nan_total_is_parse_error(self):
        text = '{"items": [' + json.dumps(food("Rice")) + '], "totalNutrition": {"calories": NaN}}'
        with pytest.raises(ProviderParseError):
            parse_payload(TARGET, text)

    def test_empty_items_is_empty_result(self):
        with pytest.raises(ProviderEmptyResultError):
            parse_payload(TARGET, items_json())


class TestRequestItems:
    def test_success_sends_vision_request(self):
        client = FakeHTTPClient({"m1": {"content": items_json(food("Rice"))}})
        invoker = ProviderInvoker(client, make_config())

        payload = run(invoker.request_items(TARGET, "key-1", "aW1hZ2U="))

        assert payload.items[0].name == "Rice"
        call = client.calls[0]
        assert call["url"] == "https://openrouter.test/api/v1/chat/completions"
        assert call["headers"]["Authorization"] == "Bearer key-1"
        assert "HTTP-Referer" in call["headers"]
        parts = call["body"]["messages"][0]["content"]
        assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,aW1hZ2U="
        assert call["body"]["temperature"] == 0.3

    def test_non_2xx_is_transport_error(self):
        client = FakeHTTPClient({"m1": {"status": 429, "response": {"error": "rate limited"}}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderTransportError) as exc:
            run(invoker.request_items(TARGET, "key", "img"))
        assert exc.value.status_code == 429
        assert exc.value.provider == "openrouter"

    def test_network_error_is_transport_error(self):
        client = FakeHTTPClient({"m1": {"error": httpx.ConnectError("connection refused")}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderTransportError):
            run(invoker.request_items(TARGET, "key", "img"))

    def test_missing_choices_is_parse_error(self):
        client = FakeHTTPClient({"m1": {"response": {"id": "x"}}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderParseError):
            run(invoker.request_items(TARGET, "key", "img"))

    def test_non_dict_choice_is_parse_error(self):
        client = FakeHTTPClient({"m1": {"response": {"choices": ["oops"]}}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderParseError):
            run(invoker.request_items(TARGET, "key", "img"))

    def test_non_dict_anthropic_blocks_are_parse_error(self):
        target = ProviderTarget(provider="anthropic", model="claude")
        client = FakeHTTPClient({"claude": {"response": {"content": ["oops", 7]}}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderParseError):
            run(invoker.request_items(target, "sk-ant", "img"))

    def test_missing_credential_makes_no_call(self):
        client = FakeHTTPClient({"m1": {"content": items_json(food("Rice"))}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderInputError):
            run(invoker.request_items(TARGET, "", "img"))
        assert client.calls == []

    def test_empty_input_makes_no_call(self):
        client = FakeHTTPClient({"m1": {"content": items_json(food("Rice"))}})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderInputError):
            run(invoker.request_items(TARGET, "key", ""))
        assert client.calls == []

    def test_anthropic_target_uses_messages_api(self):
        target = ProviderTarget(provider="anthropic", model="claude")
        anthropic_body = {
            "id": "msg_1",
            "model": "claude",
            "content": [{"type": "text", "text": items_json(food("Salmon"))}],
            "stop_reason": "end_turn",
        }
        client = FakeHTTPClient({"claude": {"response": anthropic_body}})
        invoker = ProviderInvoker(client, make_config())

        payload = run(invoker.request_items(target, "sk-ant", "aW1n"))

        assert payload.items[0].name == "Salmon"
        call = client.calls[0]
        assert call["url"] == "https://anthropic.test/v1/messages"
        assert call["headers"]["x-api-key"] == "sk-ant"
        image_block = call["body"]["messages"][0]["content"][1]
        assert image_block["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "aW1n"}

    def test_unconfigured_provider_is_input_error(self):
        client = FakeHTTPClient({})
        invoker = ProviderInvoker(client, make_config())
        with pytest.raises(ProviderInputError):
            run(invoker.request_items(ProviderTarget("mystery", "m"), "key", "img"))


class TestInvoke:
    def test_failure_becomes_outcome(self):
        client = FakeHTTPClient({"m1": {"content": "I cannot see any food."}})
        invoker = ProviderInvoker(client, make_config())

        outcome = run(invoker.invoke(TARGET, "key", "img", request_id="r1"))

        assert outcome.success is False
        assert outcome.error_type == "ProviderParseError"
        assert outcome.payload is None

    def test_malformed_choice_becomes_parse_failure_outcome(self):
        client = FakeHTTPClient({"m1": {"response": {"choices": ["oops"]}}})
        invoker = ProviderInvoker(client, make_config())

        outcome = run(invoker.invoke(TARGET, "key", "img"))

        assert outcome.success is False
        assert outcome.error_type == "ProviderParseError"

    def test_success_outcome_carries_payload(self):
        client = FakeHTTPClient({"m1": {"content": items_json(food("Rice"))}})
        invoker = ProviderInvoker(client, make_config())

        outcome = run(invoker.invoke(TARGET, "key", "img"))

        assert outcome.success is True
        assert outcome.label == "openrouter/m1"
        assert outcome.payload.items[0].name == "Rice"
