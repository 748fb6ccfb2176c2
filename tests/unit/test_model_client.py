"""Unit tests for model clients and the canned mock responses."""

from __future__ import annotations

import sys
from types import SimpleNamespace

import pytest

from shipmachine.adapters.mock_responses import MOCK_BUILDERS, build_mock_content
from shipmachine.adapters.model_client import (
    AnthropicModelClient,
    MockModelClient,
    ModelClient,
    build_model_client,
    parse_json_content,
)


class TestMockModelClient:

    def test_deterministic(self, registry):
        client = MockModelClient()
        hint = registry.get("ship.plan").schema_hint()
        first = client.call("plan this", "mock", hint)
        second = client.call("plan this", "mock", hint)
        assert first.content == second.content
        assert first.is_mock

    def test_tokens_track_prompt_length(self):
        client = MockModelClient(base_tokens=100)
        assert client.call("x" * 400).tokens_used == 200
        assert client.calls == ["x" * 400]

    def test_every_bundled_operation_satisfies_its_schema(self, registry):
        client = MockModelClient()
        for spec in registry.list_operations():
            content = client.call("prompt", None, spec.schema_hint()).content
            for field in spec.output_schema.required:
                assert field in content, (spec.operation_id, field)

    def test_satisfies_protocol(self):
        assert isinstance(MockModelClient(), ModelClient)
        assert isinstance(AnthropicModelClient(api_key=None), ModelClient)


class TestMockResponses:

    def test_interpret_detects_failure_after_marker(self):
        prompt = "Context mentions error handling\nTest output:\n1 failed, 2 passed"
        content = MOCK_BUILDERS["ship.run_tests_interpret"](prompt)
        assert content["passed"] is False
        assert content["next_action"] == "fix"

    def test_interpret_ignores_words_before_marker(self):
        prompt = "Step: fix error handling\nTest output:\n3 passed in 0.1s"
        content = MOCK_BUILDERS["ship.run_tests_interpret"](prompt)
        assert content["passed"] is True
        assert content["next_action"] == "continue"

    def test_unknown_operation_placeholders(self):
        content = build_mock_content("p", {
            "operation_id": "other.op",
            "required": ["items", "flag", "name"],
            "properties": {"items": {"type": "array"}, "flag": {"type": "boolean"}},
        })
        assert content == {"mock": True, "items": [], "flag": False, "name": ""}

    def test_no_schema(self):
        assert build_mock_content("p", None) == {"mock": True}


class TestParseJsonContent:

    def test_plain(self):
        assert parse_json_content('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}

    def test_unparseable(self):
        assert parse_json_content("not json") == {"raw": "not json"}


class TestAnthropicModelClient:

    def test_without_key_uses_mock(self, monkeypatch, registry):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        client = AnthropicModelClient()
        assert not client.has_credentials
        response = client.call("p", None, registry.get("ship.plan").schema_hint())
        assert response.is_mock
        assert "steps" in response.content

    def test_missing_sdk_raises_install_hint(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "anthropic", None)
        client = AnthropicModelClient(api_key="k")
        with pytest.raises(RuntimeError, match="pip install anthropic"):
            client.call("p")

    def test_live_reply_is_parsed(self):
        class Messages:
            def create(self, **kwargs):
                return SimpleNamespace(
                    content=[SimpleNamespace(text='```json\n{"ok": true}\n```')],
                    usage=SimpleNamespace(input_tokens=10, output_tokens=5),
                )

        client = AnthropicModelClient(api_key="k")
        client._client = SimpleNamespace(messages=Messages())
        response = client.call("p")
        assert response.content == {"ok": True}
        assert response.tokens_used == 15
        assert not response.is_mock


class TestBuildModelClient:

    def test_force_mock(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "k")
        assert isinstance(build_model_client("claude-sonnet-4-6", force_mock=True), MockModelClient)

    def test_no_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert isinstance(build_model_client("claude-sonnet-4-6"), MockModelClient)

    def test_with_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "k")
        client = build_model_client("claude-haiku-4-5", max_tokens=512, timeout_seconds=5)
        assert isinstance(client, AnthropicModelClient)
        assert client.model == "claude-haiku-4-5"
        assert client.max_tokens == 512


@pytest.mark.parametrize("op_id", sorted(MOCK_BUILDERS))
def test_builders_return_dicts(op_id):
    assert isinstance(MOCK_BUILDERS[op_id]("prompt"), dict)
