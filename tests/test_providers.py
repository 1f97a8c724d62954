"""Tests for the Anthropic and Ollama providers and create_provider."""

import json

import pytest

from strand.errors import AuthenticationError, ResponseError
from strand.providers import (
    AnthropicProvider,
    OllamaProvider,
    Provider,
    create_provider,
    supports_structured_messages,
)
from strand.runtime.models import StreamSignal, TokenKind

from tests.conftest import FakeProvider, make_settings


def event(data):
    return (json.dumps(data) + "\n").encode()


# ---------------------------------------------------------------------------
# TestAnthropicHeaders
# ---------------------------------------------------------------------------


class TestAnthropicHeaders:
    def test_api_key(self):
        headers = AnthropicProvider("m", api_key="sk-ant-api-123").headers()
        assert headers["x-api-key"] == "sk-ant-api-123"
        assert headers["anthropic-version"] == "2023-06-01"
        assert "authorization" not in headers

    def test_auth_token_takes_precedence(self):
        headers = AnthropicProvider("m", api_key="k", auth_token="tok").headers()
        assert headers["authorization"] == "Bearer tok"
        assert "x-api-key" not in headers
        assert "anthropic-beta" not in headers

    def test_oat_token(self):
        headers = AnthropicProvider("m", api_key="sk-ant-oat01-abc").headers()
        assert headers["authorization"] == "Bearer sk-ant-oat01-abc"
        assert headers["anthropic-beta"] == "oauth-2025-04-20"

    def test_no_credentials(self):
        with pytest.raises(AuthenticationError):
            AnthropicProvider("m").headers()

    def test_extra_headers(self):
        provider = AnthropicProvider("m", api_key="k", extra_headers={"x-trace": "1"})
        assert provider.headers()["x-trace"] == "1"

    def test_endpoint_strips_slash(self):
        provider = AnthropicProvider("m", api_key="k", base_url="https://proxy.test/")
        assert provider.endpoint() == "https://proxy.test/v1/messages"


# ---------------------------------------------------------------------------
# TestAnthropicRequests
# ---------------------------------------------------------------------------


class TestAnthropicRequests:
    def test_plain_payload(self):
        provider = AnthropicProvider("claude-test", api_key="k")
        payload = json.loads(provider.prepare_request("hi", {"max_tokens": 50, "temperature": 0.2}))
        assert payload == {
            "model": "claude-test",
            "max_tokens": 50,
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.2,
        }

    def test_default_max_tokens(self):
        payload = json.loads(AnthropicProvider("m", api_key="k").prepare_request("hi", {}))
        assert payload["max_tokens"] == 1024

    def test_system_prompt_is_cached_block(self):
        provider = AnthropicProvider("m", api_key="k")
        payload = json.loads(provider.prepare_request("hi", {"system_prompt": "be terse"}))
        assert payload["system"] == [
            {"type": "text", "text": "be terse", "cache_control": {"type": "ephemeral"}}
        ]
        assert "system_prompt" not in payload

    def test_stream_flag(self):
        payload = json.loads(AnthropicProvider("m", api_key="k").prepare_stream_request("hi", {}))
        assert payload["stream"] is True

    def test_options_not_mutated(self):
        options = {"max_tokens": 10, "system_prompt": "s"}
        AnthropicProvider("m", api_key="k").prepare_request("hi", options)
        assert options == {"max_tokens": 10, "system_prompt": "s"}

    def test_structured_folds_system_turns(self):
        provider = AnthropicProvider("m", api_key="k")
        messages = [
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello", "tool_calls": [{"id": "t"}]},
        ]
        payload = json.loads(provider.prepare_request_with_messages(messages, {}))
        assert payload["system"][0]["text"] == "rules"
        assert payload["messages"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]


# ---------------------------------------------------------------------------
# TestAnthropicResponses
# ---------------------------------------------------------------------------


class TestAnthropicResponses:
    def setup_method(self):
        self.provider = AnthropicProvider("m", api_key="k")

    def test_text_blocks_joined(self):
        body = json.dumps({
            "content": [
                {"type": "text", "text": "first"},
                {"type": "tool_use", "id": "t", "name": "x", "input": {}},
                {"type": "text", "text": "second"},
            ]
        }).encode()
        assert self.provider.parse_response(body) == "first\nsecond"

    def test_error_body(self):
        body = json.dumps({
            "type": "error",
            "error": {"type": "overloaded_error", "message": "busy"},
        }).encode()
        with pytest.raises(ResponseError, match="overloaded_error: busy"):
            self.provider.parse_response(body)

    @pytest.mark.parametrize("body", [b"not json", b"[]", b'{"id": "msg"}'])
    def test_malformed(self, body):
        with pytest.raises(ResponseError):
            self.provider.parse_response(body)


# ---------------------------------------------------------------------------
# TestAnthropicStreamEvents
# ---------------------------------------------------------------------------


class TestAnthropicStreamEvents:
    def setup_method(self):
        self.provider = AnthropicProvider("m", api_key="k")

    def test_text_delta(self):
        delta = self.provider.parse_stream_response(event({
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hello"},
        }))
        assert delta.kind is TokenKind.TEXT
        assert delta.text == "Hello"

    def test_tool_use_start(self):
        delta = self.provider.parse_stream_response(event({
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "web_search"},
        }))
        assert delta.kind is TokenKind.FUNCTION_CALL
        assert delta.metadata == {"tool_name": "web_search", "tool_id": "toolu_1", "block_index": 1}

    def test_input_json_delta(self):
        delta = self.provider.parse_stream_response(event({
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '{"q": '},
        }))
        assert delta.kind is TokenKind.FUNCTION_CALL
        assert delta.text == '{"q": '

    def test_message_start_usage(self):
        delta = self.provider.parse_stream_response(event({
            "type": "message_start",
            "message": {"usage": {"input_tokens": 25, "output_tokens": 1}},
        }))
        assert delta.kind is TokenKind.USAGE
        assert (delta.input_tokens, delta.output_tokens) == (25, 1)

    def test_message_delta_stop_reason(self):
        delta = self.provider.parse_stream_response(event({
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn"},
            "usage": {"output_tokens": 15},
        }))
        assert delta.output_tokens == 15
        assert delta.input_tokens is None
        assert delta.metadata["stop_reason"] == "end_turn"

    def test_error_event(self):
        delta = self.provider.parse_stream_response(event({
            "type": "error",
            "error": {"type": "overloaded_error", "message": "Overloaded"},
        }))
        assert delta.kind is TokenKind.ERROR
        assert delta.text == "overloaded_error: Overloaded"

    @pytest.mark.parametrize(
        "data",
        [
            {"type": "ping"},
            {"type": "content_block_stop", "index": 0},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text"}},
            {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "..."}},
            {"type": "some_future_event"},
        ],
    )
    def test_skipped_events(self, data):
        assert self.provider.parse_stream_response(event(data)) is StreamSignal.SKIP

    def test_end_markers(self):
        assert self.provider.parse_stream_response(event({"type": "message_stop"})) is StreamSignal.END
        assert self.provider.parse_stream_response(b"[DONE]\n") is StreamSignal.END

    def test_empty_payload(self):
        assert self.provider.parse_stream_response(b"") is StreamSignal.SKIP

    def test_malformed_event(self):
        with pytest.raises(ResponseError):
            self.provider.parse_stream_response(b"{nope\n")


# ---------------------------------------------------------------------------
# TestOllama
# ---------------------------------------------------------------------------


class TestOllama:
    def setup_method(self):
        self.provider = OllamaProvider("llama3", "http://localhost:11434/")

    def test_endpoint(self):
        assert self.provider.endpoint() == "http://localhost:11434/api/generate"

    def test_option_mapping(self):
        payload = json.loads(self.provider.prepare_request("hi", {
            "max_tokens": 64,
            "temperature": 0.3,
            "system_prompt": "sys",
            "format": "json",
        }))
        assert payload == {
            "model": "llama3",
            "prompt": "hi",
            "stream": False,
            "system": "sys",
            "format": "json",
            "options": {"num_predict": 64, "temperature": 0.3},
        }

    def test_stream_request(self):
        payload = json.loads(self.provider.prepare_stream_request("hi", {}))
        assert payload["stream"] is True
        assert "options" not in payload

    def test_parse_single_record(self):
        body = b'{"response": "hello", "done": true}'
        assert self.provider.parse_response(body) == "hello"

    def test_parse_multiple_records(self):
        body = b'{"response": "hel", "done": false}\n{"response": "lo", "done": true}\n'
        assert self.provider.parse_response(body) == "hello"

    def test_parse_error_record(self):
        with pytest.raises(ResponseError, match="model not found"):
            self.provider.parse_response(b'{"error": "model not found"}')

    @pytest.mark.parametrize("body", [b"", b"garbage"])
    def test_parse_bad_body(self, body):
        with pytest.raises(ResponseError):
            self.provider.parse_response(body)

    def test_stream_text(self):
        delta = self.provider.parse_stream_response(b'{"response": "Hi", "done": false}')
        assert (delta.kind, delta.text) == (TokenKind.TEXT, "Hi")

    def test_stream_empty_text_skipped(self):
        assert self.provider.parse_stream_response(b'{"response": ""}') is StreamSignal.SKIP

    def test_stream_final_usage(self):
        delta = self.provider.parse_stream_response(
            b'{"done": true, "done_reason": "stop", "prompt_eval_count": 9, "eval_count": 4}'
        )
        assert delta.kind is TokenKind.USAGE
        assert (delta.input_tokens, delta.output_tokens) == (9, 4)
        assert delta.metadata["stop_reason"] == "stop"

    def test_stream_done_without_usage(self):
        assert self.provider.parse_stream_response(b'{"done": true}') is StreamSignal.END

    def test_stream_error(self):
        delta = self.provider.parse_stream_response(b'{"error": "boom"}')
        assert delta.kind is TokenKind.ERROR


# ---------------------------------------------------------------------------
# TestCreateProvider
# ---------------------------------------------------------------------------


class TestCreateProvider:
    def test_anthropic(self):
        provider = create_provider(make_settings(model="claude-x", api_base_url="https://a.test"))
        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-x"
        assert provider.endpoint() == "https://a.test/v1/messages"

    def test_ollama(self):
        provider = create_provider(make_settings(provider="ollama", ollama_base_url="http://o.test"))
        assert isinstance(provider, OllamaProvider)
        assert provider.endpoint() == "http://o.test/api/generate"

    def test_protocol_conformance(self):
        assert isinstance(AnthropicProvider("m"), Provider)
        assert isinstance(OllamaProvider("m"), Provider)
        assert isinstance(FakeProvider(), Provider)

    def test_structured_capability(self):
        assert supports_structured_messages(AnthropicProvider("m")) is True
        assert supports_structured_messages(OllamaProvider("m")) is False
