"""Shared fixtures: fast-retry settings, a fake provider and word encoder.

No test talks to a real endpoint.  Wire-level tests route the engine's
httpx client through httpx.MockTransport.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from strand.config import Settings
from strand.errors import ResponseError
from strand.memory import ConversationMemory
from strand.runtime.engine import GenerationEngine
from strand.runtime.models import StreamDelta, StreamSignal, TokenKind

FAKE_ENDPOINT = "https://llm.test/v1/generate"


# ---------------------------------------------------------------------------
# Token encoder
# ---------------------------------------------------------------------------


class WordEncoder:
    """One token per whitespace-separated word; deterministic and offline."""

    def encode(self, text: str) -> list[int]:
        return list(range(len(text.split())))


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """JSON-in, JSON-out provider that records every prepared request.

    Response body:  {"text": "..."}
    Stream payload: {"text": "..."} | {"keepalive": true} | {"done": true}
                    | {"usage": {"input": n, "output": m}}
    """

    name = "fake"

    def __init__(self, stream_format: str = "sse", streaming: bool = True) -> None:
        self.stream_format = stream_format
        self._streaming = streaming
        self.prepared: list[tuple[str, dict[str, Any]]] = []

    def endpoint(self) -> str:
        return FAKE_ENDPOINT

    def headers(self) -> dict[str, str]:
        return {"content-type": "application/json"}

    def prepare_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        self.prepared.append((prompt, dict(options)))
        return json.dumps({"prompt": prompt, "options": options}).encode()

    def prepare_stream_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        self.prepared.append((prompt, dict(options)))
        return json.dumps({"prompt": prompt, "options": options, "stream": True}).encode()

    def parse_response(self, body: bytes) -> str:
        try:
            return json.loads(body)["text"]
        except (KeyError, json.JSONDecodeError) as e:
            raise ResponseError("no text in response") from e

    def parse_stream_response(self, payload: bytes) -> StreamDelta | StreamSignal:
        data = json.loads(payload)
        if data.get("keepalive"):
            return StreamSignal.SKIP
        if data.get("done"):
            return StreamSignal.END
        if "usage" in data:
            return StreamDelta(
                kind=TokenKind.USAGE,
                input_tokens=data["usage"].get("input"),
                output_tokens=data["usage"].get("output"),
            )
        return StreamDelta(text=data["text"])

    def supports_streaming(self) -> bool:
        return self._streaming


class StructuredFakeProvider(FakeProvider):
    """FakeProvider that also accepts chat-style message lists."""

    def __init__(self) -> None:
        super().__init__()
        self.structured: list[list[dict[str, Any]]] = []

    def prepare_request_with_messages(
        self,
        messages: list[dict[str, Any]],
        options: dict[str, Any],
    ) -> bytes:
        self.structured.append(messages)
        return json.dumps({"messages": messages, "options": options}).encode()


# ---------------------------------------------------------------------------
# Line sources
# ---------------------------------------------------------------------------


async def feed(text: str):
    """Yield lines the way httpx.Response.aiter_lines() does."""
    for line in text.splitlines():
        yield line


class FlakyLines:
    """Async line source that raises a transport error at chosen positions.

    Unlike a generator it keeps going after raising, like a feed that
    recovers from a dropped read. Streams over a real
    `Response.aiter_lines()` end instead (`DroppingByteStream` in test_stream.py).
    """

    def __init__(self, lines: list[str], fail_at: set[int], times: int = 1) -> None:
        self._lines = list(lines)
        self._pos = 0
        self._remaining = {pos: times for pos in fail_at}
        self.failures = 0

    def __aiter__(self) -> FlakyLines:
        return self

    async def __anext__(self) -> str:
        if self._remaining.get(self._pos, 0) > 0:
            self._remaining[self._pos] -= 1
            self.failures += 1
            raise httpx.ReadError("connection reset by peer")
        if self._pos >= len(self._lines):
            raise StopAsyncIteration
        line = self._lines[self._pos]
        self._pos += 1
        return line


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    defaults: dict[str, Any] = {
        "ANTHROPIC_API_KEY": "test-key-123",
        "max_retries": 2,
        "stream_max_retries": 2,
        "retry_initial_delay": 0.0,
        "retry_max_delay": 0.0,
        "temperature": 0.5,
        "max_tokens": 256,
    }
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def settings() -> Settings:
    """Settings with zero retry delays so retry tests run instantly."""
    return make_settings()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def word_encoder() -> WordEncoder:
    return WordEncoder()


@pytest.fixture
def memory(word_encoder) -> ConversationMemory:
    return ConversationMemory(max_tokens=20, encoder=word_encoder)


def engine_with_handler(
    provider: Any,
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
    memory: ConversationMemory | None = None,
) -> GenerationEngine:
    """Engine whose http client is routed through httpx.MockTransport.

    Skips start() so no real client is created.
    """
    engine = GenerationEngine(provider, settings, memory=memory)
    engine._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return engine
