"""Provider boundary consumed by the runtime.

A provider owns everything vendor-specific: endpoint, headers, request
encoding and response decoding.  The engine and token stream never look
inside a request or response body themselves.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from strand.runtime.models import StreamDelta, StreamSignal


@runtime_checkable
class Provider(Protocol):
    name: str
    stream_format: Literal["sse", "ndjson"]

    def endpoint(self) -> str: ...

    def headers(self) -> dict[str, str]: ...

    def prepare_request(self, prompt: str, options: dict[str, Any]) -> bytes: ...

    def prepare_stream_request(self, prompt: str, options: dict[str, Any]) -> bytes: ...

    def parse_response(self, body: bytes) -> str: ...

    def parse_stream_response(self, payload: bytes) -> StreamDelta | StreamSignal: ...

    def supports_streaming(self) -> bool: ...


def supports_structured_messages(provider: Any) -> bool:
    """True if the provider accepts chat-style messages instead of flat text.

    Such providers define ``prepare_request_with_messages(messages, options)``.
    """
    return callable(getattr(provider, "prepare_request_with_messages", None))
