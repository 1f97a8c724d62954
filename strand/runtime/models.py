"""Shared data models for the runtime layer.

Kept apart from engine.py and stream.py so providers can import them
without pulling in the transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class GenerationRequest:
    """Prompt plus provider options, immutable once submitted."""

    prompt: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))


class TokenKind(str, Enum):
    TEXT = "text"
    FUNCTION_CALL = "function_call"
    USAGE = "usage"
    ERROR = "error"


class StreamSignal(Enum):
    """Non-token results of Provider.parse_stream_response()."""

    SKIP = "skip"  # keep-alive or decorative event, advance to the next one
    END = "end"  # provider-level end of stream (e.g. message_stop, [DONE])


@dataclass(frozen=True)
class RawEvent:
    """One undecoded unit pulled from a streaming feed."""

    kind: str
    payload: bytes


@dataclass
class StreamDelta:
    """A provider's interpretation of one RawEvent.

    Usage counts are cumulative; None means "not reported by this event".
    """

    text: str = ""
    kind: TokenKind = TokenKind.TEXT
    input_tokens: int | None = None
    output_tokens: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamToken:
    """A single token surfaced to the caller by a TokenStream."""

    text: str
    kind: TokenKind
    index: int  # position in the stream, starting at 0
    input_tokens: int = 0  # running usage counters
    output_tokens: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)
