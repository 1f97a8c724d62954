"""Runtime -- request execution, streaming transport and retry.

Public API:
    GenerationEngine  - generate()/stream() against one provider
    TokenStream       - pull-based token iteration over a streamed reply
    RetryPolicy       - exponential backoff decisions
    run_ensemble      - bounded fan-out of one prompt to several engines

Models:
    GenerationRequest, StreamToken, StreamDelta, StreamSignal, TokenKind,
    RawEvent
"""

from strand.runtime.decoders import NDJSONDecoder, SSEDecoder, decoder_for
from strand.runtime.engine import GenerationEngine
from strand.runtime.ensemble import EnsembleResult, run_ensemble
from strand.runtime.models import (
    GenerationRequest,
    RawEvent,
    StreamDelta,
    StreamSignal,
    StreamToken,
    TokenKind,
)
from strand.runtime.retry import RetryPolicy
from strand.runtime.stream import TokenStream, open_stream

__all__ = [
    "EnsembleResult",
    "GenerationEngine",
    "GenerationRequest",
    "NDJSONDecoder",
    "RawEvent",
    "RetryPolicy",
    "SSEDecoder",
    "StreamDelta",
    "StreamSignal",
    "StreamToken",
    "TokenKind",
    "TokenStream",
    "decoder_for",
    "open_stream",
    "run_ensemble",
]
