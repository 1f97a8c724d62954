"""Decoders that turn a streamed line feed into RawEvents.

Two wire shapes are supported:

- ``sse``: Server-Sent Events.  Blocks end at a blank line, ``event:``
  sets the kind and every ``data:`` value is appended to the payload
  followed by a newline.
- ``ndjson``: one JSON document per line, blank lines skipped.

Both expose the same pull interface: ``await advance()`` moves to the
next event and returns False when there is none, ``current`` is the last
decoded event and ``last_error`` holds the failure that stopped the last
advance (None on clean exhaustion).  ``advance()`` clears ``last_error``
on entry, so after a transient source failure the same advance can be
attempted again without losing a partially read block.  Only a source
that yields more lines counts as recovered: if it ends instead, the
advance fails with "stream ended after interruption" and the pending
block is discarded.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

from strand.errors import LLMError, RequestError, UnsupportedError
from strand.runtime.models import RawEvent

SSE_DEFAULT_KIND = "message"
NDJSON_KIND = "text"


class LineDecoder:
    """Shared pull machinery over an async line source."""

    def __init__(self, lines: AsyncIterable[str]) -> None:
        self._lines: AsyncIterator[str] = aiter(lines)
        self._current: RawEvent | None = None
        self._error: LLMError | None = None
        self._exhausted = False
        self._interrupted = False  # source raised and has not produced a line since
        self._truncated: LLMError | None = None

    @property
    def current(self) -> RawEvent:
        if self._current is None:
            raise RuntimeError("advance() has not produced an event yet")
        return self._current

    @property
    def last_error(self) -> LLMError | None:
        return self._error

    @property
    def exhausted(self) -> bool:
        """True once the source has ended; further advances cannot recover."""
        return self._exhausted

    async def advance(self) -> bool:
        self._error = None
        if self._exhausted:
            self._error = self._truncated
            return False
        try:
            return await self._decode()
        except LLMError as e:
            self._interrupted = True
            self._error = e
        except Exception as e:
            self._interrupted = True
            self._error = RequestError("stream read failed", cause=e)
        return False

    async def _next_line(self) -> str | None:
        try:
            line = await anext(self._lines)
        except StopAsyncIteration:
            self._exhausted = True
            if self._interrupted:
                # A failed source (e.g. httpx.Response.aiter_lines) ends for good;
                # the partial block is dropped rather than flushed
                self._truncated = RequestError("stream ended after interruption")
                raise self._truncated from None
            return None
        self._interrupted = False
        return line

    async def _decode(self) -> bool:
        raise NotImplementedError


class SSEDecoder(LineDecoder):
    """Event-delimited (Server-Sent Events) decoder."""

    def __init__(self, lines: AsyncIterable[str]) -> None:
        super().__init__(lines)
        self._kind: str | None = None
        self._data = bytearray()
        self._has_data = False

    def _pending(self) -> bool:
        return self._kind is not None or self._has_data

    def _dispatch(self) -> bool:
        self._current = RawEvent(
            kind=self._kind or SSE_DEFAULT_KIND,
            payload=bytes(self._data),
        )
        self._kind = None
        self._data = bytearray()
        self._has_data = False
        return True

    async def _decode(self) -> bool:
        while True:
            line = await self._next_line()
            if line is None:
                # Flush a block the server did not terminate with a blank line
                return self._dispatch() if self._pending() else False

            if not line:
                if self._pending():
                    return self._dispatch()
                continue  # empty block

            if line.startswith(":"):
                continue  # comment

            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]

            if name == "event":
                self._kind = value
            elif name == "data":
                self._data += value.encode("utf-8")
                self._data += b"\n"
                self._has_data = True
            # id, retry and unknown fields are ignored


class NDJSONDecoder(LineDecoder):
    """Newline-delimited JSON decoder.  Each non-blank line is one event."""

    async def _decode(self) -> bool:
        # Blank-line runs may be arbitrarily long; skip them in this loop
        while True:
            line = await self._next_line()
            if line is None:
                return False
            if not line.strip():
                continue
            self._current = RawEvent(kind=NDJSON_KIND, payload=line.encode("utf-8"))
            return True


def decoder_for(stream_format: str, lines: AsyncIterable[str]) -> LineDecoder:
    """Pick the decoder for a provider's declared stream format."""
    if stream_format == "sse":
        return SSEDecoder(lines)
    if stream_format == "ndjson":
        return NDJSONDecoder(lines)
    raise UnsupportedError(f"unknown stream format: {stream_format!r}")
