"""Pull-based token streams over a streaming HTTP response.

open_stream() sends the request and hands back a TokenStream.  Each
call to TokenStream.next() advances the underlying RawEvent decoder by
one unit and asks the provider to interpret it.  Keep-alive and other
decorative events are skipped without returning to the caller.  Feed
interruptions are retried in place according to the stream's own
RetryPolicy; anything else is surfaced.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from strand.errors import (
    GenerationCancelled,
    GenerationError,
    LLMError,
    RequestError,
    ResponseError,
    UnsupportedError,
    error_for_status,
)
from strand.providers.base import Provider
from strand.runtime.decoders import LineDecoder, decoder_for
from strand.runtime.models import StreamSignal, StreamToken, TokenKind
from strand.runtime.retry import RetryPolicy, cancellable, wait

_module_logger = logging.getLogger(__name__)


class TokenStream:
    """Ordered sequence of StreamTokens, consumed once by the caller.

    Owned by exactly one call; not safe to share between tasks.
    """

    def __init__(
        self,
        response: httpx.Response,
        decoder: LineDecoder,
        provider: Provider,
        retry: RetryPolicy,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._response = response
        self._decoder = decoder
        self._provider = provider
        self._retry = retry
        self._logger = logger or _module_logger
        self._index = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._stop_reason: str | None = None
        self._text_parts: list[str] = []
        self._done = False
        self._closed = False

    @property
    def text(self) -> str:
        """Concatenated TEXT tokens emitted so far."""
        return "".join(self._text_parts)

    @property
    def input_tokens(self) -> int:
        return self._input_tokens

    @property
    def output_tokens(self) -> int:
        return self._output_tokens

    @property
    def stop_reason(self) -> str | None:
        """Why the provider stopped (e.g. "end_turn"), once it has said so."""
        return self._stop_reason

    @property
    def closed(self) -> bool:
        return self._closed

    async def next(self, cancel: asyncio.Event | None = None) -> StreamToken | None:
        """Return the next token, or None at end of stream.

        ``cancel`` is an optional asyncio.Event; if it fires while reading
        or during a retry wait, GenerationCancelled is raised.
        """
        if self._done:
            return None
        try:
            while True:
                if not await self._advance(cancel):
                    await self._finish()
                    return None

                payload = self._decoder.current.payload
                try:
                    result = self._provider.parse_stream_response(payload)
                except LLMError:
                    raise
                except Exception as e:
                    raise ResponseError("failed to parse stream event") from e

                if result is StreamSignal.SKIP:
                    continue
                if result is StreamSignal.END:
                    await self._finish()
                    return None

                if result.input_tokens is not None:
                    self._input_tokens = result.input_tokens
                if result.output_tokens is not None:
                    self._output_tokens = result.output_tokens
                if result.metadata.get("stop_reason"):
                    self._stop_reason = result.metadata["stop_reason"]
                if result.kind is TokenKind.USAGE and not result.text:
                    continue

                token = StreamToken(
                    text=result.text,
                    kind=result.kind,
                    index=self._index,
                    input_tokens=self._input_tokens,
                    output_tokens=self._output_tokens,
                    metadata=dict(result.metadata),
                )
                self._index += 1
                if token.kind is TokenKind.TEXT:
                    self._text_parts.append(token.text)
                return token
        except LLMError:
            await self._finish()
            raise

    async def _advance(self, cancel: asyncio.Event | None) -> bool:
        """Advance the decoder, retrying transient feed errors in place."""
        while True:
            if cancel is not None and cancel.is_set():
                raise GenerationCancelled("stream cancelled")
            if await cancellable(self._decoder.advance(), cancel):
                return True

            error = self._decoder.last_error
            if error is None:
                return False
            if self._decoder.exhausted or not self._retry.should_retry(error):
                raise GenerationError(error, self._retry.attempts + 1)

            delay = self._retry.next_delay()
            self._logger.info(
                "Stream interrupted (%s), retrying in %.1fs (retry %d/%d)",
                error,
                delay,
                self._retry.attempts,
                self._retry.max_attempts,
            )
            await wait(delay, cancel)

    async def _finish(self) -> None:
        self._done = True
        await self.close()

    async def close(self) -> None:
        """Release the underlying connection.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()

    async def collect(self, cancel: asyncio.Event | None = None) -> str:
        """Drain the stream and return the concatenated text."""
        while await self.next(cancel) is not None:
            pass
        return self.text

    def __aiter__(self) -> TokenStream:
        return self

    async def __anext__(self) -> StreamToken:
        token = await self.next()
        if token is None:
            raise StopAsyncIteration
        return token

    async def __aenter__(self) -> TokenStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def open_stream(
    client: httpx.AsyncClient,
    provider: Provider,
    prompt: str,
    options: dict[str, Any],
    *,
    retry: RetryPolicy,
    cancel: asyncio.Event | None = None,
    logger: logging.Logger | None = None,
) -> TokenStream:
    """Send a streaming request and wrap the response in a TokenStream.

    Raises UnsupportedError if the provider cannot stream and the mapped
    status error (APIError or AuthenticationError) on a non-success
    status; no stream is constructed in either case.
    """
    log = logger or _module_logger
    if not provider.supports_streaming():
        raise UnsupportedError(f"provider {provider.name} does not support streaming")

    try:
        body = provider.prepare_stream_request(prompt, options)
    except LLMError:
        raise
    except Exception as e:
        raise RequestError("failed to prepare stream request") from e

    request = client.build_request(
        "POST", provider.endpoint(), content=body, headers=provider.headers()
    )
    log.debug("Opening stream (provider=%s, endpoint=%s)", provider.name, provider.endpoint())
    try:
        response = await cancellable(client.send(request, stream=True), cancel)
    except httpx.HTTPError as e:
        raise RequestError("failed to send stream request") from e

    if not response.is_success:
        error_body = await response.aread()
        await response.aclose()
        raise error_for_status(
            response.status_code, error_body.decode("utf-8", errors="replace")
        )

    try:
        decoder = decoder_for(provider.stream_format, response.aiter_lines())
    except UnsupportedError:
        await response.aclose()
        raise
    return TokenStream(response, decoder, provider, retry, logger=log)
