"""Generation engine -- turns a prompt into a reply via a Provider.

Wraps one logical generate() call: merges options, builds the outgoing
context from ConversationMemory (when attached), delegates wire encoding
and decoding to the Provider, retries failed attempts with exponential
backoff, and records the exchange back into memory on success.

Streaming calls go through stream(), which returns a TokenStream.
Recording a streamed reply is the caller's job (see record_exchange()),
since a partial stream has no well-defined reply to store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Mapping

import httpx

from strand.config import Settings
from strand.errors import (
    GenerationCancelled,
    GenerationError,
    LLMError,
    RequestError,
    ResponseError,
    error_for_status,
)
from strand.memory.conversation import ConversationMemory
from strand.providers.base import Provider, supports_structured_messages
from strand.runtime.models import GenerationRequest
from strand.runtime.retry import RetryPolicy, cancellable, wait
from strand.runtime.stream import TokenStream, open_stream

_module_logger = logging.getLogger(__name__)


class GenerationEngine:
    """Runs generate/stream calls against a single provider.

    The engine's own state (default options, http client) is not
    mutated by calls, so concurrent generate() calls are fine; attached
    memory serializes itself.
    """

    def __init__(
        self,
        provider: Provider,
        settings: Settings,
        *,
        memory: ConversationMemory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._memory = memory
        self._logger = logger or _module_logger
        self._http: httpx.AsyncClient | None = None
        self._options: dict[str, Any] = {
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }
        # Resolved once; providers don't grow capabilities mid-session
        self._structured = supports_structured_messages(provider)

    @property
    def provider(self) -> Provider:
        return self._provider

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def memory(self) -> ConversationMemory | None:
        return self._memory

    @property
    def options(self) -> dict[str, Any]:
        return dict(self._options)

    def set_option(self, key: str, value: Any) -> None:
        """Set an engine-level default option (overridden per call)."""
        self._options[key] = value
        self._logger.debug("Option set (key=%s)", key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the httpx client with timeout and connection limits."""
        if self._http is not None:
            return
        timeout = httpx.Timeout(
            connect=self._settings.connect_timeout,
            read=self._settings.request_timeout,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
        self._http = httpx.AsyncClient(timeout=timeout, limits=limits)
        self._logger.info("httpx client initialized (provider: %s)", self._provider.name)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> GenerationEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _client(self) -> httpx.AsyncClient:
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")
        return self._http

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str | GenerationRequest,
        options: Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Generate a complete reply.

        Steps:
        1. Merge engine defaults < request options < call options
        2. If memory is attached, record the user turn and use the whole
           memory as context
        3. Attempt the request, retrying per RetryPolicy with cancellable
           waits between attempts
        4. On success, record the assistant turn

        Raises GenerationError once retries are exhausted (or on a
        non-retryable failure) and GenerationCancelled if ``cancel``
        fires.  Memory never receives an assistant turn for a failed call.
        """
        request = self._to_request(prompt, options)
        merged = self._merge_options(request)

        if self._memory is not None:
            self._memory.add("user", request.prompt)

        body_builder = self._body_builder(request.prompt, merged)
        text = await self._generate_with_retry(body_builder, cancel)

        if self._memory is not None:
            self._memory.add("assistant", text)
        return text

    async def stream(
        self,
        prompt: str | GenerationRequest,
        options: Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> TokenStream:
        """Open a token stream for ``prompt``.

        Memory (if attached) supplies the context but is not updated;
        call record_exchange() once the stream has been consumed.
        """
        request = self._to_request(prompt, options)
        merged = self._merge_options(request)
        context = request.prompt
        if self._memory is not None:
            history = self._memory.render_as_text()
            context = f"{history}\nuser: {request.prompt}" if history else f"user: {request.prompt}"

        return await open_stream(
            self._client(),
            self._provider,
            context,
            merged,
            retry=RetryPolicy.for_stream(self._settings),
            cancel=cancel,
            logger=self._logger,
        )

    def record_exchange(self, prompt: str, reply: str) -> None:
        """Store a completed streamed exchange in memory (no-op without memory)."""
        if self._memory is None:
            return
        self._memory.add("user", prompt)
        self._memory.add("assistant", reply)

    def clear_memory(self) -> None:
        if self._memory is not None:
            self._memory.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_request(
        prompt: str | GenerationRequest,
        options: Mapping[str, Any] | None,
    ) -> GenerationRequest:
        if isinstance(prompt, GenerationRequest):
            if not options:
                return prompt
            return GenerationRequest(prompt.prompt, {**prompt.options, **options})
        return GenerationRequest(prompt, dict(options or {}))

    def _merge_options(self, request: GenerationRequest) -> dict[str, Any]:
        return {**self._options, **request.options}

    def _body_builder(self, prompt: str, options: dict[str, Any]) -> Callable[[], bytes]:
        """Return a zero-arg callable that encodes the request body.

        The body is rebuilt per attempt so each attempt sees the same
        inputs; the memory snapshot is taken once, here.
        """
        provider = self._provider
        if self._memory is None:
            return lambda: provider.prepare_request(prompt, options)
        if self._structured:
            messages = self._memory.as_chat_messages()
            return lambda: provider.prepare_request_with_messages(messages, options)
        context = self._memory.render_as_text()
        return lambda: provider.prepare_request(context, options)

    async def _generate_with_retry(
        self,
        body_builder: Callable[[], bytes],
        cancel: asyncio.Event | None,
    ) -> str:
        retry = RetryPolicy.from_settings(self._settings)
        attempt = 0
        while True:
            attempt += 1
            self._logger.debug(
                "Generation attempt %d (provider=%s, endpoint=%s)",
                attempt,
                self._provider.name,
                self._provider.endpoint(),
            )
            try:
                return await self._attempt(body_builder, cancel)
            except GenerationCancelled:
                raise
            except LLMError as e:
                self._logger.info(
                    "Generation attempt %d failed: %s",
                    attempt,
                    e,
                    extra=e.loggable_fields(),
                )
                if not retry.should_retry(e):
                    raise GenerationError(e, attempt) from e
                delay = retry.next_delay()
                self._logger.debug("Retrying in %.1fs", delay)
                await wait(delay, cancel)

    async def _attempt(
        self,
        body_builder: Callable[[], bytes],
        cancel: asyncio.Event | None,
    ) -> str:
        """One request/response cycle, with failures mapped to the taxonomy."""
        client = self._client()
        try:
            body = body_builder()
        except LLMError:
            raise
        except Exception as e:
            raise RequestError("failed to prepare request") from e

        headers = self._provider.headers()
        try:
            response = await cancellable(
                client.post(self._provider.endpoint(), content=body, headers=headers),
                cancel,
            )
        except httpx.TimeoutException as e:
            raise RequestError("request timed out") from e
        except httpx.HTTPError as e:
            raise RequestError("failed to send request") from e

        if not response.is_success:
            self._logger.debug(
                "API error (provider=%s, status=%d)",
                self._provider.name,
                response.status_code,
            )
            raise error_for_status(response.status_code, response.text)

        try:
            return self._provider.parse_response(response.content)
        except LLMError:
            raise
        except Exception as e:
            raise ResponseError("failed to parse response") from e
