"""Exponential backoff policy and the cancellable wait used between attempts."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

from strand.config import Settings
from strand.errors import GenerationCancelled, LLMError

T = TypeVar("T")

# Cap the backoff exponent so delay arithmetic stays finite on very long streams
MAX_BACKOFF_EXPONENT = 30


@dataclass
class RetryPolicy:
    """Decides whether to retry a failed attempt and how long to wait.

    One instance per logical call (request or stream), owned by that call.
    ``attempts`` counts the retries already scheduled via next_delay().
    """

    max_attempts: int
    initial_delay: float
    max_delay: float
    attempts: int = field(default=0, init=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_retries,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
        )

    @classmethod
    def for_stream(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.stream_max_retries,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
        )

    def should_retry(self, error: BaseException | None) -> bool:
        if error is None or self.attempts >= self.max_attempts:
            return False
        if isinstance(error, LLMError):
            return error.retryable
        return True

    def next_delay(self) -> float:
        self.attempts += 1
        exponent = min(self.attempts - 1, MAX_BACKOFF_EXPONENT)
        return min(self.initial_delay * (2 ** exponent), self.max_delay)

    def reset(self) -> None:
        self.attempts = 0


async def cancellable(aw: Awaitable[T], cancel: asyncio.Event | None = None) -> T:
    """Await ``aw`` but abandon it with GenerationCancelled if ``cancel`` fires."""
    if cancel is None:
        return await aw
    task = asyncio.ensure_future(aw)
    if cancel.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelled("cancelled before call")

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise GenerationCancelled("cancelled during call")


async def wait(delay: float, cancel: asyncio.Event | None = None) -> None:
    """Sleep for ``delay`` seconds unless ``cancel`` fires first.

    Raises GenerationCancelled when the event is (or becomes) set.
    Task cancellation propagates as asyncio.CancelledError.
    """
    if cancel is None:
        await asyncio.sleep(delay)
        return
    if cancel.is_set():
        raise GenerationCancelled("cancelled before retry wait")
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise GenerationCancelled("cancelled during retry wait")
