"""Fan one prompt out to several engines with a bounded worker count."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from strand.errors import LLMError
from strand.runtime.engine import GenerationEngine

logger = logging.getLogger(__name__)


@dataclass
class EnsembleResult:
    """Outcome of one engine's call; exactly one of text/error is set."""

    provider: str
    text: str | None = None
    error: LLMError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_ensemble(
    engines: Sequence[GenerationEngine],
    prompt: str,
    options: Mapping[str, Any] | None = None,
    *,
    max_workers: int | None = None,
    cancel: asyncio.Event | None = None,
) -> list[EnsembleResult]:
    """Run generate() on every engine, at most ``max_workers`` at a time.

    ``max_workers`` defaults to the smallest ``ensemble_max_workers`` among
    the engines' settings.  Results come back in the order of ``engines``.
    A failing member records its LLMError; task cancellation is not
    captured.
    """
    if not engines:
        return []
    if max_workers is None:
        max_workers = min(e.settings.ensemble_max_workers for e in engines)
    if max_workers < 1:
        raise ValueError("max_workers must be >= 1")

    semaphore = asyncio.Semaphore(max_workers)

    async def _run(engine: GenerationEngine) -> EnsembleResult:
        name = engine.provider.name
        async with semaphore:
            try:
                text = await engine.generate(prompt, options, cancel=cancel)
            except LLMError as e:
                logger.warning("Ensemble member %s failed: %s", name, e)
                return EnsembleResult(provider=name, error=e)
        return EnsembleResult(provider=name, text=text)

    return list(await asyncio.gather(*(_run(e) for e in engines)))
