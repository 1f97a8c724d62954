"""strand entry point.

Builds components in dependency order:
  Settings -> Provider -> ConversationMemory (optional) -> GenerationEngine

and runs a single prompt from the command line, either as one complete
reply or streamed token by token.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from strand.config import Settings
from strand.errors import LLMError
from strand.memory import ConversationMemory
from strand.providers import create_provider
from strand.runtime.engine import GenerationEngine

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def create_engine(settings: Settings) -> GenerationEngine:
    """Wire provider and (optional) memory into an engine.

    Raises LookupError if memory is enabled and no token encoder can be
    resolved for settings.encoder_model.
    """
    provider = create_provider(settings)
    memory = None
    if settings.memory_enabled:
        memory = ConversationMemory.for_model(
            settings.memory_max_tokens, settings.encoder_model
        )
    return GenerationEngine(provider, settings, memory=memory)


async def _run(settings: Settings, prompt: str, stream: bool) -> None:
    async with create_engine(settings) as engine:
        if not stream:
            print(await engine.generate(prompt))
            return
        async with await engine.stream(prompt) as token_stream:
            async for token in token_stream:
                sys.stdout.write(token.text)
                sys.stdout.flush()
        sys.stdout.write("\n")
        logger.info(
            "Stream finished (input_tokens=%d, output_tokens=%d)",
            token_stream.input_tokens,
            token_stream.output_tokens,
        )


def main(argv: list[str] | None = None) -> int:
    """Entry point -- parse args and settings, run one prompt."""
    parser = argparse.ArgumentParser(prog="strand", description="Send one prompt to an LLM.")
    parser.add_argument("prompt", help="prompt text")
    parser.add_argument("--stream", action="store_true", help="stream the reply token by token")
    parser.add_argument("--provider", choices=["anthropic", "ollama"], help="override STRAND_PROVIDER")
    parser.add_argument("--model", help="override STRAND_MODEL")
    args = parser.parse_args(argv)

    overrides = {k: v for k, v in {"provider": args.provider, "model": args.model}.items() if v}
    settings = Settings(**overrides)
    configure_logging(settings)
    logger.info("Provider: %s, model: %s", settings.provider, settings.model)

    try:
        asyncio.run(_run(settings, args.prompt, args.stream))
    except LLMError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
