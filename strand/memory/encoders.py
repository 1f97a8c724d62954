"""Token encoder resolution for conversation memory."""

from __future__ import annotations

import logging
from typing import Protocol

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODER_MODEL = "gpt-4o"


class TokenEncoder(Protocol):
    """Anything with tiktoken's ``encode``."""

    def encode(self, text: str) -> list[int]: ...


def resolve_encoder(
    model: str,
    fallback_model: str = DEFAULT_ENCODER_MODEL,
) -> TokenEncoder:
    """Return the tiktoken encoding for ``model``.

    Unknown model names fall back to ``fallback_model``'s encoding.
    Raises LookupError when neither can be resolved.
    """
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError as e:
        logger.warning(
            "No encoding for model %r, defaulting to %s: %s", model, fallback_model, e
        )
    try:
        return tiktoken.encoding_for_model(fallback_model)
    except KeyError as e:
        raise LookupError(f"failed to resolve default encoding {fallback_model!r}") from e


def count_tokens(encoder: TokenEncoder, text: str) -> int:
    return len(encoder.encode(text))
