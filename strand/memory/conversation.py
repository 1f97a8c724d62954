"""Token-bounded conversation memory.

Holds prior turns in insertion order and evicts the oldest ones once the
total token count exceeds the budget.  A single remaining message is
never evicted, even when it alone is over budget, so the context is
never emptied by truncation.

All operations serialize on one lock per instance.  Readers get deep
copies they can inspect or mutate without holding the lock.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from strand.memory.encoders import TokenEncoder, count_tokens, resolve_encoder


@dataclass
class ToolCall:
    """A tool invocation attached to an assistant turn."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class MemoryMessage:
    """A single turn stored in memory."""

    role: str
    content: str
    tokens: int = 0  # 0 -> computed by the memory's encoder
    cache_hint: str | None = None  # e.g. "ephemeral"
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> MemoryMessage:
        return copy.deepcopy(self)


class ConversationMemory:
    """Ordered, token-bounded log of conversation turns."""

    def __init__(
        self,
        max_tokens: int,
        encoder: TokenEncoder,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._max_tokens = max_tokens
        self._encoder = encoder
        self._logger = logger or logging.getLogger(__name__)
        self._messages: list[MemoryMessage] = []
        self._total_tokens = 0
        self._lock = threading.Lock()

    @classmethod
    def for_model(
        cls,
        max_tokens: int,
        model: str,
        *,
        logger: logging.Logger | None = None,
    ) -> ConversationMemory:
        """Build a memory whose encoder is resolved from a model name.

        Raises LookupError if neither the model's nor the default
        encoding is available.
        """
        return cls(max_tokens, resolve_encoder(model), logger=logger)

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def total_tokens(self) -> int:
        with self._lock:
            return self._total_tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, role: str, content: str, tokens: int = 0) -> None:
        """Append a plain turn.  ``tokens`` > 0 skips the encoder."""
        self.add_structured(MemoryMessage(role=role, content=content, tokens=tokens))

    def add_structured(self, message: MemoryMessage) -> None:
        """Append a copy of ``message``, computing its token count if unset."""
        stored = message.copy()
        with self._lock:
            if stored.tokens <= 0:
                stored.tokens = count_tokens(self._encoder, stored.content)
            self._messages.append(stored)
            self._total_tokens += stored.tokens
            self._truncate()
            self._logger.debug(
                "Added message to memory (role=%s, tokens=%d, total_tokens=%d)",
                stored.role,
                stored.tokens,
                self._total_tokens,
            )

    def clear(self) -> None:
        with self._lock:
            self._messages = []
            self._total_tokens = 0
        self._logger.debug("Cleared memory")

    def _truncate(self) -> None:
        # Caller holds the lock
        while self._total_tokens > self._max_tokens and len(self._messages) > 1:
            removed = self._messages.pop(0)
            self._total_tokens -= removed.tokens
            self._logger.debug(
                "Removed message from memory (role=%s, tokens=%d, total_tokens=%d)",
                removed.role,
                removed.tokens,
                self._total_tokens,
            )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def messages(self) -> list[MemoryMessage]:
        """Deep copy of the stored turns, oldest first."""
        with self._lock:
            return [m.copy() for m in self._messages]

    def render_as_text(self) -> str:
        """Flatten memory into ``"<role>: <content>"`` lines."""
        with self._lock:
            return "\n".join(f"{m.role}: {m.content}" for m in self._messages)

    def as_chat_messages(self) -> list[dict[str, Any]]:
        """Format memory as chat-style message dicts for structured requests."""
        with self._lock:
            snapshot = [m.copy() for m in self._messages]

        formatted: list[dict[str, Any]] = []
        for m in snapshot:
            msg: dict[str, Any] = {"role": m.role, "content": m.content}
            if m.cache_hint:
                msg["content"] = [{
                    "type": "text",
                    "text": m.content,
                    "cache_control": {"type": m.cache_hint},
                }]
            if m.tool_calls:
                msg["tool_calls"] = [
                    {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                    for tc in m.tool_calls
                ]
            formatted.append(msg)
        return formatted
