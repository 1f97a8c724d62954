"""Token-bounded conversation memory."""

from strand.memory.conversation import ConversationMemory, MemoryMessage, ToolCall
from strand.memory.encoders import TokenEncoder, count_tokens, resolve_encoder

__all__ = [
    "ConversationMemory",
    "MemoryMessage",
    "TokenEncoder",
    "ToolCall",
    "count_tokens",
    "resolve_encoder",
]
