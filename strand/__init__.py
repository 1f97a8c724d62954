"""strand -- provider-agnostic generation runtime.

Public API:
    GenerationEngine   - retrying generate() and streaming stream() calls
    ConversationMemory - token-bounded conversation history
    Settings           - configuration (STRAND_ env prefix)
"""

from strand.config import Settings
from strand.errors import (
    APIError,
    AuthenticationError,
    ErrorKind,
    GenerationCancelled,
    GenerationError,
    LLMError,
    RequestError,
    ResponseError,
    UnsupportedError,
)
from strand.memory import ConversationMemory, MemoryMessage, ToolCall
from strand.providers import AnthropicProvider, OllamaProvider, create_provider
from strand.runtime import (
    GenerationEngine,
    GenerationRequest,
    RetryPolicy,
    StreamToken,
    TokenKind,
    TokenStream,
    run_ensemble,
)

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "AnthropicProvider",
    "AuthenticationError",
    "ConversationMemory",
    "ErrorKind",
    "GenerationCancelled",
    "GenerationEngine",
    "GenerationError",
    "GenerationRequest",
    "LLMError",
    "MemoryMessage",
    "OllamaProvider",
    "RequestError",
    "ResponseError",
    "RetryPolicy",
    "Settings",
    "StreamToken",
    "TokenKind",
    "TokenStream",
    "ToolCall",
    "UnsupportedError",
    "create_provider",
    "run_ensemble",
]
