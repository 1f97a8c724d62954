"""Providers -- vendor-specific request encoding and response decoding.

Public API:
    Provider         - Protocol consumed by the runtime
    AnthropicProvider - Messages API, SSE streaming
    OllamaProvider   - /api/generate, NDJSON streaming
    create_provider  - Build the provider named by Settings.provider
"""

from strand.config import Settings
from strand.providers.anthropic import AnthropicProvider
from strand.providers.base import Provider, supports_structured_messages
from strand.providers.ollama import OllamaProvider

_PROVIDERS = {
    "anthropic": AnthropicProvider,
    "ollama": OllamaProvider,
}


def create_provider(settings: Settings) -> Provider:
    try:
        provider_cls = _PROVIDERS[settings.provider]
    except KeyError:
        raise ValueError(f"unknown provider: {settings.provider!r}") from None
    return provider_cls.from_settings(settings)


__all__ = [
    "AnthropicProvider",
    "OllamaProvider",
    "Provider",
    "create_provider",
    "supports_structured_messages",
]
