"""Provider adapters, factory, and registry."""

from .anthropic import AnthropicProvider
from .base import ProviderAdapter, ProviderCapabilities
from .factory import create_provider, detect_vendor, is_openrouter_endpoint
from .gab_ai import GabAIProvider
from .gemini import GeminiProvider
from .grok import GrokProvider
from .mock import MockProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .openai_compatible import OpenAICompatibleProvider
from .openrouter import OpenRouterProvider
from .registry import (
    ProviderPlugin,
    ProviderRegistry,
    create_provider_from_registry,
    initialize_builtin_plugins,
)

__all__ = [
    "AnthropicProvider",
    "GabAIProvider",
    "GeminiProvider",
    "GrokProvider",
    "MockProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderPlugin",
    "ProviderRegistry",
    "create_provider",
    "create_provider_from_registry",
    "detect_vendor",
    "initialize_builtin_plugins",
    "is_openrouter_endpoint",
]
