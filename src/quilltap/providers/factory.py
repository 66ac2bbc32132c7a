"""Static provider construction with base-URL vendor detection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from quilltap._http import host_matches, http_hostname
from quilltap.errors import ConfigurationError
from quilltap.providers.anthropic import AnthropicProvider
from quilltap.providers.gab_ai import GabAIProvider
from quilltap.providers.gemini import GeminiProvider
from quilltap.providers.grok import GrokProvider
from quilltap.providers.ollama import OllamaProvider
from quilltap.providers.openai import OpenAIProvider
from quilltap.providers.openai_compatible import OpenAICompatibleProvider
from quilltap.providers.openrouter import OpenRouterProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from quilltap.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

# Vendors with a native adapter, keyed by the domain their API lives under.
KNOWN_VENDOR_DOMAINS: tuple[tuple[str, str], ...] = (
    ("openrouter.ai", "OPENROUTER"),
    ("x.ai", "GROK"),
    ("gab.ai", "GAB_AI"),
    ("openai.com", "OPENAI"),
)


def _require_base_url(provider: str, example: str, base_url: str | None) -> str:
    if not base_url:
        raise ConfigurationError(
            f"{provider} provider requires baseUrl (e.g., {example})",
            hint="Set base_url on the connection profile.",
        )
    return base_url


_BUILDERS: dict[str, Callable[[str | None], ProviderAdapter]] = {
    "OPENAI": lambda _url: OpenAIProvider(),
    "ANTHROPIC": lambda _url: AnthropicProvider(),
    "GOOGLE": lambda _url: GeminiProvider(),
    "GROK": lambda _url: GrokProvider(),
    "OPENROUTER": lambda _url: OpenRouterProvider(),
    "GAB_AI": lambda _url: GabAIProvider(),
    "OLLAMA": lambda url: OllamaProvider(
        _require_base_url("Ollama", "http://localhost:11434", url)
    ),
    "OPENAI_COMPATIBLE": lambda url: OpenAICompatibleProvider(
        _require_base_url("OpenAI-compatible", "http://localhost:1234/v1", url)
    ),
}


def detect_vendor(base_url: str | None) -> str | None:
    """Return the native provider name for *base_url*'s host, if any.

    Only http(s) URLs are considered; any other scheme is a non-match.
    """
    hostname = http_hostname(base_url)
    if hostname is None:
        return None
    for domain, provider in KNOWN_VENDOR_DOMAINS:
        if host_matches(hostname, domain):
            return provider
    return None


def is_openrouter_endpoint(base_url: str | None) -> bool:
    """Whether *base_url* points at OpenRouter (or a subdomain of it)."""
    return detect_vendor(base_url) == "OPENROUTER"


def create_provider(name: str, base_url: str | None = None) -> ProviderAdapter:
    """Resolve *name* (case-insensitive) and an optional base URL to an adapter.

    A generic OpenAI-compatible profile whose base URL belongs to a vendor with
    a native adapter gets that adapter instead.
    """
    key = (name or "").strip().upper()
    if key == "OPENAI_COMPATIBLE":
        _require_base_url("OpenAI-compatible", "http://localhost:1234/v1", base_url)
        vendor = detect_vendor(base_url)
        if vendor is not None:
            logger.debug(
                "Base URL %s belongs to %s; using its native adapter", base_url, vendor
            )
            key = vendor

    builder = _BUILDERS.get(key)
    if builder is None:
        raise ConfigurationError(
            f"Unsupported provider: {name}",
            hint=f"Supported providers: {', '.join(sorted(_BUILDERS))}",
        )
    return builder(base_url)


def supported_providers() -> list[str]:
    """Names accepted by :func:`create_provider`."""
    return sorted(_BUILDERS)
