"""Plugin registry of provider adapters.

The registry is an ordinary object: build one at process start, populate it
(normally with :func:`initialize_builtin_plugins`), and pass it to whatever
needs to resolve providers. Tests create a fresh one per case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import CapabilityError, ConfigurationError
from quilltap.providers import factory
from quilltap.providers._utils import TEXT_MIME_TYPES
from quilltap.providers.anthropic import SUPPORTED_MIME_TYPES as ANTHROPIC_MIME_TYPES
from quilltap.providers.base import IMAGE_MIME_TYPES
from quilltap.providers.grok import SUPPORTED_MIME_TYPES as GROK_MIME_TYPES
from quilltap.tools.formatting import to_vendor_tools
from quilltap.tools.parsing import PARSERS

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from quilltap.providers.base import ProviderAdapter
    from quilltap.tools.formatting import ToolFormat
    from quilltap.tools.parsing import ToolCallRequest

logger = logging.getLogger(__name__)

_CAPABILITIES = ("chat", "image_generation", "embeddings", "web_search")


@dataclass(frozen=True)
class ProviderMetadata:
    """Display information for a provider."""

    provider_name: str
    display_name: str
    description: str = ""
    abbreviation: str = ""


@dataclass(frozen=True)
class ConfigRequirements:
    """What a connection profile for this provider must supply."""

    requires_api_key: bool
    requires_base_url: bool = False
    api_key_label: str = "API Key"
    base_url_default: str | None = None


@dataclass(frozen=True)
class PluginCapabilities:
    """Coarse capability flags used for provider selection."""

    chat: bool = True
    image_generation: bool = False
    embeddings: bool = False
    web_search: bool = False


@dataclass(frozen=True)
class ProviderPlugin:
    """A provider registration: metadata plus factories and tool dialect."""

    metadata: ProviderMetadata
    config: ConfigRequirements
    create_provider: Callable[[str | None], ProviderAdapter]
    capabilities: PluginCapabilities = field(default_factory=PluginCapabilities)
    supported_mime_types: frozenset[str] = frozenset()
    tool_format: ToolFormat = "openai"

    @property
    def name(self) -> str:
        return self.metadata.provider_name

    def format_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert canonical tools into this provider's dialect."""
        return to_vendor_tools(tools, self.tool_format)

    def parse_tool_calls(self, response: Any) -> list[ToolCallRequest]:
        """Extract tool calls from this provider's raw response."""
        return PARSERS[self.tool_format](response)


class ProviderRegistry:
    """Name → plugin mapping with lazy-initialization bookkeeping."""

    def __init__(self) -> None:
        self._plugins: dict[str, ProviderPlugin] = {}
        self._errors: dict[str, str] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def errors(self) -> dict[str, str]:
        """Registration failures recorded during :meth:`initialize`."""
        return dict(self._errors)

    def register(self, plugin: ProviderPlugin) -> None:
        """Add *plugin*; a second plugin with the same name is rejected."""
        name = plugin.name.upper()
        if not name:
            raise ConfigurationError("Provider plugin has no provider_name")
        if name in self._plugins:
            raise ConfigurationError(
                f"Provider {name!r} is already registered",
                hint="Each provider name may be registered only once per registry.",
            )
        self._plugins[name] = plugin
        logger.debug("Registered provider plugin %s", name)

    def initialize(self, plugins: Iterable[ProviderPlugin]) -> None:
        """Register *plugins*, recording failures instead of aborting."""
        for plugin in plugins:
            try:
                self.register(plugin)
            except ConfigurationError as e:
                logger.warning("Failed to register provider %s: %s", plugin.name, e)
                self._errors[plugin.name.upper()] = str(e)
        self._initialized = True
        logger.info(
            "Provider registry initialized with %d provider(s)", len(self._plugins)
        )

    def reset(self) -> None:
        self._plugins.clear()
        self._errors.clear()
        self._initialized = False

    def get(self, name: str) -> ProviderPlugin | None:
        return self._plugins.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._plugins

    def names(self) -> list[str]:
        return list(self._plugins)

    def plugins(self) -> list[ProviderPlugin]:
        return list(self._plugins.values())

    def providers_with_capability(self, capability: str) -> list[str]:
        """Names of providers whose plugin declares *capability*."""
        if capability not in _CAPABILITIES:
            raise ValueError(f"Unknown capability: {capability!r}")
        return [
            name
            for name, plugin in self._plugins.items()
            if getattr(plugin.capabilities, capability)
        ]

    def image_generation_providers(self) -> list[str]:
        return self.providers_with_capability("image_generation")

    def config_requirements(self, name: str) -> ConfigRequirements | None:
        plugin = self.get(name)
        return plugin.config if plugin else None

    def _require(self, name: str) -> ProviderPlugin:
        plugin = self.get(name)
        if plugin is None:
            raise ConfigurationError(
                f"Provider not found in registry: {name}",
                hint=f"Registered providers: {', '.join(self._plugins) or 'none'}",
            )
        return plugin

    def create_provider(self, name: str, base_url: str | None = None) -> ProviderAdapter:
        """Build the chat adapter registered under *name*.

        ``base_url_default`` is only a suggestion for profile forms; a missing
        base URL is still a configuration error for plugins that require one.
        """
        return self._require(name).create_provider(base_url)

    def create_image_provider(
        self, name: str, base_url: str | None = None
    ) -> ProviderAdapter:
        """Build an adapter for image generation, checking the capability first."""
        plugin = self._require(name)
        if not plugin.capabilities.image_generation:
            raise CapabilityError(
                f"{plugin.metadata.display_name} does not support image generation"
            )
        return plugin.create_provider(base_url)


def _builtin(
    name: str,
    display_name: str,
    abbreviation: str,
    *,
    requires_api_key: bool = True,
    requires_base_url: bool = False,
    base_url_default: str | None = None,
    image_generation: bool = False,
    web_search: bool = False,
    supported_mime_types: frozenset[str] = frozenset(),
    tool_format: ToolFormat = "openai",
    description: str = "",
) -> ProviderPlugin:
    return ProviderPlugin(
        metadata=ProviderMetadata(
            provider_name=name,
            display_name=display_name,
            description=description,
            abbreviation=abbreviation,
        ),
        config=ConfigRequirements(
            requires_api_key=requires_api_key,
            requires_base_url=requires_base_url,
            base_url_default=base_url_default,
        ),
        create_provider=lambda url: factory.create_provider(name, url),
        capabilities=PluginCapabilities(
            image_generation=image_generation, web_search=web_search
        ),
        supported_mime_types=supported_mime_types,
        tool_format=tool_format,
    )


def builtin_plugins() -> list[ProviderPlugin]:
    """Plugins for every adapter shipped with Quilltap."""
    return [
        _builtin(
            "OPENAI",
            "OpenAI",
            "OAI",
            image_generation=True,
            web_search=True,
            supported_mime_types=IMAGE_MIME_TYPES,
            description="GPT models and DALL-E image generation",
        ),
        _builtin(
            "ANTHROPIC",
            "Anthropic",
            "ANT",
            supported_mime_types=ANTHROPIC_MIME_TYPES,
            tool_format="anthropic",
            description="Claude models",
        ),
        _builtin(
            "GOOGLE",
            "Google",
            "GGL",
            image_generation=True,
            web_search=True,
            supported_mime_types=IMAGE_MIME_TYPES,
            tool_format="google",
            description="Gemini models and Gemini image generation",
        ),
        _builtin(
            "GROK",
            "Grok",
            "GRK",
            image_generation=True,
            web_search=True,
            supported_mime_types=GROK_MIME_TYPES,
            description="xAI Grok models",
        ),
        _builtin(
            "OPENROUTER",
            "OpenRouter",
            "ORT",
            image_generation=True,
            description="Hundreds of models behind one API",
        ),
        _builtin(
            "GAB_AI",
            "Gab AI",
            "GAB",
            description="Gab AI text models",
        ),
        _builtin(
            "OLLAMA",
            "Ollama",
            "OLL",
            requires_api_key=False,
            requires_base_url=True,
            base_url_default="http://localhost:11434",
            description="Locally hosted models",
        ),
        _builtin(
            "OPENAI_COMPATIBLE",
            "OpenAI-compatible",
            "OAC",
            requires_api_key=False,
            requires_base_url=True,
            supported_mime_types=TEXT_MIME_TYPES,
            description="Any server exposing /v1/chat/completions",
        ),
    ]


def initialize_builtin_plugins(registry: ProviderRegistry) -> None:
    """Populate *registry* with the builtin plugins."""
    registry.initialize(builtin_plugins())


def create_provider_from_registry(
    registry: ProviderRegistry,
    name: str,
    base_url: str | None = None,
    *,
    bootstrap: Callable[[ProviderRegistry], None] = initialize_builtin_plugins,
) -> ProviderAdapter:
    """Resolve *name* through *registry*, initializing it first if needed.

    Applies the same base-URL vendor detection as the static factory, so a
    generic OpenAI-compatible profile pointing at a known vendor gets that
    vendor's plugin.
    """
    if not registry.is_initialized:
        logger.warning("Provider registry not initialized; initializing on demand")
        bootstrap(registry)

    key = (name or "").strip().upper()
    if key == "OPENAI_COMPATIBLE":
        vendor = factory.detect_vendor(base_url)
        if vendor is not None and registry.has(vendor):
            key = vendor
    return registry.create_provider(key, base_url)
