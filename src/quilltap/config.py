"""Configuration: Frozen Config with explicit provider/model requirements."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Literal

from dotenv import load_dotenv

from quilltap.errors import ConfigurationError

load_dotenv()

ProviderName = Literal[
    "OPENAI",
    "ANTHROPIC",
    "GOOGLE",
    "GROK",
    "OLLAMA",
    "OPENROUTER",
    "OPENAI_COMPATIBLE",
    "GAB_AI",
]

PROVIDER_NAMES: tuple[str, ...] = (
    "OPENAI",
    "ANTHROPIC",
    "GOOGLE",
    "GROK",
    "OLLAMA",
    "OPENROUTER",
    "OPENAI_COMPATIBLE",
    "GAB_AI",
)

# Checked in order; the first one set wins.
_API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "OPENAI": ("OPENAI_API_KEY",),
    "ANTHROPIC": ("ANTHROPIC_API_KEY",),
    "GOOGLE": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "GROK": ("XAI_API_KEY", "GROK_API_KEY"),
    "OPENROUTER": ("OPENROUTER_API_KEY",),
    "GAB_AI": ("GAB_AI_API_KEY",),
    "OPENAI_COMPATIBLE": ("OPENAI_COMPATIBLE_API_KEY",),
    "OLLAMA": (),
}

REQUIRES_API_KEY: frozenset[str] = frozenset(
    {"OPENAI", "ANTHROPIC", "GOOGLE", "GROK", "OPENROUTER", "GAB_AI"}
)
REQUIRES_BASE_URL: frozenset[str] = frozenset({"OLLAMA", "OPENAI_COMPATIBLE"})

DEFAULT_MAX_TOOL_ITERATIONS = 5
_MAX_TOOL_ITERATIONS_ENV_VAR = "QUILLTAP_MAX_TOOL_ITERATIONS"


def api_key_env_vars(provider: str) -> tuple[str, ...]:
    """Return the environment variables consulted for *provider*'s API key."""
    return _API_KEY_ENV_VARS.get(provider.upper(), ())


def resolve_api_key(provider: str) -> str | None:
    """Resolve an API key for *provider* from the environment."""
    for env_var in api_key_env_vars(provider):
        value = os.environ.get(env_var)
        if value:
            return value
    return None


def _default_max_tool_iterations() -> int:
    raw = os.environ.get(_MAX_TOOL_ITERATIONS_ENV_VAR)
    if raw is None or not raw.strip():
        return DEFAULT_MAX_TOOL_ITERATIONS
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{_MAX_TOOL_ITERATIONS_ENV_VAR} must be an integer, got {raw!r}",
            hint="Unset it to use the default of 5 tool round trips.",
        ) from e


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one connection profile.

    Provider and model are required. API keys are auto-resolved from standard
    environment variables; vendors that talk to self-hosted endpoints require
    ``base_url`` instead.

    Example:
        config = Config(provider="ANTHROPIC", model="claude-sonnet-4-5-20250929")
        # API key is automatically resolved from ANTHROPIC_API_KEY
    """

    provider: str
    model: str
    #: Auto-resolved from the vendor's environment variable when *None*.
    api_key: str | None = None
    base_url: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    use_mock: bool = False
    max_tool_iterations: int = field(default_factory=_default_max_tool_iterations)
    web_search_enabled: bool = False
    #: Enables the ``generate_image`` tool when set.
    image_profile_id: str | None = None
    #: Vendor behind the image profile; drives vendor-specific tool limits.
    image_provider: str | None = None

    def __post_init__(self) -> None:
        """Normalize the provider name, resolve the API key, and validate."""
        provider = (self.provider or "").strip().upper()
        object.__setattr__(self, "provider", provider)

        if provider not in PROVIDER_NAMES:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
            )
        if not self.model:
            raise ConfigurationError(
                "model is required",
                hint="Pass the vendor model id, e.g. model='gpt-4o-mini'.",
            )
        if self.image_provider is not None:
            object.__setattr__(self, "image_provider", self.image_provider.upper())

        if self.max_tool_iterations < 1:
            raise ConfigurationError(
                f"max_tool_iterations must be ≥ 1, got {self.max_tool_iterations}",
                hint="This bounds how many tool round trips one turn may take.",
            )
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            raise ConfigurationError(
                f"temperature must be within [0, 2], got {self.temperature}",
            )
        if self.top_p is not None and not 0 <= self.top_p <= 1:
            raise ConfigurationError(f"top_p must be within [0, 1], got {self.top_p}")
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be ≥ 1, got {self.max_tokens}",
            )

        if self.use_mock:
            return

        if provider in REQUIRES_BASE_URL and not self.base_url:
            raise ConfigurationError(
                f"{provider} provider requires base_url",
                hint="e.g. base_url='http://localhost:11434' for Ollama.",
            )

        if self.api_key is None:
            object.__setattr__(self, "api_key", resolve_api_key(provider))

        if provider in REQUIRES_API_KEY and not self.api_key:
            env_vars = api_key_env_vars(provider)
            raise ConfigurationError(
                f"API key required for {provider}",
                hint=f"Set {env_vars[0]} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
