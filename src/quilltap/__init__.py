"""Quilltap core: multi-vendor LLM streaming with tool-call orchestration.

Public API:
    - run_turn(): Stream one chat turn, executing requested tools
    - Config: Connection profile configuration
    - ConversationOrchestrator: The per-turn state machine
    - ProviderRegistry: Explicit provider plugin registry
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import TYPE_CHECKING

from quilltap.chat import (
    ChatMessage,
    ConversationOrchestrator,
    InMemoryRepository,
    QueueTransport,
    TurnContext,
    TurnOutcome,
    build_history,
)
from quilltap.config import Config
from quilltap.errors import (
    APIError,
    AuthenticationError,
    CapabilityError,
    ConfigurationError,
    NetworkError,
    QuilltapError,
    RateLimitError,
)
from quilltap.providers import (
    MockProvider,
    ProviderRegistry,
    create_provider_from_registry,
)
from quilltap.providers._utils import aclose_resource
from quilltap.providers.models import FileAttachment, Message
from quilltap.tools.executor import HandlerToolExecutor, ToolExecutionResult

if TYPE_CHECKING:
    from quilltap.chat import ChatRepository, Transport
    from quilltap.providers.base import ProviderAdapter
    from quilltap.tools.executor import ToolExecutor

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("quilltap-core")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("quilltap").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def run_turn(
    history: list[Message],
    *,
    config: Config,
    context: TurnContext,
    repository: ChatRepository,
    tool_executor: ToolExecutor,
    transport: Transport,
    registry: ProviderRegistry | None = None,
    debug: bool = False,
) -> TurnOutcome:
    """Run one chat turn against the provider described by *config*.

    Args:
        history: Canonical messages ending with the new user message.
        config: Connection profile (provider, model, credentials, limits).
        context: Chat and user identifiers plus active capabilities.
        repository: Where the finished turn's messages are saved.
        tool_executor: Runs tool calls the model requests.
        transport: Receives streamed events; closed when the turn ends.
        registry: Provider registry; a fresh one is bootstrapped when omitted.
        debug: Emit a ``debugLLMRequest`` event before the first call.

    Returns:
        TurnOutcome with the saved message ids, usage, and tool records.

    Example:
        config = Config(provider="OPENAI", model="gpt-4o-mini")
        outcome = await run_turn(
            build_history(stored, user_message="Hi!"),
            config=config,
            context=TurnContext(chat_id="c1", user_id="u1"),
            repository=InMemoryRepository(),
            tool_executor=HandlerToolExecutor({}),
            transport=QueueTransport(),
        )
    """
    provider = _get_provider(config, registry)
    orchestrator = ConversationOrchestrator(
        provider,
        api_key=config.api_key or "",
        model=config.model,
        repository=repository,
        tool_executor=tool_executor,
        transport=transport,
        registry=registry,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        top_p=config.top_p,
        max_tool_iterations=config.max_tool_iterations,
        debug=debug,
    )
    if context.image_profile_id is None and config.image_profile_id is not None:
        context = replace(
            context,
            image_profile_id=config.image_profile_id,
            image_provider=context.image_provider or config.image_provider,
        )
    if config.web_search_enabled and not context.web_search_allowed:
        context = replace(context, web_search_allowed=True)

    try:
        return await orchestrator.run(history, context)
    finally:
        try:
            await aclose_resource(provider)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Provider cleanup failed: %s", exc)


def _get_provider(config: Config, registry: ProviderRegistry | None) -> ProviderAdapter:
    """Get the adapter for *config*, bootstrapping a registry if needed."""
    if config.use_mock:
        return MockProvider()
    return create_provider_from_registry(
        registry if registry is not None else ProviderRegistry(),
        config.provider,
        config.base_url,
    )


# Re-export for convenience
__all__ = [
    "APIError",
    "AuthenticationError",
    "CapabilityError",
    "ChatMessage",
    "Config",
    "ConfigurationError",
    "ConversationOrchestrator",
    "FileAttachment",
    "HandlerToolExecutor",
    "InMemoryRepository",
    "Message",
    "NetworkError",
    "ProviderRegistry",
    "QueueTransport",
    "QuilltapError",
    "RateLimitError",
    "ToolExecutionResult",
    "TurnContext",
    "TurnOutcome",
    "build_history",
    "run_turn",
]
