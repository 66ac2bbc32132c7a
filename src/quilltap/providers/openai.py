"""OpenAI Chat Completions provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import ConfigurationError
from quilltap.providers import _openai_chat as chat
from quilltap.providers._utils import aclose_resource
from quilltap.providers.base import IMAGE_MIME_TYPES, ProviderCapabilities

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        ChatResponse,
        ImageGenParams,
        ImageGenResponse,
        StreamEvent,
    )

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "dall-e-3"


class OpenAIProvider:
    """OpenAI Chat Completions provider with native web search and DALL-E."""

    name = "OPENAI"

    def __init__(self, base_url: str | None = None) -> None:
        """Initialize; *base_url* overrides the SDK default endpoint."""
        self.base_url = base_url
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str) -> Any:
        """Lazily initialize and return a client bound to *api_key*."""
        if not api_key:
            raise ConfigurationError(
                "OpenAI provider requires an API key",
                hint="Set OPENAI_API_KEY or pass api_key=...",
            )
        client = self._clients.get(api_key)
        if client is None:
            client = chat.make_client(api_key, base_url=self.base_url)
            self._clients[api_key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            supports_file_attachments=True,
            supported_mime_types=IMAGE_MIME_TYPES,
            supports_image_generation=True,
            supports_web_search=True,
        )

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], Any]:
        messages, results = chat.format_messages(
            request.messages,
            vendor="OpenAI",
            supported_mime_types=IMAGE_MIME_TYPES,
            encode=chat.attachment_encoder("OpenAI only accepts image attachments"),
        )
        kwargs = chat.build_chat_kwargs(request, messages, native_web_search=True)
        return kwargs, results

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming completion call."""
        kwargs, results = self._prepare(request)
        return await chat.complete(
            self._get_client(api_key), kwargs, results, provider=self.name
        )

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion as content deltas plus one terminal event."""
        kwargs, results = self._prepare(request)
        async for event in chat.stream(
            self._get_client(api_key), kwargs, results, provider=self.name
        ):
            yield event

    async def validate_api_key(self, api_key: str) -> bool:
        """Probe ``GET /models``."""
        try:
            await chat.list_model_ids(self._get_client(api_key))
        except Exception as e:
            logger.warning("OpenAI API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return chat model ids (those containing ``gpt``), sorted."""
        try:
            ids = await chat.list_model_ids(self._get_client(api_key))
        except Exception as e:
            logger.warning("Failed to fetch OpenAI models: %s", e)
            return []
        return sorted(i for i in ids if "gpt" in i)

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Generate images with DALL-E."""
        extra: dict[str, Any] = {}
        if params.size:
            extra["size"] = params.size
        if params.quality:
            extra["quality"] = params.quality
        if params.style:
            extra["style"] = params.style
        return await chat.generate_images(
            self._get_client(api_key),
            params,
            provider=self.name,
            model=params.model or DEFAULT_IMAGE_MODEL,
            mime_type="image/png",
            extra=extra,
        )

    async def aclose(self) -> None:
        """Close any SDK clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
