"""xAI Grok provider (OpenAI dialect)."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import ConfigurationError
from quilltap.providers import _openai_chat as chat
from quilltap.providers._utils import TEXT_MIME_TYPES, aclose_resource
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

GROK_BASE_URL = "https://api.x.ai/v1"
DEFAULT_IMAGE_MODEL = "grok-2-image"
#: Grok caps image-generation prompts at this many bytes.
GROK_IMAGE_PROMPT_MAX_BYTES = 1024
BINARY_UNSUPPORTED = (
    "PDF and binary document support requires Grok Files API (not yet implemented)"
)
SUPPORTED_MIME_TYPES: frozenset[str] = IMAGE_MIME_TYPES | TEXT_MIME_TYPES
#: xAI Live Search; sent as an extra body field the OpenAI SDK does not model.
LIVE_SEARCH_PARAMETERS: dict[str, Any] = {
    "mode": "auto",
    "return_citations": True,
    "max_search_results": 20,
    "sources": ["web", "x", "news"],
}


class GrokProvider:
    """Grok chat with image and inline-text attachments, plus image generation."""

    name = "GROK"

    def __init__(self, base_url: str | None = None) -> None:
        """Initialize; *base_url* defaults to the public xAI endpoint."""
        self.base_url = base_url or GROK_BASE_URL
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str) -> Any:
        """Lazily initialize and return a client bound to *api_key*."""
        if not api_key:
            raise ConfigurationError(
                "Grok provider requires an API key",
                hint="Set XAI_API_KEY or pass api_key=...",
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
            supported_mime_types=SUPPORTED_MIME_TYPES,
            supports_image_generation=True,
            supports_web_search=True,
        )

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], Any]:
        messages, results = chat.format_messages(
            request.messages,
            vendor="Grok",
            supported_mime_types=SUPPORTED_MIME_TYPES,
            encode=chat.attachment_encoder(BINARY_UNSUPPORTED),
        )
        kwargs = chat.build_chat_kwargs(request, messages)
        if request.web_search_enabled:
            kwargs["extra_body"] = {"search_parameters": copy.deepcopy(LIVE_SEARCH_PARAMETERS)}
        return kwargs, results

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming completion call."""
        client = self._get_client(api_key)
        kwargs, results = self._prepare(request)
        return await chat.complete(client, kwargs, results, provider=self.name)

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion as content deltas plus one terminal event."""
        client = self._get_client(api_key)
        kwargs, results = self._prepare(request)
        async for event in chat.stream(client, kwargs, results, provider=self.name):
            yield event

    async def validate_api_key(self, api_key: str) -> bool:
        """Probe ``GET /models``."""
        try:
            await chat.list_model_ids(self._get_client(api_key))
        except Exception as e:
            logger.warning("Grok API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return model ids reported by xAI."""
        try:
            return sorted(await chat.list_model_ids(self._get_client(api_key)))
        except Exception as e:
            logger.warning("Failed to fetch Grok models: %s", e)
            return []

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Generate JPEG images with ``grok-2-image``."""
        prompt_bytes = len(params.prompt.encode("utf-8"))
        if prompt_bytes > GROK_IMAGE_PROMPT_MAX_BYTES:
            logger.warning(
                "Grok image prompt is %d bytes; xAI rejects prompts over %d bytes",
                prompt_bytes,
                GROK_IMAGE_PROMPT_MAX_BYTES,
            )
        return await chat.generate_images(
            self._get_client(api_key),
            params,
            provider=self.name,
            model=params.model or DEFAULT_IMAGE_MODEL,
            mime_type="image/jpeg",
        )

    async def aclose(self) -> None:
        """Close any SDK clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
