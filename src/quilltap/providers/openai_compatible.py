"""Generic OpenAI-compatible endpoint provider (LM Studio, vLLM, LocalAI...)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import CapabilityError, ConfigurationError
from quilltap.providers import _openai_chat as chat
from quilltap.providers._utils import TEXT_MIME_TYPES, aclose_resource
from quilltap.providers.base import ProviderCapabilities

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

#: Local servers usually ignore the key but the SDK insists on one.
PLACEHOLDER_API_KEY = "not-needed"
BINARY_UNSUPPORTED = "Binary attachments are not supported by OpenAI-compatible endpoints"


class OpenAICompatibleProvider:
    """Chat against any server implementing ``/v1/chat/completions``.

    Binary attachments are rejected; text attachments are inlined into the
    message body so plain-text models can still read them.
    """

    name = "OPENAI_COMPATIBLE"

    def __init__(self, base_url: str) -> None:
        """Initialize with the server's base URL (required)."""
        if not base_url:
            raise ConfigurationError(
                "OpenAI-compatible provider requires baseUrl",
                hint="e.g. base_url='http://localhost:1234/v1' for LM Studio.",
            )
        self.base_url = base_url
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str | None) -> Any:
        key = api_key or PLACEHOLDER_API_KEY
        client = self._clients.get(key)
        if client is None:
            client = chat.make_client(key, base_url=self.base_url)
            self._clients[key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            supports_file_attachments=True,
            supported_mime_types=TEXT_MIME_TYPES,
        )

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], Any]:
        messages, results = chat.format_messages(
            request.messages,
            vendor="OpenAI-compatible endpoint",
            supported_mime_types=TEXT_MIME_TYPES,
            encode=chat.attachment_encoder(BINARY_UNSUPPORTED),
        )
        return chat.build_chat_kwargs(request, messages), results

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
            logger.warning("OpenAI-compatible endpoint validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return whatever the server lists."""
        try:
            return await chat.list_model_ids(self._get_client(api_key))
        except Exception as e:
            logger.warning("Failed to fetch OpenAI-compatible models: %s", e)
            return []

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Image generation is not offered through generic endpoints."""
        raise CapabilityError(
            "OpenAI-compatible provider does not support image generation"
        )

    async def aclose(self) -> None:
        """Close any SDK clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
