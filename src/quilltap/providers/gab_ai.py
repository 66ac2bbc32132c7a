"""Gab AI provider (OpenAI dialect, text only)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import CapabilityError, ConfigurationError
from quilltap.providers import _openai_chat as chat
from quilltap.providers._utils import aclose_resource
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

GAB_AI_BASE_URL = "https://gab.ai/v1"
ATTACHMENTS_UNSUPPORTED = "Gab AI does not support file attachments"


class GabAIProvider:
    """Gab AI text chat."""

    name = "GAB_AI"

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = base_url or GAB_AI_BASE_URL
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str) -> Any:
        if not api_key:
            raise ConfigurationError(
                "Gab AI provider requires an API key",
                hint="Set GAB_AI_API_KEY or pass api_key=...",
            )
        client = self._clients.get(api_key)
        if client is None:
            client = chat.make_client(api_key, base_url=self.base_url)
            self._clients[api_key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(supports_file_attachments=False)

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], Any]:
        messages, results = chat.format_messages(
            request.messages,
            vendor="Gab AI",
            unsupported_reason=ATTACHMENTS_UNSUPPORTED,
        )
        return chat.build_chat_kwargs(request, messages), results

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        client = self._get_client(api_key)
        kwargs, results = self._prepare(request)
        return await chat.complete(client, kwargs, results, provider=self.name)

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        client = self._get_client(api_key)
        kwargs, results = self._prepare(request)
        async for event in chat.stream(client, kwargs, results, provider=self.name):
            yield event

    async def validate_api_key(self, api_key: str) -> bool:
        try:
            await chat.list_model_ids(self._get_client(api_key))
        except Exception as e:
            logger.warning("Gab AI API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        try:
            return sorted(await chat.list_model_ids(self._get_client(api_key)))
        except Exception as e:
            logger.warning("Failed to fetch Gab AI models: %s", e)
            return []

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        raise CapabilityError(
            "Gab AI does not support image generation",
            hint="Configure an image profile backed by OpenAI, Google, Grok, or OpenRouter.",
        )

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
