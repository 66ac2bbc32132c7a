"""OpenRouter provider (OpenAI dialect, many upstream models)."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import TYPE_CHECKING, Any

import httpx

from quilltap._http import DEFAULT_TIMEOUT_S, join_url
from quilltap.errors import APIError, ConfigurationError
from quilltap.providers import _openai_chat as chat
from quilltap.providers._errors import wrap_provider_error
from quilltap.providers._utils import aclose_resource, get_field
from quilltap.providers.base import ProviderCapabilities
from quilltap.providers.models import GeneratedImage, ImageGenResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        ChatResponse,
        ImageGenParams,
        StreamEvent,
    )

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image-preview"
ATTACHMENTS_UNSUPPORTED = (
    "OpenRouter file attachment support depends on model (not yet implemented)"
)
_APP_TITLE = "Quilltap"
_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)


class OpenRouterProvider:
    """OpenRouter chat, model listing, and image generation."""

    name = "OPENROUTER"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        app_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize.

        *app_url* is sent as ``HTTP-Referer`` for OpenRouter's app
        attribution; *transport* replaces the httpx transport (tests).
        """
        self.base_url = base_url or OPENROUTER_BASE_URL
        self.app_url = app_url or os.environ.get("QUILLTAP_APP_URL", "http://localhost:3000")
        self._transport = transport
        self._clients: dict[str, Any] = {}

    @property
    def _headers(self) -> dict[str, str]:
        return {"HTTP-Referer": self.app_url, "X-Title": _APP_TITLE}

    def _get_client(self, api_key: str) -> Any:
        """Lazily initialize and return a client bound to *api_key*."""
        if not api_key:
            raise ConfigurationError(
                "OpenRouter provider requires an API key",
                hint="Set OPENROUTER_API_KEY or pass api_key=...",
            )
        client = self._clients.get(api_key)
        if client is None:
            client = chat.make_client(
                api_key, base_url=self.base_url, default_headers=self._headers
            )
            self._clients[api_key] = client
        return client

    def _http(self, api_key: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_key}", **self._headers},
            timeout=DEFAULT_TIMEOUT_S,
            transport=self._transport,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            supports_file_attachments=False,
            supports_image_generation=True,
        )

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], Any]:
        messages, results = chat.format_messages(
            request.messages,
            vendor="OpenRouter",
            unsupported_reason=ATTACHMENTS_UNSUPPORTED,
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

    async def _fetch_models(self, api_key: str) -> dict[str, Any]:
        async with self._http(api_key) as client:
            response = await client.get(join_url(self.base_url, "models"))
            response.raise_for_status()
            return response.json()

    async def validate_api_key(self, api_key: str) -> bool:
        """Probe ``GET /models``."""
        try:
            await self._fetch_models(api_key)
        except Exception as e:
            logger.warning("OpenRouter API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return every model id OpenRouter proxies."""
        try:
            data = await self._fetch_models(api_key)
        except Exception as e:
            logger.warning("Failed to fetch OpenRouter models: %s", e)
            return []
        return [m["id"] for m in data.get("data") or [] if m.get("id")]

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Generate images through an image-output chat model."""
        body: dict[str, Any] = {
            "model": params.model or DEFAULT_IMAGE_MODEL,
            "messages": [{"role": "user", "content": params.prompt}],
            "modalities": ["image", "text"],
        }
        if params.aspect_ratio:
            body["image_config"] = {"aspect_ratio": params.aspect_ratio}

        try:
            async with self._http(api_key) as client:
                response = await client.post(
                    join_url(self.base_url, "chat/completions"), json=body
                )
                response.raise_for_status()
                data = response.json()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="image") from e

        choices = data.get("choices") or []
        if not choices:
            raise APIError(
                "No choices in OpenRouter response", provider=self.name, phase="image"
            )
        images: list[GeneratedImage] = []
        for image in get_field(choices[0].get("message"), "images") or []:
            url = get_field(get_field(image, "image_url"), "url") or ""
            match = _DATA_URL_RE.match(url)
            if match:
                images.append(GeneratedImage(data=match.group(2), mime_type=match.group(1)))
        if not images:
            raise APIError(
                "No images returned from OpenRouter", provider=self.name, phase="image"
            )
        return ImageGenResponse(images=images, raw=data)

    async def aclose(self) -> None:
        """Close any SDK clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
