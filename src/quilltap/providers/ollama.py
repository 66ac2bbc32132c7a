"""Ollama provider: native ``/api/chat`` NDJSON streaming over httpx."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from quilltap._http import DEFAULT_TIMEOUT_S
from quilltap.errors import APIError, CapabilityError, ConfigurationError
from quilltap.providers._errors import wrap_provider_error
from quilltap.providers._utils import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_P,
    reject_attachments,
)
from quilltap.providers.base import ProviderCapabilities
from quilltap.providers.models import AttachmentResults, ChatResponse, StreamEvent
from quilltap.providers.streaming import OllamaChatDraft
from quilltap.tools.formatting import to_vendor_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import ChatRequest, ImageGenParams, ImageGenResponse

logger = logging.getLogger(__name__)

ATTACHMENTS_UNSUPPORTED = (
    "Ollama file attachment support not yet implemented "
    "(requires multimodal model detection)"
)


class OllamaProvider:
    """Self-hosted Ollama server. API keys are ignored."""

    name = "OLLAMA"

    def __init__(
        self, base_url: str, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        """Initialize with the server URL; *transport* replaces httpx's (tests)."""
        if not base_url:
            raise ConfigurationError(
                "Ollama provider requires baseUrl (e.g., http://localhost:11434)",
            )
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=DEFAULT_TIMEOUT_S,
            transport=self._transport,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(supports_file_attachments=False)

    def _prepare(
        self, request: ChatRequest, *, stream: bool
    ) -> tuple[dict[str, Any], AttachmentResults]:
        results = AttachmentResults()
        messages: list[dict[str, Any]] = []
        for message in request.messages:
            if message.attachments:
                results.extend(reject_attachments(message, ATTACHMENTS_UNSUPPORTED))
            role = "user" if message.role == "tool" else message.role
            messages.append({"role": role, "content": message.content})

        options: dict[str, Any] = {
            "temperature": (
                request.temperature
                if request.temperature is not None
                else DEFAULT_TEMPERATURE
            ),
            "num_predict": request.max_tokens or DEFAULT_MAX_TOKENS,
            "top_p": request.top_p if request.top_p is not None else DEFAULT_TOP_P,
        }
        if request.stop:
            options["stop"] = list(request.stop)

        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
            "options": options,
        }
        if request.tools:
            body["tools"] = to_vendor_tools(request.tools, "openai")
        return body, results

    @staticmethod
    def _absorb(draft: OllamaChatDraft, data: dict[str, Any]) -> str:
        if "error" in data:
            raise APIError(f"Ollama error: {data['error']}", provider="OLLAMA")
        draft.model = data.get("model") or draft.model
        message = data.get("message") or {}
        text = message.get("content") or ""
        if text:
            draft.add_text(text)
        for call in message.get("tool_calls") or []:
            draft.add_tool_call(call)
        if data.get("done"):
            draft.done_reason = data.get("done_reason")
            draft.prompt_eval_count = data.get("prompt_eval_count") or 0
            draft.eval_count = data.get("eval_count") or 0
        return text

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming ``/api/chat`` call."""
        body, results = self._prepare(request, stream=False)
        try:
            async with self._http() as client:
                response = await client.post("/api/chat", json=body)
                response.raise_for_status()
                data = response.json()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="send") from e

        draft = OllamaChatDraft()
        self._absorb(draft, data)
        return ChatResponse(
            content=draft.content,
            finish_reason=draft.done_reason,
            usage=draft.usage,
            attachment_results=results,
            raw_response=draft.to_raw(),
        )

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream NDJSON lines; the end of the body is terminal."""
        body, results = self._prepare(request, stream=True)
        draft = OllamaChatDraft(model=request.model)
        try:
            async with self._http() as client:
                async with client.stream("POST", "/api/chat", json=body) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            logger.warning("Skipping invalid Ollama stream line: %.200s", line)
                            continue
                        text = self._absorb(draft, data)
                        if text:
                            yield StreamEvent.delta(text)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

        yield StreamEvent.terminal(
            usage=draft.usage,
            attachment_results=results,
            raw_response=draft.to_raw(),
        )

    async def _tags(self) -> dict[str, Any]:
        async with self._http() as client:
            response = await client.get("/api/tags")
            response.raise_for_status()
            return response.json()

    async def validate_api_key(self, api_key: str) -> bool:
        """Ollama has no keys; check that the server answers ``/api/tags``."""
        try:
            await self._tags()
        except Exception as e:
            logger.warning("Ollama server check failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return locally pulled model names."""
        try:
            data = await self._tags()
        except Exception as e:
            logger.warning("Failed to fetch Ollama models: %s", e)
            return []
        return [m["name"] for m in data.get("models") or [] if m.get("name")]

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Ollama has no image output."""
        raise CapabilityError("Ollama does not support image generation")
