"""Mock provider for offline runs and tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from quilltap.errors import CapabilityError
from quilltap.providers.base import ProviderCapabilities
from quilltap.providers.models import (
    AttachmentResults,
    ChatResponse,
    StreamEvent,
    Usage,
)
from quilltap.providers.streaming import ChatCompletionDraft

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        ImageGenParams,
        ImageGenResponse,
    )


class MockProvider:
    """Mock provider that echoes the last user message without API calls.

    Streams the reply word by word and never requests tools, so a turn
    always finishes after one call.
    """

    name = "MOCK"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(supports_file_attachments=False)

    @staticmethod
    def _reply(request: ChatRequest) -> str:
        prompt = next(
            (m.content for m in reversed(request.messages) if m.role == "user"), ""
        )
        return f"echo: {prompt[:100]}"

    @staticmethod
    def _usage(text: str) -> Usage:
        completion = len(text.split())
        return Usage(prompt_tokens=10, completion_tokens=completion, total_tokens=10 + completion)

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Return the echo in one piece."""
        text = self._reply(request)
        draft = ChatCompletionDraft(model=request.model, content=text, finish_reason="stop")
        draft.usage = self._usage(text)
        return ChatResponse(
            content=text,
            finish_reason="stop",
            usage=draft.usage,
            attachment_results=AttachmentResults(),
            raw_response=draft.to_raw(),
        )

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream the echo one word at a time."""
        text = self._reply(request)
        draft = ChatCompletionDraft(model=request.model, finish_reason="stop")
        words = text.split(" ")
        for i, word in enumerate(words):
            piece = word if i == len(words) - 1 else word + " "
            draft.add_text(piece)
            yield StreamEvent.delta(piece)
        draft.usage = self._usage(text)
        yield StreamEvent.terminal(
            usage=draft.usage,
            attachment_results=AttachmentResults(),
            raw_response=draft.to_raw(),
        )

    async def validate_api_key(self, api_key: str) -> bool:
        """Accept any key."""
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return a single mock model id."""
        return ["mock-model"]

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """The mock has no image output."""
        raise CapabilityError("Mock provider does not support image generation")
