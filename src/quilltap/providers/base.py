"""Provider protocol: the single interface every vendor adapter implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        ChatResponse,
        ImageGenParams,
        ImageGenResponse,
        StreamEvent,
    )

IMAGE_MIME_TYPES: frozenset[str] = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp"}
)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by adapters."""

    supports_file_attachments: bool
    supported_mime_types: frozenset[str] = frozenset()
    supports_image_generation: bool = False
    #: Vendor performs web search itself, so the generic tool is not offered.
    supports_web_search: bool = False


@runtime_checkable
class ProviderAdapter(Protocol):
    """Translate canonical requests into vendor calls and back."""

    name: str

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for attachment, image, and web-search support."""
        ...

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming call."""
        ...

    def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Return a single-pass stream ending in exactly one terminal event."""
        ...

    async def validate_api_key(self, api_key: str) -> bool:
        """Probe the vendor cheaply; never raises."""
        ...

    async def get_available_models(self, api_key: str) -> list[str]:
        """Best-effort model listing; ``[]`` on any failure."""
        ...

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Generate images or raise ``CapabilityError``."""
        ...
