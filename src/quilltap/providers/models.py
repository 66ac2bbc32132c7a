"""Canonical, vendor-neutral models for the provider layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class FileAttachment:
    """A file attached to a message.

    ``data`` is base64 and optional; a missing payload is reported as a
    per-attachment failure rather than aborting the request.
    """

    id: str
    filename: str
    mime_type: str
    data: str | None = None


@dataclass(frozen=True)
class Message:
    """One conversation turn in canonical form."""

    role: Role
    content: str = ""
    attachments: tuple[FileAttachment, ...] = ()


@dataclass(frozen=True)
class ChatRequest:
    """A uniform request every adapter accepts.

    ``tools`` hold canonical OpenAI-style definitions
    (``{"type": "function", "function": {...}}``); adapters derive their own
    dialect from them.
    """

    messages: list[Message]
    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop: list[str] | None = None
    tools: list[dict[str, Any]] | None = None
    web_search_enabled: bool = False


@dataclass(frozen=True)
class Usage:
    """Token accounting for one vendor call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        """Wire form used in transport events."""
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class AttachmentFailure:
    """An attachment that could not be sent, with the reason."""

    id: str
    error: str


@dataclass
class AttachmentResults:
    """Which attachments reached the vendor and which were dropped."""

    sent: list[str] = field(default_factory=list)
    failed: list[AttachmentFailure] = field(default_factory=list)

    def extend(self, other: AttachmentResults) -> None:
        self.sent.extend(other.sent)
        self.failed.extend(other.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": list(self.sent),
            "failed": [{"id": f.id, "error": f.error} for f in self.failed],
        }


@dataclass(frozen=True)
class StreamEvent:
    """One element of an adapter's stream.

    Non-terminal events carry a text delta in ``content``. Exactly one
    terminal event per stream has ``done=True`` and carries usage, the
    attachment summary, and the reconstructed vendor-native response.
    """

    content: str = ""
    done: bool = False
    usage: Usage | None = None
    attachment_results: AttachmentResults | None = None
    raw_response: Any = None

    @classmethod
    def delta(cls, text: str) -> StreamEvent:
        return cls(content=text)

    @classmethod
    def terminal(
        cls,
        *,
        usage: Usage,
        attachment_results: AttachmentResults,
        raw_response: Any,
    ) -> StreamEvent:
        return cls(
            done=True,
            usage=usage,
            attachment_results=attachment_results,
            raw_response=raw_response,
        )


@dataclass
class ChatResponse:
    """Result of a non-streaming call."""

    content: str = ""
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    attachment_results: AttachmentResults = field(default_factory=AttachmentResults)
    raw_response: Any = None


@dataclass(frozen=True)
class ImageGenParams:
    """Image generation request."""

    prompt: str
    model: str | None = None
    n: int = 1
    size: str | None = None
    quality: str | None = None
    style: str | None = None
    aspect_ratio: str | None = None


@dataclass(frozen=True)
class GeneratedImage:
    """A single generated image as base64 data."""

    data: str
    mime_type: str
    revised_prompt: str | None = None


@dataclass(frozen=True)
class ImageGenResponse:
    """Images returned by an image-capable vendor."""

    images: list[GeneratedImage]
    raw: Any = None
