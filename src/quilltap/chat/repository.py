"""Persistence boundary for chat messages.

The orchestrator writes through :class:`ChatRepository` only while
finalizing a turn. :class:`InMemoryRepository` backs tests and
single-process demos.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Protocol
import uuid

MessageRole = Literal["SYSTEM", "USER", "ASSISTANT", "TOOL"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ChatMessage:
    """A stored chat message.

    ``content`` of a TOOL message is a JSON document describing the call
    (tool name, success, result, arguments, provider, model).
    """

    role: MessageRole
    content: str
    id: str = field(default_factory=new_message_id)
    created_at: datetime = field(default_factory=_now)
    token_count: int | None = None
    raw_response: Any = None
    attachments: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


class ChatRepository(Protocol):
    """Append-mostly store of chat messages and chat metadata."""

    async def add_message(self, chat_id: str, message: ChatMessage) -> ChatMessage:
        """Append *message* to the chat log and return it as stored."""
        ...

    async def update_message(
        self, chat_id: str, message_id: str, patch: dict[str, Any]
    ) -> None:
        """Merge *patch* into an existing message's metadata."""
        ...

    async def update(self, chat_id: str, patch: dict[str, Any]) -> None:
        """Merge *patch* into the chat record itself."""
        ...


class InMemoryRepository:
    """Dict-backed repository; messages are kept in append order."""

    def __init__(self) -> None:
        self.messages: dict[str, list[ChatMessage]] = {}
        self.chats: dict[str, dict[str, Any]] = {}

    async def add_message(self, chat_id: str, message: ChatMessage) -> ChatMessage:
        self.messages.setdefault(chat_id, []).append(message)
        return message

    async def update_message(
        self, chat_id: str, message_id: str, patch: dict[str, Any]
    ) -> None:
        log = self.messages.get(chat_id, [])
        for i, message in enumerate(log):
            if message.id == message_id:
                log[i] = replace(message, metadata={**message.metadata, **patch})
                return
        raise KeyError(f"Message {message_id!r} not found in chat {chat_id!r}")

    async def update(self, chat_id: str, patch: dict[str, Any]) -> None:
        self.chats.setdefault(chat_id, {}).update(patch)

    def history(self, chat_id: str) -> list[ChatMessage]:
        return list(self.messages.get(chat_id, []))
