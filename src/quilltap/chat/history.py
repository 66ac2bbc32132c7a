"""Turn stored chat messages into canonical provider history."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from quilltap.providers.models import Message
from quilltap.tools.executor import ToolExecutionResult, format_tool_result_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from quilltap.chat.repository import ChatMessage
    from quilltap.providers.models import FileAttachment

logger = logging.getLogger(__name__)

_ROLES = {"SYSTEM": "system", "USER": "user", "ASSISTANT": "assistant"}


def tool_result_message(tool_name: str, text: str) -> Message:
    """Express a tool result as a user turn every vendor can read."""
    return Message(role="user", content=f"[Tool Result: {tool_name}]\n{text}")


def tool_call_placeholder(tool_names: Iterable[str]) -> str:
    return f"[Calling tool: {', '.join(tool_names)}]"


def _from_tool_message(stored: ChatMessage) -> Message:
    try:
        payload = json.loads(stored.content)
    except json.JSONDecodeError:
        logger.warning("Stored tool message %s is not JSON; sending it verbatim", stored.id)
        return tool_result_message("unknown", stored.content)
    if not isinstance(payload, dict):
        return tool_result_message("unknown", stored.content)

    result = ToolExecutionResult(
        tool_name=payload.get("toolName") or "unknown",
        success=bool(payload.get("success")),
        result=payload.get("result"),
        error=payload.get("error") or (
            payload.get("result") if not payload.get("success") else None
        ),
    )
    return tool_result_message(result.tool_name, format_tool_result_text(result))


def build_history(
    stored: Sequence[ChatMessage],
    *,
    system_prompt: str | None = None,
    user_message: str | None = None,
    attachments: Sequence[FileAttachment] = (),
) -> list[Message]:
    """Build the canonical message list for one turn.

    Stored tool messages never reach vendors in raw form; they become
    ``[Tool Result: name]`` user turns. The new user message, when given,
    is appended last together with its attachments.
    """
    messages: list[Message] = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))

    for item in stored:
        if item.role == "TOOL":
            messages.append(_from_tool_message(item))
            continue
        role = _ROLES.get(item.role)
        if role is None:
            logger.warning("Skipping stored message %s with role %r", item.id, item.role)
            continue
        if role == "system" and system_prompt:
            continue
        messages.append(Message(role=role, content=item.content))

    if user_message is not None or attachments:
        messages.append(
            Message(role="user", content=user_message or "", attachments=tuple(attachments))
        )
    return messages
