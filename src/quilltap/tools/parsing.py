"""Extract tool-call requests from vendor-native final responses.

Parsers only ever see a fully drained response (a stream draft's
``to_raw()`` or an SDK response object); partial argument fragments never
reach them. An empty list means "no tool calls" and is never an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from quilltap._utils import get_field

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    # SDK models (pydantic) and proto maps both convert cleanly.
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump()
    return dict(value) if value else {}


def parse_openai_tool_calls(response: Any) -> list[ToolCallRequest]:
    """Parse OpenAI-style ``tool_calls`` (top level or ``choices[0].message``).

    Ollama's ``message.tool_calls`` shape is accepted too; its arguments come
    as an object rather than a JSON string.
    """
    tool_calls = get_field(response, "tool_calls")
    if tool_calls is None:
        choices = get_field(response, "choices") or []
        if choices:
            tool_calls = get_field(get_field(choices[0], "message"), "tool_calls")
    if tool_calls is None:
        tool_calls = get_field(get_field(response, "message"), "tool_calls")
    if not tool_calls:
        return []

    calls: list[ToolCallRequest] = []
    for entry in tool_calls:
        if get_field(entry, "type") != "function":
            continue
        function = get_field(entry, "function")
        name = get_field(function, "name")
        raw_args = get_field(function, "arguments")
        try:
            if isinstance(raw_args, str) or raw_args is None:
                arguments = json.loads(raw_args or "{}")
            else:
                arguments = _as_dict(raw_args)
            if not isinstance(arguments, dict):
                raise TypeError(f"expected an object, got {type(arguments).__name__}")
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.error("Skipping malformed tool call %r", name, exc_info=True)
            continue
        if not name:
            logger.error("Skipping tool call without a function name")
            continue
        calls.append(
            ToolCallRequest(name=name, arguments=arguments, call_id=get_field(entry, "id"))
        )
    return calls


def parse_anthropic_tool_calls(response: Any) -> list[ToolCallRequest]:
    """Parse ``tool_use`` content blocks; ``input`` is already an object."""
    calls: list[ToolCallRequest] = []
    for block in get_field(response, "content") or []:
        if get_field(block, "type") != "tool_use":
            continue
        calls.append(
            ToolCallRequest(
                name=get_field(block, "name"),
                arguments=_as_dict(get_field(block, "input")),
                call_id=get_field(block, "id"),
            )
        )
    return calls


def parse_google_tool_calls(response: Any) -> list[ToolCallRequest]:
    """Parse ``functionCall`` parts of the first candidate."""
    candidates = get_field(response, "candidates") or []
    if not candidates:
        return []
    parts = get_field(get_field(candidates[0], "content"), "parts") or []
    calls: list[ToolCallRequest] = []
    for part in parts:
        function_call = get_field(part, "functionCall") or get_field(part, "function_call")
        if not function_call:
            continue
        calls.append(
            ToolCallRequest(
                name=get_field(function_call, "name"),
                arguments=_as_dict(get_field(function_call, "args")),
                call_id=get_field(function_call, "id"),
            )
        )
    return calls


PARSERS: dict[str, Callable[[Any], list[ToolCallRequest]]] = {
    "openai": parse_openai_tool_calls,
    "anthropic": parse_anthropic_tool_calls,
    "google": parse_google_tool_calls,
}

# Vendors not listed speak the OpenAI dialect.
_PROVIDER_FORMATS: dict[str, str] = {
    "ANTHROPIC": "anthropic",
    "GOOGLE": "google",
}


def tool_format_for(provider: str) -> str:
    return _PROVIDER_FORMATS.get(provider.upper(), "openai")


def detect_tool_calls(response: Any, provider: str) -> list[ToolCallRequest]:
    """Parse *response* with the parser matching *provider*'s dialect."""
    if response is None:
        return []
    return PARSERS[tool_format_for(provider)](response)
