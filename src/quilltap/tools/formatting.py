"""Canonical tool → vendor tool dialect translation.

The canonical form is the OpenAI function shape::

    {"type": "function", "function": {"name": ..., "description": ..., "parameters": {...}}}

Every vendor format is derived from it; nothing converts back.
"""

from __future__ import annotations

from copy import deepcopy
import logging
from typing import Any, Literal

logger = logging.getLogger(__name__)

ToolFormat = Literal["openai", "anthropic", "google"]

LENGTH_LIMIT_NOTE = " [Note: description truncated due to length limit]"


def _function_of(tool: dict[str, Any]) -> dict[str, Any]:
    if tool.get("type") != "function" or not isinstance(tool.get("function"), dict):
        raise ValueError(f"Not a canonical function tool: {tool!r}")
    return tool["function"]


def _object_schema(parameters: dict[str, Any] | None) -> dict[str, Any]:
    parameters = parameters or {}
    return {
        "type": "object",
        "properties": deepcopy(parameters.get("properties", {})),
        "required": list(parameters.get("required", [])),
    }


def to_openai_tool(tool: dict[str, Any]) -> dict[str, Any]:
    """OpenAI Chat Completions tools are the canonical shape itself."""
    _function_of(tool)
    return deepcopy(tool)


def to_anthropic_tool(tool: dict[str, Any]) -> dict[str, Any]:
    """Convert to an Anthropic ``input_schema`` tool."""
    function = _function_of(tool)
    return {
        "name": function["name"],
        "description": function.get("description", ""),
        "input_schema": _object_schema(function.get("parameters")),
    }


def to_google_tool(tool: dict[str, Any]) -> dict[str, Any]:
    """Convert to a Gemini function declaration."""
    function = _function_of(tool)
    return {
        "name": function["name"],
        "description": function.get("description", ""),
        "parameters": _object_schema(function.get("parameters")),
    }


_CONVERTERS = {
    "openai": to_openai_tool,
    "anthropic": to_anthropic_tool,
    "google": to_google_tool,
}


def to_vendor_tools(tools: list[dict[str, Any]], tool_format: ToolFormat) -> list[dict[str, Any]]:
    """Convert a list of canonical tools into *tool_format*."""
    convert = _CONVERTERS[tool_format]
    return [convert(t) for t in tools]


def apply_length_limit(tool: dict[str, Any], max_bytes: int) -> dict[str, Any]:
    """Truncate a tool description to at most *max_bytes* UTF-8 bytes.

    Works on canonical tools (``function.description``) and on vendor shapes
    with a top-level ``description``. The truncation note counts against the
    budget; when the note alone does not fit, the tool is returned unchanged.
    The input is never mutated.
    """
    result = deepcopy(tool)
    holder = result["function"] if isinstance(result.get("function"), dict) else result
    description = holder.get("description")
    if not isinstance(description, str):
        return result

    encoded = description.encode("utf-8")
    if len(encoded) <= max_bytes:
        return result

    note = LENGTH_LIMIT_NOTE.encode("utf-8")
    max_desc_bytes = max_bytes - len(note)
    if max_desc_bytes <= 0:
        logger.warning(
            "Cannot truncate description of %r to %d bytes: limit is smaller than the note",
            holder.get("name"),
            max_bytes,
        )
        return result

    # errors="ignore" drops a multi-byte character split at the cut.
    truncated = encoded[:max_desc_bytes].decode("utf-8", errors="ignore")
    holder["description"] = truncated + LENGTH_LIMIT_NOTE
    logger.debug(
        "Truncated description of %r from %d to %d bytes",
        holder.get("name"),
        len(encoded),
        len(holder["description"].encode("utf-8")),
    )
    return result
