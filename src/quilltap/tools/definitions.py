"""Builtin tools offered to the model and the per-turn tool selection."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import logging
from typing import Any

from quilltap.providers.grok import GROK_IMAGE_PROMPT_MAX_BYTES
from quilltap.tools.formatting import apply_length_limit

logger = logging.getLogger(__name__)

GENERATE_IMAGE = "generate_image"
SEARCH_WEB = "search_web"

GENERATE_IMAGE_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": GENERATE_IMAGE,
        "description": (
            "Generate an image based on a text description. Use this when the user "
            "requests an image, illustration, artwork, visual content, or any visual "
            "material. Provide detailed descriptions of style, composition, colors, "
            "and mood for best results."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": (
                        "A detailed description of the image to generate. Be specific "
                        "about style, composition, colors, mood, lighting, and other "
                        "visual elements. You can use {{placeholders}} to reference "
                        "characters and personas: {{CharacterName}} for any character, "
                        "{{PersonaName}} for any persona, or {{me}}/{{I}} for the "
                        "character you are playing. The system expands these with "
                        'physical descriptions. Examples: "{{me}} in a forest clearing '
                        'at sunset", "{{Alice}} and {{me}} having coffee together".'
                    ),
                    "minLength": 1,
                },
            },
            "required": ["prompt"],
        },
    },
}

SEARCH_WEB_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_WEB,
        "description": (
            "Search the web for current information, recent events, real-time data, "
            "or facts beyond your training data. Use this when the user asks about "
            "something that requires up-to-date information."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "The search query to execute. Be specific and use keywords "
                        'that will help find relevant information, e.g. "current '
                        'weather in Tokyo".'
                    ),
                    "minLength": 1,
                    "maxLength": 500,
                },
                "maxResults": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 10,
                    "default": 5,
                    "description": "Maximum number of search results to retrieve. Default is 5.",
                },
            },
            "required": ["query"],
        },
    },
}

# Image vendors that cap the tool-use prompt they receive, in bytes.
IMAGE_PROMPT_BYTE_LIMITS: dict[str, int] = {"GROK": GROK_IMAGE_PROMPT_MAX_BYTES}


@dataclass(frozen=True)
class ToolSelection:
    """Tools offered for one turn and whether vendor web search replaces ours."""

    tools: list[dict[str, Any]] = field(default_factory=list)
    use_native_web_search: bool = False


def build_tools(
    *,
    image_profile_configured: bool,
    image_provider: str | None = None,
    web_search_allowed: bool = False,
    native_web_search: bool = False,
) -> ToolSelection:
    """Pick the canonical tools for a turn.

    Image generation needs a configured image profile. Web search is offered
    as a tool only when allowed and the chat vendor cannot search natively;
    otherwise the vendor's own search is switched on instead.
    """
    tools: list[dict[str, Any]] = []
    if image_profile_configured:
        tool = deepcopy(GENERATE_IMAGE_TOOL)
        limit = IMAGE_PROMPT_BYTE_LIMITS.get((image_provider or "").upper())
        if limit is not None:
            tool = apply_length_limit(tool, limit)
        tools.append(tool)

    use_native = web_search_allowed and native_web_search
    if web_search_allowed and not native_web_search:
        tools.append(deepcopy(SEARCH_WEB_TOOL))

    logger.debug(
        "Selected tools: %s (native web search: %s)",
        [t["function"]["name"] for t in tools],
        use_native,
    )
    return ToolSelection(tools=tools, use_native_web_search=use_native)
