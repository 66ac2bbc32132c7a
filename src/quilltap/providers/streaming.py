"""In-progress response drafts, one per vendor family.

Each draft mirrors the vendor's full non-streaming response shape while a
stream is being consumed. Text is appended as it arrives; tool-call fragments
are merged by their positional index and only parsed once the stream has
ended. ``to_raw()`` yields the vendor-native final object that the tool-call
parsers consume.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any

from quilltap.providers.models import Usage

logger = logging.getLogger(__name__)


# =============================================================================
# OpenAI-style Chat Completions
# =============================================================================


@dataclass
class ToolCallDraft:
    """A tool call whose argument string is still growing."""

    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ChatCompletionDraft:
    """Accumulates ``chat.completion.chunk`` deltas."""

    id: str | None = None
    model: str | None = None
    content: str = ""
    tool_calls: dict[int, ToolCallDraft] = field(default_factory=dict)
    finish_reason: str | None = None
    usage: Usage | None = None

    def add_text(self, text: str) -> None:
        self.content += text

    def merge_tool_call(
        self,
        index: int,
        *,
        id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> ToolCallDraft:
        """Merge one delta fragment into the call at *index*.

        ``id`` and ``name`` usually arrive once, on the first fragment;
        ``arguments`` arrives as consecutive string pieces.
        """
        draft = self.tool_calls.get(index)
        if draft is None:
            draft = ToolCallDraft(index=index)
            self.tool_calls[index] = draft
        if id:
            draft.id = id
        if name:
            draft.name = name
        if arguments:
            draft.arguments += arguments
        return draft

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_raw(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                self.tool_calls[i].to_dict() for i in sorted(self.tool_calls)
            ]
        usage = self.usage or Usage()
        return {
            "id": self.id,
            "object": "chat.completion",
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "finish_reason": self.finish_reason,
                }
            ],
            "usage": {
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            },
        }


# =============================================================================
# Anthropic Messages
# =============================================================================


@dataclass
class ContentBlockDraft:
    """A text or tool_use block being assembled from stream events."""

    index: int
    type: str
    text: str = ""
    id: str = ""
    name: str = ""
    partial_json: str = ""


@dataclass
class AnthropicMessageDraft:
    """Accumulates Messages API stream events into a ``message`` object."""

    id: str | None = None
    model: str | None = None
    blocks: dict[int, ContentBlockDraft] = field(default_factory=dict)
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0

    def start_block(
        self, index: int, block_type: str, *, id: str = "", name: str = "", text: str = ""
    ) -> ContentBlockDraft:
        block = ContentBlockDraft(index=index, type=block_type, id=id, name=name, text=text)
        self.blocks[index] = block
        return block

    def _block(self, index: int, block_type: str) -> ContentBlockDraft:
        block = self.blocks.get(index)
        if block is None:
            block = self.start_block(index, block_type)
        return block

    def add_text(self, index: int, text: str) -> None:
        self._block(index, "text").text += text

    def add_input_json(self, index: int, fragment: str) -> None:
        self._block(index, "tool_use").partial_json += fragment

    @property
    def text(self) -> str:
        return "".join(
            self.blocks[i].text for i in sorted(self.blocks) if self.blocks[i].type == "text"
        )

    @property
    def usage(self) -> Usage:
        return Usage(
            prompt_tokens=self.input_tokens,
            completion_tokens=self.output_tokens,
            total_tokens=self.input_tokens + self.output_tokens,
        )

    def to_raw(self) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        for i in sorted(self.blocks):
            block = self.blocks[i]
            if block.type == "text":
                content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_input = _parse_tool_input(block)
                if tool_input is None:
                    continue
                content.append(
                    {
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": tool_input,
                    }
                )
        return {
            "id": self.id,
            "type": "message",
            "role": "assistant",
            "content": content,
            "model": self.model,
            "stop_reason": self.stop_reason,
            "usage": {
                "input_tokens": self.input_tokens,
                "output_tokens": self.output_tokens,
            },
        }


def _parse_tool_input(block: ContentBlockDraft) -> dict[str, Any] | None:
    if not block.partial_json.strip():
        return {}
    try:
        value = json.loads(block.partial_json)
    except json.JSONDecodeError:
        logger.error(
            "Dropping tool_use block %r: arguments are not valid JSON", block.name
        )
        return None
    if not isinstance(value, dict):
        logger.error("Dropping tool_use block %r: arguments are not an object", block.name)
        return None
    return value


# =============================================================================
# Google GenerateContent
# =============================================================================


@dataclass
class GeminiResponseDraft:
    """Accumulates ``GenerateContentResponse`` chunks."""

    parts: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None
    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0

    def add_text(self, text: str) -> None:
        if self.parts and "text" in self.parts[-1]:
            self.parts[-1]["text"] += text
        else:
            self.parts.append({"text": text})

    def add_function_call(self, name: str, args: dict[str, Any] | None) -> None:
        self.parts.append({"functionCall": {"name": name, "args": dict(args or {})}})

    @property
    def text(self) -> str:
        return "".join(p["text"] for p in self.parts if "text" in p)

    @property
    def usage(self) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_token_count,
            completion_tokens=self.candidates_token_count,
            total_tokens=self.total_token_count,
        )

    def to_raw(self) -> dict[str, Any]:
        return {
            "candidates": [
                {
                    "content": {"role": "model", "parts": list(self.parts)},
                    "finishReason": self.finish_reason,
                }
            ],
            "usageMetadata": {
                "promptTokenCount": self.prompt_token_count,
                "candidatesTokenCount": self.candidates_token_count,
                "totalTokenCount": self.total_token_count,
            },
        }


# =============================================================================
# Ollama /api/chat
# =============================================================================


@dataclass
class OllamaChatDraft:
    """Accumulates NDJSON chat lines."""

    model: str | None = None
    content: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    done_reason: str | None = None
    prompt_eval_count: int = 0
    eval_count: int = 0

    def add_text(self, text: str) -> None:
        self.content += text

    def add_tool_call(self, call: dict[str, Any]) -> None:
        function = call.get("function") or {}
        self.tool_calls.append(
            {
                "id": call.get("id", ""),
                "type": "function",
                "function": {
                    "name": function.get("name", ""),
                    "arguments": function.get("arguments") or {},
                },
            }
        )

    @property
    def usage(self) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_eval_count,
            completion_tokens=self.eval_count,
            total_tokens=self.prompt_eval_count + self.eval_count,
        )

    def to_raw(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = list(self.tool_calls)
        return {
            "model": self.model,
            "message": message,
            "done": True,
            "done_reason": self.done_reason,
            "prompt_eval_count": self.prompt_eval_count,
            "eval_count": self.eval_count,
        }
