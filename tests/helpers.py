"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off adapter and SDK fakes as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from types import SimpleNamespace
from typing import Any

from quilltap.providers.base import ProviderCapabilities
from quilltap.providers.models import (
    AttachmentResults,
    ChatRequest,
    ChatResponse,
    StreamEvent,
    Usage,
)
from quilltap.providers.streaming import ChatCompletionDraft
from quilltap.tools.executor import ToolExecutionResult

# =============================================================================
# Adapter doubles
# =============================================================================


def text_reply(*chunks: str, usage: Usage | None = None) -> list[StreamEvent]:
    """Stream events for a plain text answer in OpenAI raw shape."""
    draft = ChatCompletionDraft(model="scripted", finish_reason="stop")
    for chunk in chunks:
        draft.add_text(chunk)
    draft.usage = usage or Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
    return [StreamEvent.delta(c) for c in chunks] + [
        StreamEvent.terminal(
            usage=draft.usage,
            attachment_results=AttachmentResults(),
            raw_response=draft.to_raw(),
        )
    ]


def tool_reply(
    name: str, arguments: dict[str, Any], *chunks: str, call_id: str = "call_1"
) -> list[StreamEvent]:
    """Stream events for an answer that requests one tool call."""
    draft = ChatCompletionDraft(model="scripted", finish_reason="tool_calls")
    for chunk in chunks:
        draft.add_text(chunk)
    draft.merge_tool_call(0, id=call_id, name=name, arguments=json.dumps(arguments))
    draft.usage = Usage(prompt_tokens=1, completion_tokens=1, total_tokens=2)
    return [StreamEvent.delta(c) for c in chunks] + [
        StreamEvent.terminal(
            usage=draft.usage,
            attachment_results=AttachmentResults(),
            raw_response=draft.to_raw(),
        )
    ]


@dataclass
class ScriptedAdapter:
    """ProviderAdapter double that streams a scripted reply per call.

    Each script item is a list of StreamEvents or an exception to raise
    after any events before it. When the script runs out, ``repeat`` (if set)
    is streamed again for every further call.
    """

    script: list[list[StreamEvent] | BaseException] = field(default_factory=list)
    repeat: list[StreamEvent] | None = None
    name: str = "OPENAI"
    native_web_search: bool = False
    requests: list[ChatRequest] = field(default_factory=list)
    closed: bool = False

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_file_attachments=False,
            supports_web_search=self.native_web_search,
        )

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        raise NotImplementedError

    async def stream_message(self, request: ChatRequest, api_key: str):
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
        elif self.repeat is not None:
            item = self.repeat
        else:
            item = text_reply("ok")
        if isinstance(item, BaseException):
            raise item
        for event in item:
            yield event

    async def validate_api_key(self, api_key: str) -> bool:
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        return []

    async def generate_image(self, params: Any, api_key: str) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Collaborator doubles
# =============================================================================


@dataclass
class RecordingTransport:
    """Transport that keeps every event and counts close calls."""

    events: list[dict[str, Any]] = field(default_factory=list)
    close_calls: int = 0

    async def send(self, event: dict[str, Any]) -> None:
        assert self.close_calls == 0, "send after close"
        self.events.append(event)

    async def close(self) -> None:
        self.close_calls += 1

    def of(self, key: str) -> list[Any]:
        return [e[key] for e in self.events if key in e]


@dataclass
class RecordingExecutor:
    """ToolExecutor that records calls and returns a fixed result."""

    result: Any = field(default_factory=lambda: {"ok": True})
    success: bool = True
    calls: list[Any] = field(default_factory=list)
    contexts: list[Any] = field(default_factory=list)

    async def execute(self, call: Any, context: Any) -> ToolExecutionResult:
        self.calls.append(call)
        self.contexts.append(context)
        if not self.success:
            return ToolExecutionResult(
                tool_name=call.name, success=False, error="tool exploded"
            )
        return ToolExecutionResult(
            tool_name=call.name,
            success=True,
            result=self.result,
            metadata={"provider": "OPENAI", "model": "dall-e-3"},
        )


# =============================================================================
# SDK stream doubles
# =============================================================================


class FakeAsyncStream:
    """Async iterator over prepared SDK chunks that records ``close``."""

    def __init__(self, items: list[Any], error: BaseException | None = None) -> None:
        self._items = list(items)
        self._error = error
        self.consumed = 0
        self.closed = False

    def __aiter__(self) -> FakeAsyncStream:
        return self

    async def __anext__(self) -> Any:
        if self._items:
            self.consumed += 1
            return self._items.pop(0)
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopAsyncIteration

    async def close(self) -> None:
        self.closed = True


class _FakeCompletions:
    def __init__(self, stream: FakeAsyncStream | None, response: Any) -> None:
        self._stream = stream
        self._response = response
        self.last_kwargs: dict[str, Any] | None = None

    async def create(self, **kwargs: Any) -> Any:
        self.last_kwargs = kwargs
        if kwargs.get("stream"):
            return self._stream
        return self._response


def fake_openai_client(
    stream: FakeAsyncStream | None = None, response: Any = None
) -> SimpleNamespace:
    """An ``AsyncOpenAI`` stand-in exposing ``chat.completions.create``."""
    completions = _FakeCompletions(stream, response)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def fake_anthropic_client(
    stream: FakeAsyncStream | None = None, response: Any = None
) -> SimpleNamespace:
    """An ``AsyncAnthropic`` stand-in exposing ``messages.create``."""
    return SimpleNamespace(messages=_FakeCompletions(stream, response))


def openai_chunk(
    *,
    content: str | None = None,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = None,
    usage: dict[str, int] | None = None,
    with_choice: bool = True,
) -> dict[str, Any]:
    """A ``chat.completion.chunk`` as a plain dict."""
    chunk: dict[str, Any] = {"id": "chatcmpl-1", "choices": [], "usage": usage}
    if with_choice:
        delta: dict[str, Any] = {}
        if content is not None:
            delta["content"] = content
        if tool_calls is not None:
            delta["tool_calls"] = tool_calls
        chunk["choices"] = [{"index": 0, "delta": delta, "finish_reason": finish_reason}]
    return chunk


async def collect(stream: Any) -> list[StreamEvent]:
    return [event async for event in stream]
