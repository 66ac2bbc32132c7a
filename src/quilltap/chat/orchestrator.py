"""Per-turn conversation orchestration.

One :class:`ConversationOrchestrator` drives a single user turn:

    BUILDING_REQUEST -> STREAMING -> [TOOL_DETECTED -> EXECUTING_TOOLS -> STREAMING]*
                     -> FINALIZING -> DONE

Any exception moves the turn to FAILED. Text deltas are forwarded to the
transport as they arrive; nothing is persisted until FINALIZING.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
import logging
from typing import TYPE_CHECKING, Any

from quilltap.chat.history import tool_call_placeholder, tool_result_message
from quilltap.chat.repository import ChatMessage
from quilltap.config import DEFAULT_MAX_TOOL_ITERATIONS
from quilltap.errors import NetworkError, user_facing_message
from quilltap.providers._utils import aclose_resource
from quilltap.providers.models import AttachmentResults, ChatRequest, Message, Usage
from quilltap.tools.definitions import build_tools
from quilltap.tools.executor import ToolExecutionContext, format_tool_result_text
from quilltap.tools.parsing import detect_tool_calls

if TYPE_CHECKING:
    from quilltap.chat.repository import ChatRepository
    from quilltap.chat.transport import Transport
    from quilltap.providers.base import ProviderAdapter
    from quilltap.providers.registry import ProviderRegistry
    from quilltap.tools.executor import ToolExecutionResult, ToolExecutor
    from quilltap.tools.parsing import ToolCallRequest

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Failed to generate response"


class TurnState(str, Enum):
    BUILDING_REQUEST = "BUILDING_REQUEST"
    STREAMING = "STREAMING"
    TOOL_DETECTED = "TOOL_DETECTED"
    EXECUTING_TOOLS = "EXECUTING_TOOLS"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TurnContext:
    """Who the turn is for and which optional capabilities are active."""

    chat_id: str
    user_id: str
    character_id: str | None = None
    calling_participant_id: str | None = None
    image_profile_id: str | None = None
    #: Vendor behind the image profile; some vendors cap tool prompt size.
    image_provider: str | None = None
    embedding_profile_id: str | None = None
    web_search_allowed: bool = False
    #: Attached to the saved assistant message after the turn, if any.
    memory_debug_logs: list[str] | None = None

    def execution_context(self) -> ToolExecutionContext:
        return ToolExecutionContext(
            chat_id=self.chat_id,
            user_id=self.user_id,
            character_id=self.character_id,
            calling_participant_id=self.calling_participant_id,
            image_profile_id=self.image_profile_id,
            embedding_profile_id=self.embedding_profile_id,
        )


@dataclass(frozen=True)
class ToolRecord:
    """A detected call paired with its execution result."""

    call: ToolCallRequest
    result: ToolExecutionResult


@dataclass
class TurnOutcome:
    """What a finished (or failed) turn produced."""

    state: TurnState = TurnState.BUILDING_REQUEST
    content: str = ""
    message_id: str | None = None
    usage: Usage = field(default_factory=Usage)
    attachment_results: AttachmentResults | None = None
    #: Vendor-native response of the last call.
    raw_response: Any = None
    tool_records: list[ToolRecord] = field(default_factory=list)
    saved_messages: list[ChatMessage] = field(default_factory=list)
    vendor_calls: int = 0
    tool_iteration_cap_reached: bool = False
    error: BaseException | None = None

    @property
    def tools_executed(self) -> bool:
        return bool(self.tool_records)


@dataclass
class _CallResult:
    text: str = ""
    raw_response: Any = None
    usage: Usage | None = None
    attachment_results: AttachmentResults | None = None


class ConversationOrchestrator:
    """Stream a reply, run requested tools, and persist the turn.

    Collaborators are injected: the provider adapter, a repository for the
    chat log, a tool executor, and the outbound transport. The transport is
    closed exactly once when :meth:`run` returns, on every path.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        *,
        api_key: str,
        model: str,
        repository: ChatRepository,
        tool_executor: ToolExecutor,
        transport: Transport,
        provider_name: str | None = None,
        registry: ProviderRegistry | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        debug: bool = False,
    ) -> None:
        self._provider = provider
        self._api_key = api_key
        self._model = model
        self._repository = repository
        self._executor = tool_executor
        self._transport = transport
        self._provider_name = (provider_name or provider.name).upper()
        self._registry = registry
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._top_p = top_p
        self._max_tool_iterations = max_tool_iterations
        self._debug = debug
        self._state = TurnState.BUILDING_REQUEST

    @property
    def state(self) -> TurnState:
        return self._state

    async def run(self, history: list[Message], context: TurnContext) -> TurnOutcome:
        """Run one turn over *history* (which already ends with the user message).

        Vendor and persistence failures are reported to the transport as a
        single error event and recorded on the returned outcome.
        """
        outcome = TurnOutcome()
        try:
            await self._run(history, context, outcome)
        except asyncio.CancelledError:
            self._state = outcome.state = TurnState.FAILED
            raise
        except Exception as e:
            self._state = outcome.state = TurnState.FAILED
            outcome.error = e
            logger.error("Chat turn failed for chat %s", context.chat_id, exc_info=True)
            await self._transport.send(
                {"error": ERROR_MESSAGE, "details": user_facing_message(e)}
            )
        finally:
            await self._transport.close()
        return outcome

    async def _run(
        self, history: list[Message], context: TurnContext, outcome: TurnOutcome
    ) -> None:
        self._enter(TurnState.BUILDING_REQUEST, outcome)
        selection = build_tools(
            image_profile_configured=context.image_profile_id is not None,
            image_provider=context.image_provider,
            web_search_allowed=context.web_search_allowed,
            native_web_search=self._provider.capabilities.supports_web_search,
        )
        messages = list(history)
        if self._debug:
            await self._transport.send(
                {"debugLLMRequest": self._debug_details(messages, selection.tools)}
            )

        text_parts: list[str] = []
        iterations = 0
        while True:
            self._enter(TurnState.STREAMING, outcome)
            request = ChatRequest(
                messages=list(messages),
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                top_p=self._top_p,
                tools=selection.tools or None,
                web_search_enabled=selection.use_native_web_search,
            )
            result = await self._stream_once(request)
            outcome.vendor_calls += 1
            text_parts.append(result.text)
            if result.usage is not None:
                outcome.usage = outcome.usage + result.usage
            if outcome.attachment_results is None:
                outcome.attachment_results = result.attachment_results

            self._enter(TurnState.TOOL_DETECTED, outcome)
            calls = self._detect(result.raw_response)
            if not calls:
                outcome.raw_response = result.raw_response
                break
            logger.info("Detected %d tool call(s) from %s", len(calls), self._provider_name)
            if iterations >= self._max_tool_iterations:
                logger.warning(
                    "Tool iteration cap (%d) reached for chat %s; finalizing",
                    self._max_tool_iterations,
                    context.chat_id,
                )
                outcome.tool_iteration_cap_reached = True
                outcome.raw_response = result.raw_response
                break
            await self._transport.send({"toolsDetected": len(calls)})

            self._enter(TurnState.EXECUTING_TOOLS, outcome)
            records = await self._execute(calls, context)
            outcome.tool_records.extend(records)
            messages.append(
                Message(
                    role="assistant",
                    content=result.text.strip()
                    or tool_call_placeholder(c.name for c in calls),
                )
            )
            messages.extend(
                tool_result_message(r.result.tool_name, format_tool_result_text(r.result))
                for r in records
            )
            iterations += 1

        outcome.content = "\n\n".join(p.strip() for p in text_parts if p.strip())
        self._enter(TurnState.FINALIZING, outcome)
        await self._finalize(context, outcome)
        self._enter(TurnState.DONE, outcome)

    def _enter(self, state: TurnState, outcome: TurnOutcome) -> None:
        logger.debug("Turn state %s -> %s", self._state.value, state.value)
        self._state = outcome.state = state

    async def _stream_once(self, request: ChatRequest) -> _CallResult:
        result = _CallResult()
        chunks: list[str] = []
        terminal_seen = False
        stream = self._provider.stream_message(request, self._api_key)
        try:
            async for event in stream:
                if event.content:
                    chunks.append(event.content)
                    await self._transport.send({"content": event.content})
                if event.done:
                    terminal_seen = True
                    result.usage = event.usage
                    result.attachment_results = event.attachment_results
                    result.raw_response = event.raw_response
        finally:
            await aclose_resource(stream)
        if not terminal_seen:
            raise NetworkError(
                f"{self._provider_name} stream ended without a final response",
                provider=self._provider_name,
                phase="stream",
                retryable=True,
            )
        result.text = "".join(chunks)
        return result

    def _detect(self, raw_response: Any) -> list[ToolCallRequest]:
        if raw_response is None:
            return []
        plugin = self._registry.get(self._provider_name) if self._registry else None
        if plugin is not None:
            return plugin.parse_tool_calls(raw_response)
        return detect_tool_calls(raw_response, self._provider_name)

    async def _execute(
        self, calls: list[ToolCallRequest], context: TurnContext
    ) -> list[ToolRecord]:
        # Sequential: image tools link results to the turn's messages in order.
        execution_context = context.execution_context()
        records: list[ToolRecord] = []
        for call in calls:
            result = await self._executor.execute(call, execution_context)
            records.append(ToolRecord(call=call, result=result))
            await self._transport.send(
                {
                    "toolResult": {
                        "name": result.tool_name,
                        "success": result.success,
                        "result": result.result if result.success else result.error,
                    }
                }
            )
        return records

    async def _finalize(self, context: TurnContext, outcome: TurnOutcome) -> None:
        chat_id = context.chat_id
        assistant_id: str | None = None
        if outcome.content.strip():
            message = await self._repository.add_message(
                chat_id,
                ChatMessage(
                    role="ASSISTANT",
                    content=outcome.content,
                    token_count=outcome.usage.total_tokens or None,
                    raw_response=outcome.raw_response,
                ),
            )
            outcome.saved_messages.append(message)
            assistant_id = message.id

        first_tool_id: str | None = None
        for record in outcome.tool_records:
            message = await self._repository.add_message(
                chat_id,
                ChatMessage(role="TOOL", content=self._tool_message_content(record)),
            )
            outcome.saved_messages.append(message)
            first_tool_id = first_tool_id or message.id

        await self._repository.update(
            chat_id, {"updated_at": datetime.now(timezone.utc).isoformat()}
        )
        if assistant_id and context.memory_debug_logs:
            await self._repository.update_message(
                chat_id, assistant_id, {"debug_memory_logs": list(context.memory_debug_logs)}
            )

        outcome.message_id = assistant_id or first_tool_id
        logger.info(
            "Finalized turn for chat %s: %d message(s) saved, %d tool call(s)",
            chat_id,
            len(outcome.saved_messages),
            len(outcome.tool_records),
        )
        await self._transport.send(
            {
                "done": True,
                "messageId": outcome.message_id,
                "usage": outcome.usage.to_dict() if outcome.vendor_calls else None,
                "attachmentResults": (
                    outcome.attachment_results.to_dict()
                    if outcome.attachment_results is not None
                    else None
                ),
                "toolsExecuted": outcome.tools_executed,
                "toolIterationCapReached": outcome.tool_iteration_cap_reached,
            }
        )

    def _tool_message_content(self, record: ToolRecord) -> str:
        result = record.result
        return json.dumps(
            {
                "toolName": result.tool_name,
                "success": result.success,
                "result": format_tool_result_text(result),
                "arguments": record.call.arguments,
                "provider": result.metadata.get("provider"),
                "model": result.metadata.get("model"),
            },
            default=str,
        )

    def _debug_details(
        self, messages: list[Message], tools: list[dict[str, Any]]
    ) -> dict[str, Any]:
        return {
            "provider": self._provider_name,
            "model": self._model,
            "temperature": self._temperature,
            "maxTokens": self._max_tokens,
            "topP": self._top_p,
            "messageCount": len(messages),
            "hasTools": bool(tools),
            "tools": tools or None,
            "messages": [
                {
                    "role": m.role,
                    "contentLength": len(m.content),
                    "hasAttachments": bool(m.attachments),
                }
                for m in messages
            ],
        }
