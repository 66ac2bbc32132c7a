"""Tool execution: the executor contract and a handler-table implementation.

The orchestrator only depends on :class:`ToolExecutor`. Applications with
their own tool runtime implement that protocol directly; simple setups map
tool names to async handlers with :class:`HandlerToolExecutor`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from quilltap.errors import ToolCallError
from quilltap.tools.definitions import GENERATE_IMAGE

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from quilltap.tools.parsing import ToolCallRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolExecutionContext:
    """Identifiers a tool may need to act on behalf of a chat turn.

    ``calling_participant_id`` lets image prompts resolve ``{{me}}``-style
    placeholders to the character that issued the call.
    """

    chat_id: str
    user_id: str
    character_id: str | None = None
    calling_participant_id: str | None = None
    image_profile_id: str | None = None
    embedding_profile_id: str | None = None


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of one tool call, successful or not."""

    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ToolExecutor(Protocol):
    """Run one tool call and report its outcome; failures are results, not raises."""

    async def execute(
        self, call: ToolCallRequest, context: ToolExecutionContext
    ) -> ToolExecutionResult: ...


class HandlerToolExecutor:
    """Dispatch tool calls by name to async handler functions.

    A handler receives the parsed arguments and the context and returns the
    tool's result payload. Exceptions become failed results so one broken
    tool never aborts the turn.
    """

    def __init__(
        self,
        handlers: Mapping[
            str, Callable[[dict[str, Any], ToolExecutionContext], Awaitable[Any]]
        ],
    ) -> None:
        self._handlers = dict(handlers)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(
        self, call: ToolCallRequest, context: ToolExecutionContext
    ) -> ToolExecutionResult:
        handler = self._handlers.get(call.name)
        if handler is None:
            error = ToolCallError(f"Unknown tool: {call.name}")
            logger.warning("No handler registered for tool %r", call.name)
            return ToolExecutionResult(tool_name=call.name, success=False, error=str(error))

        try:
            result = await handler(call.arguments, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Tool %r failed", call.name, exc_info=True)
            return ToolExecutionResult(
                tool_name=call.name, success=False, error=str(e) or type(e).__name__
            )
        return ToolExecutionResult(tool_name=call.name, success=True, result=result)


def format_tool_result_text(result: ToolExecutionResult) -> str:
    """Render a tool result the way it is shown to the model and the user."""
    if not result.success:
        return f"Error: {result.error or 'Tool execution failed'}"
    if result.tool_name == GENERATE_IMAGE and isinstance(result.result, list):
        count = len(result.result)
        return f"Generated {count} image(s)"
    if isinstance(result.result, str):
        return result.result
    return json.dumps(result.result, indent=2, default=str)
