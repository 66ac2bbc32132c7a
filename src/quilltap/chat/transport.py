"""Outbound event transport for a chat turn.

Events are plain JSON-serialisable dicts. On the wire they are framed as
Server-Sent Events records (``data: {...}\\n\\n``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_CLOSED = object()


@runtime_checkable
class Transport(Protocol):
    """Sink for turn events; ``close`` is called exactly once per turn."""

    async def send(self, event: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


def encode_sse(event: dict[str, Any]) -> bytes:
    """Frame *event* as one SSE ``data:`` record."""
    return f"data: {json.dumps(event, default=str)}\n\n".encode()


class QueueTransport:
    """Buffer events in an asyncio queue for an HTTP response body to drain.

    Example:
        transport = QueueTransport()
        task = asyncio.create_task(orchestrator.run(history, context))
        async for frame in transport.frames():
            await response.write(frame)
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("Transport is closed")
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            logger.debug("Transport already closed")
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield events in send order until the transport is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield SSE-framed events until the transport is closed."""
        async for event in self.events():
            yield encode_sse(event)
