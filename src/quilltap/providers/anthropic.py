"""Anthropic Messages API provider."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import APIError, CapabilityError, ConfigurationError, NetworkError
from quilltap.providers._errors import wrap_provider_error
from quilltap.providers._utils import (
    DEFAULT_MAX_TOKENS,
    aclose_resource,
    collect_attachment_parts,
    get_field,
    resolve_exclusive_sampling,
    split_system,
)
from quilltap.providers.base import IMAGE_MIME_TYPES, ProviderCapabilities
from quilltap.providers.models import (
    AttachmentResults,
    ChatResponse,
    StreamEvent,
    Usage,
)
from quilltap.providers.streaming import AnthropicMessageDraft
from quilltap.tools.formatting import to_vendor_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        FileAttachment,
        ImageGenParams,
        ImageGenResponse,
        Message,
    )

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES: frozenset[str] = IMAGE_MIME_TYPES | {"application/pdf"}
VALIDATION_MODEL = "claude-haiku-4-5-20251015"
KNOWN_MODELS: tuple[str, ...] = (
    "claude-sonnet-4-5-20250929",
    "claude-haiku-4-5-20251015",
    "claude-opus-4-1-20250805",
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-3-opus-20240229",
    "claude-3-haiku-20240307",
)


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. Tool results are
    replayed as user turns, so several user messages can arrive in a row;
    their content blocks are merged into a single message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _encode_attachment(attachment: FileAttachment) -> dict[str, Any]:
    block_type = "document" if attachment.mime_type == "application/pdf" else "image"
    return {
        "type": block_type,
        "source": {
            "type": "base64",
            "media_type": attachment.mime_type,
            "data": attachment.data,
        },
    }


class AnthropicProvider:
    """Anthropic Messages API provider."""

    name = "ANTHROPIC"

    def __init__(self, base_url: str | None = None) -> None:
        """Initialize; *base_url* overrides the SDK default endpoint."""
        self.base_url = base_url
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if not api_key:
            raise ConfigurationError(
                "Anthropic provider requires an API key",
                hint="Set ANTHROPIC_API_KEY or pass api_key=...",
            )
        client = self._clients.get(api_key)
        if client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            client = AsyncAnthropic(api_key=api_key, base_url=self.base_url)
            self._clients[api_key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            supports_file_attachments=True,
            supported_mime_types=SUPPORTED_MIME_TYPES,
        )

    @staticmethod
    def _build_messages(
        messages: list[Message],
    ) -> tuple[list[dict[str, Any]], AttachmentResults]:
        formatted: list[dict[str, Any]] = []
        results = AttachmentResults()
        for message in messages:
            role = "assistant" if message.role == "assistant" else "user"
            if not message.attachments:
                _append_message(formatted, {"role": role, "content": message.content})
                continue
            parts, message_results = collect_attachment_parts(
                message,
                vendor="Anthropic",
                supported_mime_types=SUPPORTED_MIME_TYPES,
                encode=_encode_attachment,
            )
            results.extend(message_results)
            content: list[dict[str, Any]] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            content.extend(parts)
            _append_message(formatted, {"role": role, "content": content or message.content})
        return formatted, results

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], AttachmentResults]:
        system, turns = split_system(request.messages)
        messages, results = self._build_messages(turns)
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            **resolve_exclusive_sampling(request.temperature, request.top_p),
        }
        if system:
            kwargs["system"] = system
        if request.stop:
            kwargs["stop_sequences"] = list(request.stop)
        if request.tools:
            kwargs["tools"] = to_vendor_tools(request.tools, "anthropic")
            kwargs["tool_choice"] = {"type": "auto"}
        return kwargs, results

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming Messages call."""
        kwargs, results = self._prepare(request)
        client = self._get_client(api_key)
        try:
            response = await client.messages.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="send") from e

        text = "".join(
            get_field(block, "text") or ""
            for block in get_field(response, "content") or []
            if get_field(block, "type") == "text"
        )
        usage = get_field(response, "usage")
        input_tokens = get_field(usage, "input_tokens", 0) or 0
        output_tokens = get_field(usage, "output_tokens", 0) or 0
        dump = getattr(response, "model_dump", None)
        return ChatResponse(
            content=text,
            finish_reason=get_field(response, "stop_reason"),
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            attachment_results=results,
            raw_response=dump() if callable(dump) else response,
        )

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream content-block events; ``message_stop`` is terminal."""
        kwargs, results = self._prepare(request)
        client = self._get_client(api_key)
        draft = AnthropicMessageDraft(model=request.model)
        terminal_sent = False
        event_stream: Any = None
        try:
            event_stream = await client.messages.create(
                **kwargs, stream=True
            )
            async for event in event_stream:
                if terminal_sent:
                    continue
                event_type = get_field(event, "type")
                if event_type == "message_start":
                    message = get_field(event, "message")
                    draft.id = get_field(message, "id")
                    draft.model = get_field(message, "model") or draft.model
                    usage = get_field(message, "usage")
                    draft.input_tokens = get_field(usage, "input_tokens", 0) or 0
                elif event_type == "content_block_start":
                    block = get_field(event, "content_block")
                    index = get_field(event, "index", 0)
                    draft.start_block(
                        index,
                        get_field(block, "type"),
                        id=get_field(block, "id") or "",
                        name=get_field(block, "name") or "",
                    )
                    text = get_field(block, "text")
                    if text:
                        draft.add_text(index, text)
                        yield StreamEvent.delta(text)
                elif event_type == "content_block_delta":
                    delta = get_field(event, "delta")
                    index = get_field(event, "index", 0)
                    delta_type = get_field(delta, "type")
                    if delta_type == "text_delta":
                        text = get_field(delta, "text") or ""
                        if text:
                            draft.add_text(index, text)
                            yield StreamEvent.delta(text)
                    elif delta_type == "input_json_delta":
                        draft.add_input_json(index, get_field(delta, "partial_json") or "")
                elif event_type == "message_delta":
                    delta = get_field(event, "delta")
                    draft.stop_reason = get_field(delta, "stop_reason") or draft.stop_reason
                    usage = get_field(event, "usage")
                    draft.output_tokens = get_field(usage, "output_tokens", 0) or 0
                elif event_type == "message_stop":
                    terminal_sent = True
                    logger.debug(
                        "Anthropic stream finished: stop_reason=%s", draft.stop_reason
                    )
                    yield StreamEvent.terminal(
                        usage=draft.usage,
                        attachment_results=results,
                        raw_response=draft.to_raw(),
                    )
            if not terminal_sent:
                raise NetworkError(
                    "Anthropic stream ended before message_stop",
                    retryable=True,
                    provider=self.name,
                    phase="stream",
                )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e
        finally:
            if event_stream is not None:
                await aclose_resource(event_stream)

    async def validate_api_key(self, api_key: str) -> bool:
        """Send a 1-token request to the cheapest model."""
        try:
            await self._get_client(api_key).messages.create(
                model=VALIDATION_MODEL,
                max_tokens=1,
                messages=[{"role": "user", "content": "Hi"}],
            )
        except Exception as e:
            logger.warning("Anthropic API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Anthropic has no cheap listing we rely on; return the known set."""
        return list(KNOWN_MODELS)

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Anthropic has no image output."""
        raise CapabilityError(
            "Anthropic does not support image generation. "
            "Use OpenAI, Google, Grok, or OpenRouter for image generation."
        )

    async def aclose(self) -> None:
        """Close any SDK clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(client)
