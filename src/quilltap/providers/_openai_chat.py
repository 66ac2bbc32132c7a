"""Chat Completions plumbing shared by every OpenAI-dialect vendor.

OpenAI, OpenRouter, Grok, Gab AI, and generic compatible endpoints all speak
the same wire protocol and differ only in base URL, headers, and attachment
rules. Each adapter composes these functions instead of subclassing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import APIError
from quilltap.providers._errors import wrap_provider_error
from quilltap.providers._utils import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_P,
    aclose_resource,
    collect_attachment_parts,
    data_url,
    decode_text_attachment,
    get_field,
    is_text_mime,
    reject_attachments,
)
from quilltap.providers.base import IMAGE_MIME_TYPES
from quilltap.providers.models import (
    AttachmentResults,
    ChatResponse,
    GeneratedImage,
    ImageGenResponse,
    StreamEvent,
    Usage,
)
from quilltap.providers.streaming import ChatCompletionDraft
from quilltap.tools.formatting import to_vendor_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from quilltap.providers.models import (
        ChatRequest,
        FileAttachment,
        ImageGenParams,
        Message,
    )

logger = logging.getLogger(__name__)


def make_client(
    api_key: str,
    *,
    base_url: str | None = None,
    default_headers: dict[str, str] | None = None,
) -> Any:
    """Construct an ``AsyncOpenAI`` client for *base_url*."""
    try:
        from openai import AsyncOpenAI
    except ImportError as e:
        raise APIError(
            "openai package not installed",
            hint="pip install openai",
        ) from e
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        default_headers=default_headers,
    )


# =============================================================================
# Request formatting
# =============================================================================


def attachment_encoder(binary_error: str) -> Callable[[FileAttachment], dict[str, Any]]:
    """Return an encoder producing ``image_url`` or inline text parts.

    Attachments that are neither images nor text are rejected with
    *binary_error*. Callers narrow further through their supported MIME set.
    """

    def encode(attachment: FileAttachment) -> dict[str, Any]:
        if attachment.mime_type in IMAGE_MIME_TYPES:
            return {
                "type": "image_url",
                "image_url": {"url": data_url(attachment), "detail": "auto"},
            }
        if is_text_mime(attachment.mime_type):
            return {"type": "text", "text": decode_text_attachment(attachment)}
        raise ValueError(binary_error)

    return encode


def format_messages(
    messages: list[Message],
    *,
    vendor: str,
    supported_mime_types: frozenset[str] = frozenset(),
    encode: Callable[[FileAttachment], dict[str, Any]] | None = None,
    unsupported_reason: str | None = None,
) -> tuple[list[dict[str, Any]], AttachmentResults]:
    """Format canonical messages as Chat Completions messages.

    The system prompt stays inline. When *encode* is None every attachment is
    rejected with *unsupported_reason* and only the text is sent.
    """
    formatted: list[dict[str, Any]] = []
    results = AttachmentResults()
    for message in messages:
        role = "user" if message.role == "tool" else message.role
        if not message.attachments:
            formatted.append({"role": role, "content": message.content})
            continue

        if encode is None:
            results.extend(
                reject_attachments(
                    message, unsupported_reason or f"{vendor} does not support file attachments"
                )
            )
            formatted.append({"role": role, "content": message.content})
            continue

        parts, message_results = collect_attachment_parts(
            message,
            vendor=vendor,
            supported_mime_types=supported_mime_types,
            encode=encode,
        )
        results.extend(message_results)
        content: list[dict[str, Any]] = []
        if message.content:
            content.append({"type": "text", "text": message.content})
        content.extend(parts)
        formatted.append({"role": role, "content": content or message.content})
    return formatted, results


def build_chat_kwargs(
    request: ChatRequest,
    messages: list[dict[str, Any]],
    *,
    native_web_search: bool = False,
) -> dict[str, Any]:
    """Map canonical request parameters onto ``chat.completions.create``."""
    kwargs: dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "temperature": (
            request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        ),
        "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        "top_p": request.top_p if request.top_p is not None else DEFAULT_TOP_P,
    }
    if request.stop:
        kwargs["stop"] = list(request.stop)
    if request.tools:
        kwargs["tools"] = to_vendor_tools(request.tools, "openai")
        kwargs["tool_choice"] = "auto"
    if request.web_search_enabled and native_web_search:
        kwargs["web_search_options"] = {}
    return kwargs


# =============================================================================
# Calls
# =============================================================================


def _usage(raw: Any) -> Usage:
    prompt = get_field(raw, "prompt_tokens", 0) or 0
    completion = get_field(raw, "completion_tokens", 0) or 0
    total = get_field(raw, "total_tokens", 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


async def complete(
    client: Any,
    kwargs: dict[str, Any],
    attachment_results: AttachmentResults,
    *,
    provider: str,
) -> ChatResponse:
    """Run a non-streaming completion."""
    try:
        response = await client.chat.completions.create(**kwargs)
    except asyncio.CancelledError:
        raise
    except APIError:
        raise
    except Exception as e:
        raise wrap_provider_error(e, provider=provider, phase="send") from e

    choices = get_field(response, "choices") or []
    choice = choices[0] if choices else None
    message = get_field(choice, "message")
    dump = getattr(response, "model_dump", None)
    return ChatResponse(
        content=get_field(message, "content") or "",
        finish_reason=get_field(choice, "finish_reason"),
        usage=_usage(get_field(response, "usage")),
        attachment_results=attachment_results,
        raw_response=dump() if callable(dump) else response,
    )


def _terminal(draft: ChatCompletionDraft, attachment_results: AttachmentResults) -> StreamEvent:
    return StreamEvent.terminal(
        usage=draft.usage or Usage(),
        attachment_results=attachment_results,
        raw_response=draft.to_raw(),
    )


async def stream(
    client: Any,
    kwargs: dict[str, Any],
    attachment_results: AttachmentResults,
    *,
    provider: str,
) -> AsyncIterator[StreamEvent]:
    """Stream a completion, reconstructing the final message from deltas.

    The terminal event fires once ``finish_reason`` and ``usage`` have both
    been seen, or immediately on ``finish_reason == "tool_calls"`` since a
    usage chunk may never follow. The transport is drained either way.
    """
    draft = ChatCompletionDraft(model=kwargs.get("model"))
    terminal_sent = False
    response_stream: Any = None
    try:
        response_stream = await client.chat.completions.create(
            **kwargs,
            stream=True,
            stream_options={"include_usage": True},
        )
        async for chunk in response_stream:
            if terminal_sent:
                continue
            if draft.id is None:
                draft.id = get_field(chunk, "id")
            usage = get_field(chunk, "usage")
            if usage:
                draft.usage = _usage(usage)

            choices = get_field(chunk, "choices") or []
            if choices:
                choice = choices[0]
                delta = get_field(choice, "delta")
                text = get_field(delta, "content")
                if text:
                    draft.add_text(text)
                    yield StreamEvent.delta(text)
                for tool_delta in get_field(delta, "tool_calls") or []:
                    function = get_field(tool_delta, "function")
                    draft.merge_tool_call(
                        get_field(tool_delta, "index", 0) or 0,
                        id=get_field(tool_delta, "id"),
                        name=get_field(function, "name"),
                        arguments=get_field(function, "arguments"),
                    )
                finish_reason = get_field(choice, "finish_reason")
                if finish_reason:
                    draft.finish_reason = finish_reason

            if draft.finish_reason == "tool_calls" or (
                draft.finish_reason and draft.usage is not None
            ):
                terminal_sent = True
                logger.debug(
                    "%s stream finished: reason=%s tool_calls=%d",
                    provider,
                    draft.finish_reason,
                    len(draft.tool_calls),
                )
                yield _terminal(draft, attachment_results)

        if not terminal_sent:
            # Endpoint ignored stream_options or closed without a finish_reason.
            yield _terminal(draft, attachment_results)
    except asyncio.CancelledError:
        raise
    except APIError:
        raise
    except Exception as e:
        raise wrap_provider_error(e, provider=provider, phase="stream") from e
    finally:
        if response_stream is not None:
            await aclose_resource(response_stream)


async def list_model_ids(client: Any) -> list[str]:
    """Return model ids from ``GET /models``."""
    page = await client.models.list()
    return [get_field(m, "id") for m in get_field(page, "data") or [] if get_field(m, "id")]


async def generate_images(
    client: Any,
    params: ImageGenParams,
    *,
    provider: str,
    model: str,
    mime_type: str,
    extra: dict[str, Any] | None = None,
) -> ImageGenResponse:
    """Call ``images.generate`` and collect base64 payloads."""
    kwargs: dict[str, Any] = {
        "model": model,
        "prompt": params.prompt,
        "n": params.n,
        "response_format": "b64_json",
    }
    kwargs.update(extra or {})
    try:
        response = await client.images.generate(**kwargs)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise wrap_provider_error(e, provider=provider, phase="image") from e

    images = [
        GeneratedImage(
            data=get_field(item, "b64_json"),
            mime_type=mime_type,
            revised_prompt=get_field(item, "revised_prompt"),
        )
        for item in get_field(response, "data") or []
        if get_field(item, "b64_json")
    ]
    if not images:
        raise APIError(f"{provider} returned no images", provider=provider, phase="image")
    return ImageGenResponse(images=images, raw=response)
