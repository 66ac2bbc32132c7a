"""Google Gemini provider (google-genai SDK)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any

from quilltap.errors import APIError, ConfigurationError
from quilltap.providers._errors import wrap_provider_error
from quilltap.providers._utils import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    aclose_resource,
    collect_attachment_parts,
    get_field,
    split_system,
)
from quilltap.providers.base import IMAGE_MIME_TYPES, ProviderCapabilities
from quilltap.providers.models import (
    AttachmentResults,
    ChatResponse,
    GeneratedImage,
    ImageGenResponse,
    StreamEvent,
)
from quilltap.providers.streaming import GeminiResponseDraft
from quilltap.tools.formatting import to_vendor_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from quilltap.providers.models import (
        ChatRequest,
        FileAttachment,
        ImageGenParams,
        Message,
    )

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
VALIDATION_MODEL = "gemini-2.5-flash"
KNOWN_MODELS: tuple[str, ...] = (
    "gemini-2.5-flash-image",
    "gemini-3-pro-image-preview",
    "imagen-4",
    "imagen-4-fast",
    "gemini-2.5-flash",
    "gemini-pro-vision",
)


def _encode_attachment(attachment: FileAttachment) -> Any:
    from google.genai import types

    try:
        data = base64.b64decode(attachment.data or "", validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 data for {attachment.filename!r}") from e
    return types.Part.from_bytes(data=data, mime_type=attachment.mime_type)


def _finish_reason(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "name", value))


class GeminiProvider:
    """Gemini GenerateContent provider with native Google Search."""

    name = "GOOGLE"

    def __init__(self, base_url: str | None = None) -> None:
        """Initialize; Gemini ignores *base_url*."""
        self.base_url = base_url
        self._clients: dict[str, Any] = {}

    def _get_client(self, api_key: str) -> Any:
        """Lazily initialize and return a client bound to *api_key*."""
        if not api_key:
            raise ConfigurationError(
                "Google provider requires an API key",
                hint="Set GOOGLE_API_KEY or pass api_key=...",
            )
        client = self._clients.get(api_key)
        if client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            client = genai.Client(api_key=api_key)
            self._clients[api_key] = client
        return client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            supports_file_attachments=True,
            supported_mime_types=IMAGE_MIME_TYPES,
            supports_image_generation=True,
            supports_web_search=True,
        )

    @staticmethod
    def _build_contents(messages: list[Message]) -> tuple[list[Any], AttachmentResults]:
        """Build ``Content`` turns, merging consecutive same-role messages."""
        from google.genai import types

        turns: list[tuple[str, list[Any]]] = []
        results = AttachmentResults()
        for message in messages:
            role = "model" if message.role == "assistant" else "user"
            parts: list[Any] = []
            if message.content:
                parts.append(types.Part.from_text(text=message.content))
            if message.attachments:
                encoded, message_results = collect_attachment_parts(
                    message,
                    vendor="Google",
                    supported_mime_types=IMAGE_MIME_TYPES,
                    encode=_encode_attachment,
                )
                results.extend(message_results)
                parts.extend(encoded)
            if not parts:
                continue
            if turns and turns[-1][0] == role:
                turns[-1][1].extend(parts)
            else:
                turns.append((role, parts))
        contents = [types.Content(role=role, parts=parts) for role, parts in turns]
        return contents, results

    def _prepare(self, request: ChatRequest) -> tuple[dict[str, Any], AttachmentResults]:
        from google.genai import types

        system, turns = split_system(request.messages)
        contents, results = self._build_contents(turns)

        config_kwargs: dict[str, Any] = {
            "max_output_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            config_kwargs["system_instruction"] = system
        config_kwargs["temperature"] = (
            request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        )
        if request.top_p is not None:
            config_kwargs["top_p"] = request.top_p
        if request.stop:
            config_kwargs["stop_sequences"] = list(request.stop)

        tool_objs: list[Any] = []
        if request.tools:
            tool_objs.append(
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=decl["name"],
                            description=decl["description"],
                            parameters=decl["parameters"],
                        )
                        for decl in to_vendor_tools(request.tools, "google")
                    ]
                )
            )
            config_kwargs["tool_config"] = {"function_calling_config": {"mode": "AUTO"}}
        if request.web_search_enabled:
            tool_objs.append(types.Tool(google_search=types.GoogleSearch()))
        if tool_objs:
            config_kwargs["tools"] = tool_objs

        kwargs = {
            "model": request.model,
            "contents": contents,
            "config": types.GenerateContentConfig(**config_kwargs),
        }
        return kwargs, results

    async def send_message(self, request: ChatRequest, api_key: str) -> ChatResponse:
        """Make one non-streaming GenerateContent call."""
        kwargs, results = self._prepare(request)
        client = self._get_client(api_key)
        try:
            response = await client.aio.models.generate_content(**kwargs)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="send") from e

        draft = GeminiResponseDraft()
        self._absorb(draft, response)
        return ChatResponse(
            content=draft.text,
            finish_reason=draft.finish_reason,
            usage=draft.usage,
            attachment_results=results,
            raw_response=response,
        )

    @staticmethod
    def _absorb(draft: GeminiResponseDraft, chunk: Any) -> list[str]:
        """Fold one response chunk into *draft*; return new text pieces."""
        texts: list[str] = []
        candidates = get_field(chunk, "candidates") or []
        if candidates:
            candidate = candidates[0]
            finish_reason = _finish_reason(get_field(candidate, "finish_reason"))
            if finish_reason:
                draft.finish_reason = finish_reason
            for part in get_field(get_field(candidate, "content"), "parts") or []:
                if get_field(part, "thought"):
                    continue
                function_call = get_field(part, "function_call")
                if function_call:
                    draft.add_function_call(
                        get_field(function_call, "name"), get_field(function_call, "args")
                    )
                    continue
                text = get_field(part, "text")
                if text:
                    draft.add_text(text)
                    texts.append(text)

        usage = get_field(chunk, "usage_metadata")
        if usage:
            draft.prompt_token_count = get_field(usage, "prompt_token_count") or 0
            draft.candidates_token_count = get_field(usage, "candidates_token_count") or 0
            draft.total_token_count = get_field(usage, "total_token_count") or (
                draft.prompt_token_count + draft.candidates_token_count
            )
        return texts

    async def stream_message(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[StreamEvent]:
        """Stream chunks; the end of the iterator is terminal."""
        kwargs, results = self._prepare(request)
        client = self._get_client(api_key)
        draft = GeminiResponseDraft()
        response_stream: Any = None
        try:
            response_stream = await client.aio.models.generate_content_stream(**kwargs)
            async for chunk in response_stream:
                for text in self._absorb(draft, chunk):
                    yield StreamEvent.delta(text)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e
        finally:
            if response_stream is not None:
                await aclose_resource(response_stream)

        logger.debug("Gemini stream finished: reason=%s", draft.finish_reason)
        yield StreamEvent.terminal(
            usage=draft.usage,
            attachment_results=results,
            raw_response=draft.to_raw(),
        )

    async def validate_api_key(self, api_key: str) -> bool:
        """Send a minimal GenerateContent request."""
        from google.genai import types

        try:
            await self._get_client(api_key).aio.models.generate_content(
                model=VALIDATION_MODEL,
                contents="test",
                config=types.GenerateContentConfig(max_output_tokens=1),
            )
        except Exception as e:
            logger.warning("Google API key validation failed: %s", e)
            return False
        return True

    async def get_available_models(self, api_key: str) -> list[str]:
        """Return the known chat and image-capable models."""
        return list(KNOWN_MODELS)

    async def generate_image(
        self, params: ImageGenParams, api_key: str
    ) -> ImageGenResponse:
        """Generate images with a Gemini image model."""
        from google.genai import types

        config_kwargs: dict[str, Any] = {
            "temperature": 0.7,
            "response_modalities": ["IMAGE", "TEXT"],
        }
        if params.aspect_ratio:
            config_kwargs["image_config"] = {"aspect_ratio": params.aspect_ratio}
        try:
            response = await self._get_client(api_key).aio.models.generate_content(
                model=params.model or DEFAULT_IMAGE_MODEL,
                contents=params.prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="image") from e

        images: list[GeneratedImage] = []
        for candidate in get_field(response, "candidates") or []:
            for part in get_field(get_field(candidate, "content"), "parts") or []:
                inline = get_field(part, "inline_data")
                data = get_field(inline, "data")
                if not data:
                    continue
                if isinstance(data, bytes):
                    data = base64.b64encode(data).decode("ascii")
                images.append(
                    GeneratedImage(
                        data=data,
                        mime_type=get_field(inline, "mime_type") or "image/png",
                    )
                )
        if not images:
            raise APIError(
                "No images returned from Google", provider=self.name, phase="image"
            )
        return ImageGenResponse(images=images, raw=response)

    async def aclose(self) -> None:
        """Close async transports of clients created by this adapter."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await aclose_resource(getattr(client, "aio", None))
