"""Adapter characterization tests.

These tests pin the request shapes each adapter sends and the stream
reconstruction contract it honours: deltas concatenate to the final text,
tool-call fragments merge by index, and exactly one terminal event closes
every stream. Fake SDK clients and httpx.MockTransport replace the network.
"""

from __future__ import annotations

import base64
import json
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from quilltap.errors import APIError, CapabilityError, ConfigurationError, NetworkError
from quilltap.providers import (
    AnthropicProvider,
    GabAIProvider,
    GeminiProvider,
    GrokProvider,
    MockProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouterProvider,
)
from quilltap.providers.models import ChatRequest, FileAttachment, ImageGenParams, Message
from quilltap.tools.parsing import detect_tool_calls
from tests.conftest import ANTHROPIC_MODEL, GEMINI_MODEL, OLLAMA_MODEL, OPENAI_MODEL
from tests.helpers import (
    FakeAsyncStream,
    collect,
    fake_anthropic_client,
    fake_openai_client,
    openai_chunk,
)

pytestmark = pytest.mark.contract

KEY = "test-key"
PNG = base64.b64encode(b"\x89PNG fake").decode("ascii")
TOOL = {
    "type": "function",
    "function": {
        "name": "generate_image",
        "description": "Generate an image",
        "parameters": {
            "type": "object",
            "properties": {"prompt": {"type": "string"}},
            "required": ["prompt"],
        },
    },
}


def _request(*messages: Message, model: str = OPENAI_MODEL, **kwargs: Any) -> ChatRequest:
    return ChatRequest(messages=list(messages) or [Message("user", "Hi")], model=model, **kwargs)


def _deltas(events: list[Any]) -> str:
    return "".join(e.content for e in events if not e.done)


def _terminals(events: list[Any]) -> list[Any]:
    return [e for e in events if e.done]


# =============================================================================
# OpenAI-family streaming
# =============================================================================


@pytest.mark.asyncio
async def test_openai_stream_yields_deltas_then_one_terminal_with_usage() -> None:
    stream = FakeAsyncStream(
        [
            openai_chunk(content="Hel"),
            openai_chunk(content="lo"),
            openai_chunk(finish_reason="stop"),
            openai_chunk(
                with_choice=False,
                usage={"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6},
            ),
        ]
    )
    client = fake_openai_client(stream)
    provider = OpenAIProvider()
    provider._clients[KEY] = client

    events = await collect(provider.stream_message(_request(), KEY))

    assert _deltas(events) == "Hello"
    [terminal] = _terminals(events)
    assert events[-1] is terminal
    assert terminal.usage.total_tokens == 6
    assert terminal.raw_response["choices"][0]["message"]["content"] == "Hello"
    assert client.chat.completions.last_kwargs["stream_options"] == {"include_usage": True}
    assert stream.closed


@pytest.mark.asyncio
async def test_openai_stream_merges_tool_call_fragments_by_index() -> None:
    stream = FakeAsyncStream(
        [
            openai_chunk(
                tool_calls=[
                    {
                        "index": 0,
                        "id": "call_a",
                        "type": "function",
                        "function": {"name": "generate_image", "arguments": ""},
                    }
                ]
            ),
            openai_chunk(
                tool_calls=[
                    {
                        "index": 1,
                        "id": "call_b",
                        "type": "function",
                        "function": {"name": "search_web", "arguments": '{"query":'},
                    }
                ]
            ),
            openai_chunk(tool_calls=[{"index": 0, "function": {"arguments": '{"prompt": "cat"}'}}]),
            openai_chunk(tool_calls=[{"index": 1, "function": {"arguments": ' "news"}'}}]),
            openai_chunk(finish_reason="tool_calls"),
            openai_chunk(
                with_choice=False,
                usage={"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
            ),
        ]
    )
    provider = OpenAIProvider()
    provider._clients[KEY] = fake_openai_client(stream)

    events = await collect(provider.stream_message(_request(tools=[TOOL]), KEY))

    [terminal] = _terminals(events)
    calls = detect_tool_calls(terminal.raw_response, "OPENAI")
    assert [(c.call_id, c.name, c.arguments) for c in calls] == [
        ("call_a", "generate_image", {"prompt": "cat"}),
        ("call_b", "search_web", {"query": "news"}),
    ]
    # Terminal fires on finish_reason=tool_calls; the usage chunk is drained.
    assert stream.consumed == 6
    assert stream.closed


@pytest.mark.asyncio
async def test_openai_stream_without_finish_reason_still_terminates_once() -> None:
    provider = OpenAIProvider()
    provider._clients[KEY] = fake_openai_client(FakeAsyncStream([openai_chunk(content="partial")]))

    events = await collect(provider.stream_message(_request(), KEY))

    assert _deltas(events) == "partial"
    assert len(_terminals(events)) == 1


@pytest.mark.asyncio
async def test_streamed_text_matches_non_streaming_content() -> None:
    text_chunks = ["The ", "quick ", "brown ", "fox."]
    stream = FakeAsyncStream(
        [openai_chunk(content=c) for c in text_chunks] + [openai_chunk(finish_reason="stop")]
    )
    response = {
        "choices": [{"message": {"content": "".join(text_chunks)}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 4, "total_tokens": 5},
    }
    provider = OpenAIProvider()
    provider._clients[KEY] = fake_openai_client(stream, response)

    streamed = await collect(provider.stream_message(_request(), KEY))
    sent = await provider.send_message(_request(), KEY)

    assert _deltas(streamed) == sent.content
    assert sent.usage.total_tokens == 5


@pytest.mark.asyncio
async def test_openai_stream_failure_is_wrapped_and_stream_closed() -> None:
    class _SdkError(Exception):
        status_code = 503

    stream = FakeAsyncStream([openai_chunk(content="a")], error=_SdkError("overloaded"))
    provider = OpenAIProvider()
    provider._clients[KEY] = fake_openai_client(stream)

    with pytest.raises(APIError) as exc:
        await collect(provider.stream_message(_request(), KEY))

    assert exc.value.status_code == 503
    assert exc.value.retryable is True
    assert stream.closed


def test_openai_request_shape_with_tools_and_native_web_search() -> None:
    kwargs, _ = OpenAIProvider()._prepare(
        _request(tools=[TOOL], web_search_enabled=True, stop=["END"])
    )

    assert kwargs["tools"] == [TOOL]
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["web_search_options"] == {}
    assert kwargs["stop"] == ["END"]
    assert (kwargs["temperature"], kwargs["max_tokens"], kwargs["top_p"]) == (0.7, 1000, 1.0)


def test_grok_request_enables_live_search_when_web_search_is_on() -> None:
    provider = GrokProvider()
    searching, _ = provider._prepare(_request(model="grok-3", web_search_enabled=True))
    plain, _ = provider._prepare(_request(model="grok-3"))

    assert provider.capabilities.supports_web_search is True
    assert searching["extra_body"] == {
        "search_parameters": {
            "mode": "auto",
            "return_citations": True,
            "max_search_results": 20,
            "sources": ["web", "x", "news"],
        }
    }
    assert "web_search_options" not in searching
    assert "extra_body" not in plain


# =============================================================================
# Missing credentials
# =============================================================================


@pytest.mark.parametrize(
    ("provider", "model", "vendor"),
    [
        (OpenAIProvider(), OPENAI_MODEL, "OpenAI"),
        (OpenRouterProvider(), "openai/gpt-4o-mini", "OpenRouter"),
        (AnthropicProvider(), ANTHROPIC_MODEL, "Anthropic"),
        (GeminiProvider(), GEMINI_MODEL, "Google"),
    ],
    ids=["openai", "openrouter", "anthropic", "google"],
)
@pytest.mark.asyncio
async def test_missing_api_key_is_a_configuration_error_naming_the_vendor(
    provider: Any, model: str, vendor: str
) -> None:
    with pytest.raises(ConfigurationError, match=f"{vendor} provider requires an API key"):
        await provider.send_message(_request(model=model), "")
    with pytest.raises(ConfigurationError, match=f"{vendor} provider requires an API key"):
        await collect(provider.stream_message(_request(model=model), ""))


# =============================================================================
# Attachments
# =============================================================================


def test_attachment_failures_are_partial_and_reported() -> None:
    message = Message(
        "user",
        "Look at these",
        attachments=(
            FileAttachment("img", "cat.png", "image/png", PNG),
            FileAttachment("zip", "files.zip", "application/zip", "UEsDBA=="),
            FileAttachment("nodata", "dog.png", "image/png", None),
        ),
    )

    kwargs, results = OpenAIProvider()._prepare(_request(message))

    content = kwargs["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "Look at these"}
    assert content[1]["type"] == "image_url"
    assert content[1]["image_url"]["url"] == f"data:image/png;base64,{PNG}"
    assert len(content) == 2
    assert results.sent == ["img"]
    failures = {f.id: f.error for f in results.failed}
    assert set(failures) == {"zip", "nodata"}
    assert "Unsupported file type: application/zip" in failures["zip"]
    assert failures["nodata"] == "File data not loaded"


def test_grok_inlines_text_attachments_and_rejects_binary_documents() -> None:
    notes = base64.b64encode(b"remember the milk").decode("ascii")
    message = Message(
        "user",
        "",
        attachments=(
            FileAttachment("txt", "notes.txt", "text/plain", notes),
            FileAttachment("pdf", "report.pdf", "application/pdf", "JVBERi0="),
        ),
    )

    kwargs, results = GrokProvider()._prepare(_request(message, model="grok-3"))

    assert kwargs["messages"][0]["content"] == [
        {"type": "text", "text": "[File: notes.txt]\nremember the milk"}
    ]
    assert results.sent == ["txt"]
    assert [f.id for f in results.failed] == ["pdf"]


@pytest.mark.parametrize(
    "provider",
    [OpenRouterProvider(), GabAIProvider()],
    ids=["openrouter", "gab_ai"],
)
def test_text_only_vendors_reject_every_attachment(provider: Any) -> None:
    message = Message(
        "user", "hi", attachments=(FileAttachment("img", "a.png", "image/png", PNG),)
    )

    kwargs, results = provider._prepare(_request(message))

    assert kwargs["messages"][0] == {"role": "user", "content": "hi"}
    assert results.sent == []
    assert results.failed[0].id == "img"
    assert results.failed[0].error


def test_openai_compatible_requires_base_url_and_defaults_key() -> None:
    with pytest.raises(ConfigurationError, match="requires baseUrl"):
        OpenAICompatibleProvider("")

    provider = OpenAICompatibleProvider("http://localhost:1234/v1")
    assert provider.capabilities.supports_image_generation is False


# =============================================================================
# Anthropic
# =============================================================================


def _anthropic_events(*, with_stop: bool = True) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = [
        {
            "type": "message_start",
            "message": {"id": "msg_1", "model": ANTHROPIC_MODEL, "usage": {"input_tokens": 10}},
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me "}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "draw."}},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "tu_1", "name": "generate_image"},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '{"prompt": '},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '"a cat"}'},
        },
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 5}},
    ]
    if with_stop:
        events.append({"type": "message_stop"})
    return events


@pytest.mark.asyncio
async def test_anthropic_stream_reconstructs_text_and_tool_use() -> None:
    stream = FakeAsyncStream(_anthropic_events())
    client = fake_anthropic_client(stream)
    provider = AnthropicProvider()
    provider._clients[KEY] = client
    request = _request(
        Message("system", "You are Aria."),
        Message("user", "Draw me a cat"),
        model=ANTHROPIC_MODEL,
        tools=[TOOL],
    )

    events = await collect(provider.stream_message(request, KEY))

    assert _deltas(events) == "Let me draw."
    [terminal] = _terminals(events)
    assert terminal.usage.total_tokens == 15
    calls = detect_tool_calls(terminal.raw_response, "ANTHROPIC")
    assert [(c.name, c.arguments) for c in calls] == [("generate_image", {"prompt": "a cat"})]

    sent = client.messages.last_kwargs
    assert sent["system"] == "You are Aria."
    assert sent["tool_choice"] == {"type": "auto"}
    assert sent["tools"][0]["input_schema"]["required"] == ["prompt"]
    assert all(m["role"] != "system" for m in sent["messages"])


@pytest.mark.asyncio
async def test_anthropic_stream_without_message_stop_is_a_network_error() -> None:
    provider = AnthropicProvider()
    provider._clients[KEY] = fake_anthropic_client(
        FakeAsyncStream(_anthropic_events(with_stop=False))
    )

    with pytest.raises(NetworkError, match="message_stop"):
        await collect(provider.stream_message(_request(model=ANTHROPIC_MODEL), KEY))


def test_anthropic_picks_one_of_temperature_and_top_p() -> None:
    provider = AnthropicProvider()

    both, _ = provider._prepare(_request(model=ANTHROPIC_MODEL, temperature=0.3, top_p=0.9))
    only_top_p, _ = provider._prepare(_request(model=ANTHROPIC_MODEL, top_p=0.9))
    neither, _ = provider._prepare(_request(model=ANTHROPIC_MODEL))

    assert both["temperature"] == 0.3 and "top_p" not in both
    assert only_top_p["top_p"] == 0.9 and "temperature" not in only_top_p
    assert neither["temperature"] == 1.0


def test_anthropic_merges_consecutive_user_turns_and_encodes_pdf() -> None:
    pdf = FileAttachment("doc", "report.pdf", "application/pdf", "JVBERi0=")
    request = _request(
        Message("user", "Read this", attachments=(pdf,)),
        Message("user", "[Tool Result: search_web]\n{}"),
        model=ANTHROPIC_MODEL,
    )

    kwargs, results = AnthropicProvider()._prepare(request)

    assert len(kwargs["messages"]) == 1
    content = kwargs["messages"][0]["content"]
    assert content[1]["type"] == "document"
    assert content[1]["source"]["media_type"] == "application/pdf"
    assert content[-1] == {"type": "text", "text": "[Tool Result: search_web]\n{}"}
    assert results.sent == ["doc"]


@pytest.mark.asyncio
async def test_anthropic_has_no_image_generation() -> None:
    with pytest.raises(CapabilityError, match="does not support image generation"):
        await AnthropicProvider().generate_image(ImageGenParams(prompt="cat"), KEY)


# =============================================================================
# Gemini
# =============================================================================


def _gemini_chunk(*parts: Any, finish_reason: str | None = None, usage: Any = None) -> Any:
    return SimpleNamespace(
        candidates=[
            SimpleNamespace(
                finish_reason=finish_reason, content=SimpleNamespace(parts=list(parts))
            )
        ],
        usage_metadata=usage,
    )


def _fake_gemini_client(chunks: list[Any]) -> tuple[Any, dict[str, Any]]:
    captured: dict[str, Any] = {}

    async def generate_content_stream(**kwargs: Any) -> FakeAsyncStream:
        captured.update(kwargs)
        captured["stream"] = FakeAsyncStream(chunks)
        return captured["stream"]

    models = SimpleNamespace(generate_content_stream=generate_content_stream)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), captured


@pytest.mark.asyncio
async def test_gemini_stream_reconstructs_text_and_function_calls() -> None:
    client, captured = _fake_gemini_client(
        [
            _gemini_chunk(SimpleNamespace(text="Sure, ")),
            _gemini_chunk(SimpleNamespace(thought=True, text="(thinking)")),
            _gemini_chunk(
                SimpleNamespace(text="drawing."),
                SimpleNamespace(
                    function_call=SimpleNamespace(name="generate_image", args={"prompt": "owl"})
                ),
                finish_reason="STOP",
                usage=SimpleNamespace(
                    prompt_token_count=7, candidates_token_count=3, total_token_count=10
                ),
            ),
        ]
    )
    provider = GeminiProvider()
    provider._clients[KEY] = client
    request = _request(
        Message("system", "Be brief."),
        Message("user", "Draw an owl"),
        model=GEMINI_MODEL,
        tools=[TOOL],
        web_search_enabled=True,
    )

    events = await collect(provider.stream_message(request, KEY))

    assert _deltas(events) == "Sure, drawing."
    [terminal] = _terminals(events)
    assert terminal.usage.total_tokens == 10
    assert terminal.raw_response["candidates"][0]["finishReason"] == "STOP"
    calls = detect_tool_calls(terminal.raw_response, "GOOGLE")
    assert [(c.name, c.arguments) for c in calls] == [("generate_image", {"prompt": "owl"})]

    config = captured["config"]
    assert config.system_instruction == "Be brief."
    assert len(config.tools) == 2  # function declarations + Google Search
    assert captured["stream"].closed


def test_gemini_request_defaults_temperature_like_other_vendors() -> None:
    kwargs, _ = GeminiProvider()._prepare(_request(model=GEMINI_MODEL))
    tuned, _ = GeminiProvider()._prepare(_request(model=GEMINI_MODEL, temperature=0.2))

    assert kwargs["config"].temperature == 0.7
    assert tuned["config"].temperature == 0.2


@pytest.mark.asyncio
async def test_gemini_stream_is_closed_when_consumer_stops_early() -> None:
    client, captured = _fake_gemini_client(
        [
            _gemini_chunk(SimpleNamespace(text="one ")),
            _gemini_chunk(SimpleNamespace(text="two ")),
            _gemini_chunk(SimpleNamespace(text="three"), finish_reason="STOP"),
        ]
    )
    provider = GeminiProvider()
    provider._clients[KEY] = client

    events = provider.stream_message(_request(model=GEMINI_MODEL), KEY)
    first = await events.__anext__()
    await events.aclose()

    assert first.content == "one "
    assert captured["stream"].closed


# =============================================================================
# Ollama (httpx.MockTransport)
# =============================================================================


def _ndjson(*lines: Any) -> bytes:
    return "\n".join(x if isinstance(x, str) else json.dumps(x) for x in lines).encode()


@pytest.mark.asyncio
async def test_ollama_stream_skips_bad_lines_and_carries_tool_calls() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        body = _ndjson(
            {"model": OLLAMA_MODEL, "message": {"role": "assistant", "content": "Look"}, "done": False},
            "this is not json",
            {
                "model": OLLAMA_MODEL,
                "message": {
                    "role": "assistant",
                    "content": "ing up.",
                    "tool_calls": [
                        {"function": {"name": "search_web", "arguments": {"query": "tides"}}}
                    ],
                },
                "done": False,
            },
            {
                "model": OLLAMA_MODEL,
                "message": {"role": "assistant", "content": ""},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 12,
                "eval_count": 4,
            },
        )
        return httpx.Response(200, content=body)

    provider = OllamaProvider("http://ollama.local:11434", transport=httpx.MockTransport(handler))
    message = Message("user", "tides?", attachments=(FileAttachment("a", "a.png", "image/png", PNG),))

    events = await collect(
        provider.stream_message(_request(message, model=OLLAMA_MODEL, max_tokens=50, tools=[TOOL]), "")
    )

    assert seen["path"] == "/api/chat"
    assert seen["body"]["stream"] is True
    assert seen["body"]["options"]["num_predict"] == 50
    assert seen["body"]["tools"] == [TOOL]
    assert _deltas(events) == "Looking up."
    [terminal] = _terminals(events)
    assert terminal.usage.total_tokens == 16
    assert [f.id for f in terminal.attachment_results.failed] == ["a"]
    calls = detect_tool_calls(terminal.raw_response, "OLLAMA")
    assert [(c.name, c.arguments) for c in calls] == [("search_web", {"query": "tides"})]


@pytest.mark.asyncio
async def test_ollama_http_error_is_wrapped() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"error": "model"}))
    provider = OllamaProvider("http://ollama.local:11434", transport=transport)

    with pytest.raises(APIError) as exc:
        await collect(provider.stream_message(_request(model="missing"), ""))

    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_ollama_models_and_validation_use_tags_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.2"}, {"name": "qwen3"}]})

    provider = OllamaProvider("http://ollama.local:11434", transport=httpx.MockTransport(handler))
    down = OllamaProvider(
        "http://ollama.local:11434",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    assert await provider.get_available_models("") == ["llama3.2", "qwen3"]
    assert await provider.validate_api_key("") is True
    assert await down.validate_api_key("") is False
    assert await down.get_available_models("") == []


def test_ollama_requires_base_url() -> None:
    with pytest.raises(ConfigurationError, match="requires baseUrl"):
        OllamaProvider("")


# =============================================================================
# OpenRouter REST (httpx.MockTransport)
# =============================================================================


@pytest.mark.asyncio
async def test_openrouter_lists_models_with_attribution_headers() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(200, json={"data": [{"id": "openai/gpt-4o"}, {"id": "x/y"}]})

    provider = OpenRouterProvider(
        app_url="https://quilltap.example", transport=httpx.MockTransport(handler)
    )

    models = await provider.get_available_models(KEY)

    assert models == ["openai/gpt-4o", "x/y"]
    assert seen["url"] == "https://openrouter.ai/api/v1/models"
    assert seen["headers"]["authorization"] == f"Bearer {KEY}"
    assert seen["headers"]["http-referer"] == "https://quilltap.example"
    assert seen["headers"]["x-title"] == "Quilltap"


@pytest.mark.asyncio
async def test_openrouter_image_generation_extracts_data_urls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["modalities"] == ["image", "text"]
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "images": [{"image_url": {"url": f"data:image/png;base64,{PNG}"}}]
                        }
                    }
                ]
            },
        )

    provider = OpenRouterProvider(transport=httpx.MockTransport(handler))

    response = await provider.generate_image(ImageGenParams(prompt="a fox"), KEY)

    assert [(i.mime_type, i.data) for i in response.images] == [("image/png", PNG)]


# =============================================================================
# Capability errors and mock
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider",
    [GabAIProvider(), OpenAICompatibleProvider("http://localhost:1234/v1"), MockProvider()],
    ids=["gab_ai", "openai_compatible", "mock"],
)
async def test_vendors_without_images_raise_capability_error(provider: Any) -> None:
    with pytest.raises(CapabilityError, match="does not support image generation"):
        await provider.generate_image(ImageGenParams(prompt="x"), KEY)


@pytest.mark.asyncio
async def test_mock_provider_streams_an_echo() -> None:
    events = await collect(MockProvider().stream_message(_request(Message("user", "hello there")), ""))

    assert _deltas(events) == "echo: hello there"
    assert len(_terminals(events)) == 1
    assert detect_tool_calls(_terminals(events)[0].raw_response, "MOCK") == []
