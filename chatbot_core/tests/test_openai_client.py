import asyncio
import json

import httpx
import pytest

from chatbot_core.domain.exceptions import (
    ApiError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from chatbot_core.domain.models import ChatMessage, ChatRequest
from chatbot_core.providers import create_provider
from chatbot_core.providers.openai_client import OpenAIClient


class SettingsStub:
    openai_api_key = "sk-test-0123456789"
    openai_base_url = "https://llm.example.com/v1/"
    openai_model = "test-model"
    openai_timeout_seconds = 5.0
    max_tokens = 1000
    temperature = 0.7


class FastTimeoutSettings(SettingsStub):
    openai_timeout_seconds = 0.05


class RecordingStream(httpx.AsyncByteStream):
    """按给定分块产出响应体，可在分块之间暂停，并记录是否被关闭。"""

    def __init__(self, chunks, pause_after=None, pause=0.0):
        self._chunks = list(chunks)
        self._pause_after = pause_after
        self._pause = pause
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self._chunks):
            yield chunk
            if self._pause_after is not None and i == self._pause_after:
                await asyncio.sleep(self._pause)

    async def aclose(self):
        self.closed = True


def _request(*messages):
    return ChatRequest(messages=list(messages or [ChatMessage.user("hi")]))


async def _read_all(stream):
    return b"".join([chunk async for chunk in stream])


def test_missing_api_key_is_configuration_error():
    class NoKey(SettingsStub):
        openai_api_key = None

    with pytest.raises(ConfigurationError) as exc:
        OpenAIClient(NoKey())
    assert exc.value.code == "MISSING_API_KEY"


def test_payload_preserves_message_order_and_roles():
    client = OpenAIClient(SettingsStub())
    payload = client.build_payload(_request(ChatMessage.system("sp"), ChatMessage.user("q")))
    assert payload["messages"] == [
        {"role": "system", "content": "sp"},
        {"role": "user", "content": "q"},
    ]
    assert payload["model"] == "test-model"
    assert payload["max_tokens"] == 1000
    assert payload["temperature"] == 0.7
    assert payload["stream"] is True


def test_payload_request_overrides_and_validation():
    client = OpenAIClient(SettingsStub())
    req = ChatRequest(messages=[ChatMessage.user("q")], model="other", max_tokens=5, temperature=0.0)
    payload = client.build_payload(req, stream=False)
    assert (payload["model"], payload["max_tokens"], payload["temperature"]) == ("other", 5, 0.0)
    assert payload["stream"] is False
    with pytest.raises(ValidationError):
        client.build_payload(ChatRequest(messages=[], max_tokens=0))


@pytest.mark.asyncio
async def test_open_streams_raw_bytes_and_sends_request():
    captured = {}
    body = RecordingStream([b"data: {\"cho", b"ices\":[]}\n\n", b"data: [DONE]\n\n"])

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, stream=body, headers={"Content-Type": "text/event-stream"})

    client = OpenAIClient(SettingsStub(), transport=httpx.MockTransport(handler))
    stream = await client.open(_request(ChatMessage.system("sp"), ChatMessage.user("q")))
    data = await _read_all(stream)

    assert data == b'data: {"choices":[]}\n\ndata: [DONE]\n\n'
    assert captured["url"] == "https://llm.example.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test-0123456789"
    assert captured["payload"]["stream"] is True
    assert [m["role"] for m in captured["payload"]["messages"]] == ["system", "user"]
    assert stream.closed
    assert body.closed


@pytest.mark.asyncio
async def test_closing_stream_early_releases_connection():
    body = RecordingStream([b"data: a\n", b"data: b\n", b"data: c\n"])
    client = OpenAIClient(SettingsStub(), transport=httpx.MockTransport(lambda r: httpx.Response(200, stream=body)))
    stream = await client.open(_request())
    async with stream:
        async for _ in stream:
            break
    assert stream.closed
    assert body.closed
    await stream.aclose()


@pytest.mark.asyncio
async def test_error_status_reports_full_body():
    def handler(request):
        return httpx.Response(500, json={"error": {"message": "boom"}})

    client = OpenAIClient(SettingsStub(), transport=httpx.MockTransport(handler))
    with pytest.raises(ApiError) as exc:
        await client.open(_request())
    assert exc.value.http_status == 500
    assert "boom" in exc.value.body
    assert not isinstance(exc.value, RateLimitError)


@pytest.mark.asyncio
async def test_rate_limit_status():
    client = OpenAIClient(
        SettingsStub(),
        transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down")),
    )
    with pytest.raises(RateLimitError) as exc:
        await client.open(_request())
    assert exc.value.body == "slow down"


@pytest.mark.asyncio
async def test_connection_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = OpenAIClient(SettingsStub(), transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkError):
        await client.open(_request())


@pytest.mark.asyncio
async def test_time_to_first_byte_counts_against_timeout():
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, text="")

    client = OpenAIClient(FastTimeoutSettings(), transport=httpx.MockTransport(handler))
    with pytest.raises(RequestTimeoutError):
        await client.open(_request())


@pytest.mark.asyncio
async def test_stalled_stream_times_out_and_releases_connection():
    body = RecordingStream([b"data: a\n", b"data: b\n"], pause_after=0, pause=1.0)
    client = OpenAIClient(
        FastTimeoutSettings(),
        transport=httpx.MockTransport(lambda r: httpx.Response(200, stream=body)),
    )
    stream = await client.open(_request())
    received = []
    with pytest.raises(RequestTimeoutError):
        async for chunk in stream:
            received.append(chunk)
    assert received == [b"data: a\n"]
    assert stream.closed


@pytest.mark.asyncio
async def test_chat_non_streaming_response():
    captured = {}

    def handler(request):
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={
            "model": "test-model",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
        })

    client = OpenAIClient(SettingsStub(), transport=httpx.MockTransport(handler))
    res = await client.chat(_request())
    assert captured["payload"]["stream"] is False
    assert res.content == "ok"
    assert res.choices[0].message.role == "assistant"
    assert res.usage.total_tokens == 2


@pytest.mark.asyncio
async def test_chat_error_status():
    client = OpenAIClient(
        SettingsStub(),
        transport=httpx.MockTransport(lambda r: httpx.Response(401, text="bad key")),
    )
    with pytest.raises(ApiError) as exc:
        await client.chat(_request())
    assert exc.value.http_status == 401


def test_create_provider_uses_settings():
    provider = create_provider(SettingsStub())
    assert isinstance(provider, OpenAIClient)
    assert provider.endpoint == "https://llm.example.com/v1/chat/completions"
    with pytest.raises(KeyError):
        create_provider(SettingsStub(), name="nope")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    ["x"],
    {"choices": "nope"},
    {"choices": ["not a dict"]},
    {"choices": [{"message": "text"}]},
    {"choices": [{"message": {"role": "assistant", "content": ["x"]}}]},
])
async def test_chat_unexpected_json_shape_is_api_error(body):
    client = OpenAIClient(
        SettingsStub(),
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json=body)),
    )
    with pytest.raises(ApiError) as exc:
        await client.chat(_request())
    assert exc.value.code == "BAD_RESPONSE"
    assert exc.value.http_status == 502
