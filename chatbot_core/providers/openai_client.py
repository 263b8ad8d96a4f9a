"""OpenAI 兼容接口的 Provider 适配器（流式传输层）。

本模块负责：

1. 把 ChatRequest 转换为 ``POST {base_url}/chat/completions`` 的请求体。
2. 发起请求并处理网络错误、超时和非 2xx 状态码。
3. 流式模式下返回绑定在连接上的 HttpxByteStream，由调用方逐块读取。
4. 非流式模式下把响应 JSON 解析为统一的 ChatResult。

超时是整个请求生命周期的截止时间：发送请求、等待首字节以及之后每一次
读取分块都共享同一个 deadline。
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chatbot_core.domain.exceptions import (
    ApiError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from chatbot_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.providers.registry import OPENAI_CONFIG


class HttpxByteStream:
    """响应体字节流，独占底层 httpx 响应与客户端。

    读完或调用 aclose() 后连接即被释放；aclose() 可重复调用。
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient, deadline: float, timeout: float):
        self._response = response
        self._client = client
        self._deadline = deadline
        self._timeout = timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        chunks = self._response.aiter_bytes()
        try:
            while True:
                remaining = self._deadline - asyncio.get_running_loop().time()
                if remaining <= 0:
                    raise RequestTimeoutError(code="TIMEOUT", message=self._timeout_message(), http_status=504)
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    logger.warning("Stream read timed out", extra={"extra": {"timeout": self._timeout}})
                    raise RequestTimeoutError(code="TIMEOUT", message=self._timeout_message(), http_status=504)
                except httpx.HTTPError as e:
                    # 读取中途连接断开、协议错误等
                    raise NetworkError(code="STREAM_READ_ERROR", message=str(e) or type(e).__name__)
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxByteStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _timeout_message(self) -> str:
        return f"Request timed out after {self._timeout:g} seconds"


class OpenAIClient:
    """OpenAI 兼容接口客户端实现。

    - name: Provider 名称（供日志使用）。
    - open: 流式调用，返回 HttpxByteStream。
    - chat: 非流式调用，返回 ChatResult。

    API 密钥、base_url、模型与超时在构造时确定，之后不可修改。
    """

    name = "openai"

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        api_key = getattr(settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失属于启动期致命错误
            raise ConfigurationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        self._api_key = api_key
        self._base_url = (getattr(settings, "openai_base_url", None) or OPENAI_CONFIG.base_url).rstrip("/")
        self._model = getattr(settings, "openai_model", None) or OPENAI_CONFIG.default_model
        self._timeout = float(getattr(settings, "openai_timeout_seconds", None) or OPENAI_CONFIG.timeout_seconds)
        self._max_tokens = getattr(settings, "max_tokens", None) or OPENAI_CONFIG.max_tokens
        temperature = getattr(settings, "temperature", None)
        self._temperature = OPENAI_CONFIG.default_temperature if temperature is None else temperature
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def open(self, req: ChatRequest) -> HttpxByteStream:
        """发起流式请求，成功时返回尚未读取的字节流。

        非 2xx 响应会先完整读取错误体再抛出 ApiError，此时不会返回字节流。
        """

        payload = self.build_payload(req, stream=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        client = self._new_client()
        logger.info(
            "Opening completion stream",
            extra={"extra": {"model": payload["model"], "message_count": len(payload["messages"])}},
        )
        handed_off = False
        try:
            request = client.build_request(
                "POST",
                self.endpoint,
                json=payload,
                headers=self._headers(accept="text/event-stream"),
            )
            try:
                response = await asyncio.wait_for(client.send(request, stream=True), timeout=self._timeout)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                logger.warning("Completion request timed out", extra={"extra": {"timeout": self._timeout}})
                raise RequestTimeoutError(
                    code="TIMEOUT",
                    message=f"Request timed out after {self._timeout:g} seconds",
                    http_status=504,
                )
            except httpx.RequestError as e:
                # 网络错误：DNS 失败、连接被拒绝等
                raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

            if not response.is_success:
                try:
                    remaining = max(deadline - loop.time(), 0.001)
                    body_bytes = await asyncio.wait_for(response.aread(), timeout=remaining)
                    body = body_bytes.decode("utf-8", errors="replace")
                except (asyncio.TimeoutError, httpx.HTTPError):
                    body = "Unable to read error response"
                finally:
                    await response.aclose()
                raise self._status_error(response.status_code, body)

            handed_off = True
            return HttpxByteStream(response, client, deadline=deadline, timeout=self._timeout)
        finally:
            if not handed_off:
                await client.aclose()

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。"""

        payload = self.build_payload(req, stream=False)
        try:
            async with self._new_client() as client:
                resp = await asyncio.wait_for(
                    client.post(self.endpoint, json=payload, headers=self._headers()),
                    timeout=self._timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise RequestTimeoutError(
                code="TIMEOUT",
                message=f"Request timed out after {self._timeout:g} seconds",
                http_status=504,
            )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if not resp.is_success:
            raise self._status_error(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise self._bad_response(f"invalid JSON ({e})")
        return self._parse_response(data, payload["model"])

    def build_payload(self, req: ChatRequest, stream: bool = True) -> Dict[str, Any]:
        """将 ChatRequest 转成补全接口所需的请求 JSON（消息顺序与角色原样保留）。"""

        max_tokens = self._max_tokens if req.max_tokens is None else req.max_tokens
        if max_tokens < 1:
            raise ValidationError(code="INVALID_MAX_TOKENS", message="max_tokens must be positive")
        temperature = self._temperature if req.temperature is None else req.temperature
        return {
            "model": req.model or self._model,
            "messages": [m.to_payload() for m in req.messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=self._transport)

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": accept,
        }

    @staticmethod
    def _status_error(status_code: int, body: str) -> ApiError:
        logger.warning(
            "Completion endpoint returned error status",
            extra={"extra": {"http_status": status_code, "body": body[:500]}},
        )
        if status_code == 429:
            # 限流错误交给上层决定何时重试
            return RateLimitError(
                code="RATE_LIMIT",
                message=f"API rate limit (429): {body}",
                http_status=429,
                body=body,
            )
        return ApiError(
            code="API_ERROR",
            message=f"API error ({status_code}): {body}",
            http_status=status_code,
            body=body,
        )

    def _parse_response(self, data: Any, model: str) -> ChatResult:
        """将非流式响应 JSON 解析为统一的 ChatResult；结构不符时抛出 ApiError。"""

        if not isinstance(data, dict):
            raise self._bad_response("response body is not a JSON object")
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise self._bad_response("'choices' is not a list")
        choices: list[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            msg = ch.get("message") if isinstance(ch, dict) else None
            if not isinstance(msg, dict):
                raise self._bad_response(f"choice {i} has no message object")
            role = msg.get("role") or "assistant"
            if role not in ("system", "user", "assistant"):
                role = "assistant"
            content = msg.get("content") or ""
            if not isinstance(content, str):
                raise self._bad_response(f"choice {i} content is not a string")
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=role, content=content),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage")
        usage = None
        if isinstance(usage_raw, dict) and usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=data.get("model") or model, choices=choices, usage=usage)

    @staticmethod
    def _bad_response(reason: str) -> ApiError:
        return ApiError(code="BAD_RESPONSE", message=f"Invalid response: {reason}", http_status=502)
