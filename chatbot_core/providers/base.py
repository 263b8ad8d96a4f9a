"""Provider 抽象接口。

编排器不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAIClient）。
- open(req): 发起流式请求，返回绑定在连接上的原始字节流。
- chat(req): 非流式调用，返回统一的 ChatResult。

SSE 解码与编排逻辑只依赖 ByteStream，因此替换厂商不需要改动它们。
"""

from typing import AsyncIterator, Protocol

from chatbot_core.domain.models import ChatRequest, ChatResult


class ByteStream(Protocol):
    """惰性读取的响应体字节流。

    - 异步迭代产出网络分块（分块边界与 SSE 帧边界无关）。
    - aclose() 释放底层连接，可重复调用。
    """

    def __aiter__(self) -> AsyncIterator[bytes]:
        ...

    async def aclose(self) -> None:
        ...


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - open(req): 流式调用，失败时抛出 TransportError 子类。
    - chat(req): 非流式调用。
    """

    name: str

    async def open(self, req: ChatRequest) -> ByteStream:
        ...

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...
