"""单轮对话编排器。

一轮对话的流程：

1. 会话为空时先插入人设的 system 消息（每个会话只插入一次）。
2. 立即追加 user 消息（即使后续网络调用失败也保留）。
3. 打开流式传输；失败时把错误放进 TurnOutcome 返回，不追加 assistant 消息。
4. 把字节流泵入 SSE 解码器，每个增量同步转发给调用方并累积。
5. 收到 [DONE] 或流结束时，累积内容非空才提交 assistant 消息；
   中途出错会停止转发，但已经收到的部分仍然提交。

同一个会话同一时刻只允许一轮在执行，缓冲区只由编排器修改，因此无需加锁。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from chatbot_core.domain.conversation import ConversationBuffer
from chatbot_core.domain.exceptions import BusinessError, NetworkError, TransportError
from chatbot_core.domain.models import ChatMessage, ChatRequest
from chatbot_core.infrastructure.logging.logger import log_event
from chatbot_core.prompts.personas import Persona
from chatbot_core.providers.base import ProviderClient
from chatbot_core.providers.sse import SseDecoder, decode_events

DeltaSink = Callable[[str], None]


@dataclass
class TurnOutcome:
    """一轮对话的结果。

    - user_message: 本轮追加的 user 消息。
    - reply: 已提交的 assistant 消息；没有提交时为 None。
    - delta_count: 转发给调用方的增量个数。
    - completed: 是否正常结束（收到 [DONE] 或流自然结束）。
    - error: 传输或流读取错误；成功时为 None。
    """

    user_message: ChatMessage
    reply: Optional[ChatMessage] = None
    delta_count: int = 0
    completed: bool = False
    error: Optional[BusinessError] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class TurnOrchestrator:
    def __init__(
        self,
        provider: ProviderClient,
        stream: bool = True,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._provider = provider
        self._stream = stream
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @classmethod
    def from_settings(cls, provider: ProviderClient, settings: Any) -> "TurnOrchestrator":
        return cls(
            provider,
            stream=getattr(settings, "stream", True),
            max_tokens=getattr(settings, "max_tokens", None),
            temperature=getattr(settings, "temperature", None),
        )

    async def run_turn(
        self,
        buffer: ConversationBuffer,
        persona: Persona,
        user_text: str,
        on_delta: Optional[DeltaSink] = None,
    ) -> TurnOutcome:
        """执行一轮对话，返回 TurnOutcome。

        传输错误不会抛出，而是记录在 outcome.error 中；
        取消（CancelledError / KeyboardInterrupt）会关闭连接后继续向上抛出，
        此时不提交任何 assistant 消息。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "persona": persona.name,
            "provider": getattr(self._provider, "name", "unknown"),
        }

        if len(buffer) == 0:
            buffer.append(ChatMessage.system(persona.prompt))
        user_message = ChatMessage.user(user_text)
        buffer.append(user_message)
        outcome = TurnOutcome(user_message=user_message)

        req = ChatRequest(
            messages=list(buffer.snapshot()),
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        log_event(logging.INFO, "Starting turn", log_ctx, message_count=len(req.messages), stream=self._stream)

        pieces: List[str] = []
        if self._stream:
            await self._pump_stream(req, pieces, outcome, on_delta, log_ctx)
        else:
            await self._run_blocking(req, pieces, outcome, on_delta, log_ctx)

        content = "".join(pieces)
        if content:
            outcome.reply = ChatMessage.assistant(content)
            buffer.append(outcome.reply)
        outcome.elapsed_seconds = round(time.time() - start_time, 3)
        log_event(
            logging.INFO if outcome.ok else logging.WARNING,
            "Completed turn",
            log_ctx,
            elapsed_seconds=outcome.elapsed_seconds,
            delta_count=outcome.delta_count,
            reply_chars=len(content),
            committed=outcome.reply is not None,
            completed=outcome.completed,
            error=outcome.error.code if outcome.error else None,
        )
        return outcome

    async def _pump_stream(
        self,
        req: ChatRequest,
        pieces: List[str],
        outcome: TurnOutcome,
        on_delta: Optional[DeltaSink],
        log_ctx: Dict[str, Any],
    ) -> None:
        try:
            stream = await self._provider.open(req)
        except TransportError as e:
            log_event(logging.WARNING, "Transport failed", log_ctx, code=e.code, http_status=e.http_status)
            outcome.error = e
            return

        decoder = SseDecoder()
        events = decode_events(stream, decoder)
        try:
            async for event in events:
                if event.kind == "delta":
                    outcome.delta_count += 1
                    pieces.append(event.text)
                    if on_delta is not None:
                        on_delta(event.text)
                elif event.kind == "done":
                    # [DONE] 之后的字节一律忽略
                    outcome.completed = True
                    break
                else:
                    outcome.error = event.error or NetworkError(code="STREAM_ERROR", message=event.reason)
                    log_event(logging.WARNING, "Stream aborted", log_ctx, reason=event.reason)
                    break
            else:
                outcome.completed = True
        finally:
            await events.aclose()
            await stream.aclose()
        if decoder.skipped_frames:
            log_event(logging.INFO, "Skipped malformed frames", log_ctx, skipped=decoder.skipped_frames)

    async def _run_blocking(
        self,
        req: ChatRequest,
        pieces: List[str],
        outcome: TurnOutcome,
        on_delta: Optional[DeltaSink],
        log_ctx: Dict[str, Any],
    ) -> None:
        """非流式模式：整段回答作为一个增量转发。"""

        try:
            result = await self._provider.chat(req)
        except TransportError as e:
            log_event(logging.WARNING, "Transport failed", log_ctx, code=e.code, http_status=e.http_status)
            outcome.error = e
            return
        if result.usage:
            log_event(logging.INFO, "Token usage", log_ctx, total_tokens=result.usage.total_tokens)
        outcome.completed = True
        if result.content:
            outcome.delta_count = 1
            pieces.append(result.content)
            if on_delta is not None:
                on_delta(result.content)
