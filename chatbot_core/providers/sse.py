"""SSE 帧解码器。

把任意切分的网络字节流还原成有序的 StreamEvent 序列：

1. 每个分块按 UTF-8 增量解码（非法字节替换为 U+FFFD，不会中断）。
2. 解码后的文本追加到待处理缓冲区，再按换行切出完整的行。
3. 以 ``data:`` 开头的行：``[DONE]`` 产出 done 事件，其余按
   ``{"choices": [{"delta": {"content": ...}}]}`` 解析并产出 delta 事件。
4. 其他行（空行分隔符、event:/id: 等字段）忽略。

流结束时没有换行结尾的残余片段直接丢弃，不会被当作一行处理。
"""

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, List, Literal, Optional

from chatbot_core.domain.exceptions import TransportError
from chatbot_core.domain.models import StreamEvent
from chatbot_core.infrastructure.logging.logger import logger

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

DecoderState = Literal["idle", "receiving", "closed"]


class SseDecoder:
    """单条响应流独占的增量解码器。

    状态：idle -> receiving（收到第一个分块）-> closed（流结束或出错）。
    进入 closed 时不产出任何事件，是否完成由调用方根据流结束判断。
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._state: DecoderState = "idle"
        self.skipped_frames = 0

    @property
    def state(self) -> DecoderState:
        return self._state

    @property
    def pending(self) -> str:
        """尚未凑成完整一行的文本。"""

        return self._pending

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """喂入一个网络分块，返回其中完整行解析出的事件（按到达顺序）。"""

        if self._state == "closed":
            raise RuntimeError("SseDecoder is closed")
        self._state = "receiving"
        self._pending += self._utf8.decode(chunk)

        events: List[StreamEvent] = []
        while True:
            newline = self._pending.find("\n")
            if newline < 0:
                break
            line = self._pending[:newline]
            self._pending = self._pending[newline + 1:]
            event = self._parse_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        """结束解码；残余的不完整行被丢弃。"""

        if self._state == "closed":
            return
        if self._pending:
            logger.debug(
                "Dropped unterminated SSE fragment",
                extra={"extra": {"fragment_chars": len(self._pending)}},
            )
        self._pending = ""
        self._state = "closed"

    def _parse_line(self, line: str) -> Optional[StreamEvent]:
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):]
        if data.startswith(" "):
            data = data[1:]
        if data == DONE_SENTINEL:
            return StreamEvent.done()
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            self._skip(data)
            return None
        content = _delta_content(payload)
        if content is None:
            return None
        return StreamEvent.delta(content)

    def _skip(self, data: str) -> None:
        self.skipped_frames += 1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Skipped malformed SSE frame", extra={"extra": {"frame": data[:100]}})


def _delta_content(payload: Any) -> Optional[str]:
    """取出 choices[0].delta.content；结构不符或内容为空时返回 None。"""

    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str) or not content:
        return None
    return content


async def decode_events(
    stream: AsyncIterable[bytes],
    decoder: Optional[SseDecoder] = None,
) -> AsyncIterator[StreamEvent]:
    """把字节流泵入解码器，逐个产出事件。

    字节流中途抛出的 TransportError 转换成一个 error 事件后结束，
    由编排器决定如何处理已收到的内容。
    """

    decoder = decoder or SseDecoder()
    try:
        async for chunk in stream:
            for event in decoder.feed(chunk):
                yield event
    except TransportError as e:
        yield StreamEvent.decode_error(e.message, error=e)
    finally:
        decoder.close()
