from typing import Iterator, List, Optional, Tuple

from .models import ChatMessage, Role


class ConversationBuffer:
    """按时间顺序排列的会话消息日志。

    只允许追加：没有更新或删除操作。失败的轮次会保留已经追加的 user 消息，
    让用户能看到出错前到底问了什么。
    """

    def __init__(self, messages: Optional[List[ChatMessage]] = None):
        self._messages: List[ChatMessage] = list(messages or [])

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def snapshot(self) -> Tuple[ChatMessage, ...]:
        """返回当前消息的只读有序视图，用于构造请求。"""

        return tuple(self._messages)

    def count(self, role: Role) -> int:
        return sum(1 for m in self._messages if m.role == role)

    @property
    def system_prompt(self) -> Optional[str]:
        if self._messages and self._messages[0].role == "system":
            return self._messages[0].content
        return None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self.snapshot())
