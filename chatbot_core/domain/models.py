"""统一的对话与结果数据模型。

本模块定义了客户端内部共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），构造后不可变。
- ChatRequest: 发给补全接口的完整请求。
- ChatResult: 非流式模式下解析后的统一响应结果。
- StreamEvent: SSE 解码器产出的单个流式事件（增量 / 结束 / 解码错误）。

Provider 适配器（如 OpenAIClient）只依赖这些模型，
并负责在厂商 JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Literal, Optional

if TYPE_CHECKING:
    from chatbot_core.domain.exceptions import TransportError


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

ROLES = ("system", "user", "assistant")

# StreamEvent 的种类
StreamEventKind = Literal["delta", "done", "error"]


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息。

    - role: 消息角色，构造时确定，之后不可修改。
    - content: 纯文本内容；assistant 消息只有在流结束后才会被构造。
    """

    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role="assistant", content=content)

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    编排器根据会话缓冲区的快照生成 ChatRequest，再交给具体 ProviderClient。
    model / max_tokens / temperature 为 None 时由 Provider 使用自身默认值。
    """

    messages: List[ChatMessage]
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """非流式调用的最终结果。

    - provider: Provider 名（如 "openai"）。
    - model: 实际请求的模型 ID。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    """

    provider: str
    model: str
    choices: List[ChatChoice] = field(default_factory=list)
    usage: Optional[ChatUsage] = None

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content


@dataclass(frozen=True)
class StreamEvent:
    """SSE 解码器产生的流式事件，产生后立即被编排器消费，不做持久化。

    kind:
        - "delta": 回答文本的一个增量片段，保存在 text 中。
        - "done": 收到 [DONE] 结束标记。
        - "error": 流读取中途失败，reason 中保存原因，error 中保存原始的 TransportError。
    """

    kind: StreamEventKind
    text: str = ""
    reason: str = ""
    error: Optional["TransportError"] = field(default=None, compare=False)

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(kind="delta", text=text)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(kind="done")

    @classmethod
    def decode_error(cls, reason: str, error: Optional["TransportError"] = None) -> "StreamEvent":
        return cls(kind="error", reason=reason, error=error)
