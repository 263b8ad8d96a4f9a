"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 CLI 层做统一捕获与用户提示：

- ConfigurationError: 启动期致命错误（缺少密钥、人设文件损坏等）。
- TransportError 及其子类: 只影响当前这一轮对话。
- PersonaNotFoundError: 本地恢复，展示可用人设列表。
"""

from typing import List, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """配置错误：缺少 API 密钥、人设文件缺失或格式错误、HTTP 客户端无法创建。"""


class ValidationError(BusinessError):
    """参数校验失败。"""


class TransportError(BusinessError):
    """与补全接口通信失败，仅终止当前轮次。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、流读取中断等。"""


class RequestTimeoutError(TransportError):
    """整个请求（含首字节等待）超过配置的超时时间。"""


class ApiError(TransportError):
    """接口返回非 2xx 状态码。

    body 中保存完整读取的错误响应体，便于诊断。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, body: str = "", **extra):
        super().__init__(code, message, http_status=http_status, **extra)
        self.body = body


class RateLimitError(ApiError):
    """接口限流（429），由上层决定是否稍后重试。"""


class PersonaNotFoundError(BusinessError):
    """请求的人设不存在。

    available 中保存全部人设的描述（含别名），直接展示给用户。
    """

    def __init__(self, name: str, available: Optional[List[str]] = None):
        self.name = name
        self.available = list(available or [])
        listing = ", ".join(self.available) or "(none)"
        super().__init__(
            code="PERSONA_NOT_FOUND",
            message=f"Unknown agent {name!r}. Available agents: {listing}",
            http_status=404,
        )
