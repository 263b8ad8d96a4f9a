"""LLM Provider 集成层。

该包下的模块负责：
- 定义传输层抽象接口 (base)。
- 维护 Provider 默认配置 (registry)。
- 提供具体实现 (openai_client) 与 SSE 解码 (sse)。
"""

from typing import Optional

from chatbot_core.config.settings import get_settings
from chatbot_core.providers.base import ByteStream, ProviderClient
from chatbot_core.providers.openai_client import OpenAIClient
from chatbot_core.providers.registry import get_provider_config


def create_provider(settings=None, name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认使用 OpenAI 兼容接口。"""

    if settings is None:
        settings = get_settings()
    cfg = get_provider_config(name or OpenAIClient.name)
    if cfg.name == OpenAIClient.name:
        return OpenAIClient(settings)
    raise KeyError(f"No client implementation for provider: {cfg.name!r}")


__all__ = ["ByteStream", "OpenAIClient", "ProviderClient", "create_provider"]
