"""Provider 默认配置。

集中保存每个厂商的基础 URL、默认模型和生成参数默认值。
实际请求时，Settings 中的显式配置优先于这里的默认值。"""

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: str
    max_tokens: int
    default_temperature: float
    timeout_seconds: float


# OpenAI 及兼容接口（base_url 可通过 OPENAI_BASE_URL 指向其他兼容服务）
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_model="gpt-3.5-turbo",
    max_tokens=1000,
    default_temperature=0.7,
    timeout_seconds=120.0,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
