"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级从高到低：
构造参数 > 环境变量 > .env > config.yaml > 字段默认值。
"""

import os
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatbot_core.domain.exceptions import ConfigurationError


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHATBOT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(Path.cwd() / "config.yaml")

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatbotSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 补全接口 ----
    openai_api_key: Optional[str] = Field(default=None, description="API 密钥，构造 Provider 时必填")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="API 基础URL")
    openai_model: str = Field(default="gpt-3.5-turbo", description="模型 ID")
    openai_timeout_seconds: float = Field(
        default=120.0,
        ge=1.0,
        description="整个请求（含首字节等待）的超时时间（秒）",
    )

    # ---- 生成参数 ----
    max_tokens: int = Field(default=1000, ge=1, description="单次回答的 token 上限")
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="生成温度",
    )
    stream: bool = Field(default=True, description="是否使用流式接口")

    # ---- 人设 ----
    persona_file: Optional[str] = Field(default=None, description="外部人设 YAML 文件路径")
    persona_strict_aliases: bool = Field(
        default=False,
        description="人设别名冲突时是否直接拒绝加载",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否截断日志中的消息内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip() or None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("openai_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> ChatbotSettings:
    """构造配置对象，把 Pydantic 的校验错误转换为 ConfigurationError。"""

    try:
        return ChatbotSettings(**overrides)
    except PydanticValidationError as exc:
        raise ConfigurationError(code="INVALID_CONFIG", message=str(exc))


@lru_cache(maxsize=1)
def get_settings() -> ChatbotSettings:
    """进程级共享的配置对象（首次调用时加载）。"""

    return load_settings()


# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatbotSettings
