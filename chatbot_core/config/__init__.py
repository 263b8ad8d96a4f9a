"""配置加载（环境变量、.env、config.yaml）。"""

from chatbot_core.config.settings import Settings, get_settings, load_settings

__all__ = ["Settings", "get_settings", "load_settings"]
