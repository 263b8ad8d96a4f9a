import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FILE_NAME = "chatbot.log"

logger = logging.getLogger("chatbot_core")
logger.addHandler(logging.NullHandler())
# 终端留给流式输出，日志只写文件
logger.propagate = False


class JsonFormatter(logging.Formatter):
    def __init__(self, redact_content: bool = False):
        super().__init__()
        self._redact_content = redact_content

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact_content:
            msg = (msg or "")[:64]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(settings: Optional[Any] = None) -> logging.Logger:
    """给 chatbot_core logger 挂上 JSON 文件 handler，重复调用不会重复挂载。"""

    if settings is None:
        from chatbot_core.config.settings import get_settings

        settings = get_settings()
    level = logging.getLevelName(getattr(settings, "log_level", "INFO"))
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    log_dir = Path(settings.log_dir)
    log_path = (log_dir / LOG_FILE_NAME).resolve()
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(JsonFormatter(redact_content=getattr(settings, "log_redact_content", False)))
    logger.addHandler(fh)
    return logger


def log_event(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    """带结构化字段写一条日志（字段合并进 JSON 输出）。"""

    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})
