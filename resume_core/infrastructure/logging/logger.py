"""JSON Lines 日志。

所有模块共用名为 ``resume_core`` 的 logger，写入 ``<log_dir>/resume.log``。
结构化字段通过 ``extra={"extra": {...}}`` 传入，并平铺到每行 JSON 中。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from resume_core.config.settings import settings

LOGGER_NAME = "resume_core"
LOG_FILE = "resume.log"
REDACTED_MSG_CHARS = 64


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self.redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage() or ""
        if self.redact:
            msg = msg[:REDACTED_MSG_CHARS]
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line: Dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            line.update(fields)
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    """配置文件 handler；重复调用不会叠加 handler。"""

    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(logging.INFO)
    log_path = Path(settings.log_dir) / LOG_FILE
    for handler in log.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path.resolve():
            return log
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(JsonFormatter(redact=settings.log_redact_content))
    log.addHandler(handler)
    return log


def log_event(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    """记录一条结构化事件，log_ctx 为请求级上下文（trace_id、subject 等）。"""

    logger.log(level, message, extra={"extra": {**log_ctx, **fields}})


logger = setup_logger()
