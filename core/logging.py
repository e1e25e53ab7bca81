"""
核心日志模块

标准库 logging 负责输出，structlog 配置在其之上，
`logging.getLogger(__name__)` 与 `structlog.get_logger()` 最终进入同一组 handler。
每条记录都带有当前入站事件的 trace id（见 `trace_context`）。
"""

import json
import logging
import re
import uuid
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

import structlog
from dotenv import find_dotenv, load_dotenv

from core.config import settings
from core.context import trace_id_var

# 简单脱敏关键词
_REDACT_KEYS = {"token", "apikey", "api_key", "authorization", "password", "secret"}

_COMPILED_PATTERNS = []
for _k in _REDACT_KEYS:
    _e = re.escape(_k)
    _COMPILED_PATTERNS.extend(
        [
            (re.compile(rf"({_e}\s*=\s*)([^\s;,]+)", re.IGNORECASE), r"\1***"),
            (re.compile(rf'("{_e}"\s*:\s*")(.*?)(")', re.IGNORECASE), r"\1***\3"),
            (re.compile(rf"({_e}\s*:\s*)([^,}}\s]+)", re.IGNORECASE), r"\1***"),
        ]
    )


def _redact(text: str) -> str:
    if not text:
        return text
    masked = text
    for _p, _r in _COMPILED_PATTERNS:
        masked = _p.sub(_r, masked)
    return masked


class JsonFormatter(logging.Formatter):
    """每行一个 JSON 对象"""

    def __init__(self, include_traceback: bool = True, datefmt: Optional[str] = None) -> None:
        super().__init__(datefmt=datefmt)
        self.include_traceback = include_traceback
        self.datefmt = datefmt or "%Y-%m-%dT%H:%M:%S%z"

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": _redact(record.getMessage()),
            "trace_id": getattr(record, "correlation_id", "-"),
            "func_name": record.funcName,
            "lineno": record.lineno,
        }
        if record.exc_info and self.include_traceback:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class ColorTextFormatter(logging.Formatter):
    """纯文本格式化器，可选 ANSI 颜色"""

    _COLORS = {
        "DEBUG": "\x1b[90m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[35m",
    }
    _RESET = "\x1b[0m"

    def __init__(self, use_color: bool = True, datefmt: Optional[str] = None) -> None:
        fmt = "%(asctime)s [%(correlation_id)s][%(levelname)s][%(name)s] %(message)s"
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        out = _redact(super().format(record))
        if not self.use_color:
            return out
        color = self._COLORS.get(record.levelname)
        return f"{color}{out}{self._RESET}" if color else out


class _ContextFilter(logging.Filter):
    """把当前 trace id 注入为 correlation_id"""

    def filter(self, record: logging.LogRecord) -> bool:
        cid = trace_id_var.get()
        if cid == "-":
            cid = getattr(record, "correlation_id", "-")
        record.correlation_id = cid
        return True


class _MuteFilter(logging.Filter):
    """丢弃被静音前缀 (LOG_MUTE_LOGGERS) 的记录，WARNING 及以上始终放行"""

    def __init__(self, prefixes) -> None:
        super().__init__()
        self.prefixes = [p for p in prefixes if p]

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        name = record.name or ""
        return not any(name.startswith(p) for p in self.prefixes)


class SafeLoggerFactory(structlog.stdlib.LoggerFactory):
    """保证 logger 名称始终是字符串"""
    def __call__(self, *args, **kwargs):
        if args and args[0] is None:
            args = ("root",) + args[1:]
        elif not args:
            args = ("root",)
        return super().__call__(*args, **kwargs)


def configure_structlog() -> None:
    """让 structlog 走标准 logging 的 handler"""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        context_class=dict,
        logger_factory=SafeLoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _build_formatter(log_format: str, use_color: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(include_traceback=settings.LOG_INCLUDE_TRACEBACK)
    return ColorTextFormatter(use_color=use_color)


def setup_logging(log_dir: Optional[Path] = None) -> logging.Logger:
    """配置根 logger：控制台 handler 加滚动文件"""
    load_dotenv(find_dotenv(usecwd=True))

    configure_structlog()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    log_format = settings.LOG_FORMAT.lower()
    mute = _MuteFilter(settings.LOG_MUTE_LOGGERS)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_build_formatter(log_format, settings.LOG_COLOR))
    console_handler.addFilter(_ContextFilter())
    console_handler.addFilter(mute)
    root_logger.addHandler(console_handler)

    if settings.LOG_TO_FILE:
        target_dir = Path(log_dir or settings.LOG_DIR)
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(target_dir / "app.log"),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(_build_formatter(log_format, False))
        file_handler.addFilter(_ContextFilter())
        file_handler.addFilter(mute)
        root_logger.addHandler(file_handler)

    for item in settings.LOG_LEVEL_OVERRIDES.split(","):
        item = item.strip()
        if not item or "=" not in item:
            continue
        name, lvl = item.split("=", 1)
        if name.strip():
            logging.getLogger(name.strip()).setLevel(getattr(logging, lvl.strip().upper(), logging.WARNING))

    structlog.get_logger().info(
        "Log system initialized",
        level=logging.getLevelName(root_logger.level),
        format=log_format,
    )
    return root_logger


@contextmanager
def trace_context(trace_id: Optional[str] = None) -> Iterator[str]:
    """在一次入站事件处理期间绑定 trace id"""
    value = trace_id or uuid.uuid4().hex[:8]
    token = trace_id_var.set(value)
    try:
        yield value
    finally:
        trace_id_var.reset(token)
