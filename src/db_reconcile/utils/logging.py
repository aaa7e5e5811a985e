"""
日志配置模块 - 基于 structlog 的结构化日志

日志输出到 stderr，stdout 保留给 CLI 的 JSON 结果。
凭据和行数据在渲染前被屏蔽，引擎错误消息中的连接串密码同样被替换。
"""

import logging
import re
import sys
from typing import Any, List, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# 日志中禁止出现的字段（凭据、行数据）
REDACTED_KEYS = frozenset({"password", "passphrase", "private_key", "params", "row", "rows", "values"})

REDACTED = "***"

# 驱动错误消息中可能出现的 password=xxx / :xxx@host 片段
_DSN_PASSWORD_PATTERNS = (
    re.compile(r"(password\s*=\s*)('[^']*'|\S+)", re.IGNORECASE),
    re.compile(r"(://[^:/@\s]+:)([^@\s]+)(@)"),
)


def redact_sensitive(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """屏蔽凭据和行数据字段"""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def scrub_error_message(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """替换 error 字段中的连接串密码"""
    error = event_dict.get("error")
    if isinstance(error, str):
        for pattern in _DSN_PASSWORD_PATTERNS:
            error = pattern.sub(
                lambda m: m.group(1) + REDACTED + (m.group(3) if m.lastindex == 3 else ""),
                error,
            )
        event_dict["error"] = error
    return event_dict


def _shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive,
        scrub_error_message,
    ]


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    配置结构化日志

    参数:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        json_format: 是否使用 JSON 格式输出（生产环境推荐）
        stream: 输出流，默认 stderr
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    processors = _shared_processors()
    if json_format:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=(stream or sys.stderr).isatty(),
                sort_keys=False,
                pad_level=False,
            )
        )

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> Any:
    """
    获取结构化日志记录器

    示例:
        >>> logger = get_logger(__name__)
        >>> logger.info("query_executed", engine="mysql", row_count=10)
        2024-01-01T10:30:00Z [info] query_executed engine=mysql row_count=10
    """
    return structlog.get_logger(name)


def set_log_level(level: str) -> None:
    """动态设置根日志级别"""
    logging.getLogger().setLevel(getattr(logging, level.upper()))


def bind_context(**kwargs: Any) -> None:
    """
    绑定上下文字段到当前上下文的所有日志记录

    示例:
        >>> bind_context(command="sync", user_id="u-42")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """清除上下文字段"""
    structlog.contextvars.clear_contextvars()
