"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出

所有日志先经过 redact_sensitive：确认密码、owner 标识、原始 payload
与渠道凭证一律替换为占位符。
"""

import logging
import os

import structlog
from pydantic import SecretStr

REDACTED = "[redacted]"

_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_a",
        "password_b",
        "secret",
        "owner",
        "owner_principal",
        "payload",
        "content",
        "token",
        "bot_token",
        "smtp_password",
        "authorization",
    }
)

# httpx 在 INFO 级别记录完整 URL，Telegram 的 bot token 就在路径里
_QUIET_LOGGERS = ("httpx", "httpcore")


def redact_sensitive(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """替换敏感字段与 SecretStr 值"""
    for key, value in event_dict.items():
        if key.lower() in _SENSITIVE_KEYS or isinstance(value, SecretStr):
            event_dict[key] = REDACTED
    return event_dict


def setup_logging() -> None:
    """初始化 structlog 配置

    根据 CLAWGATE_LOG_FORMAT 环境变量选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出
    CLAWGATE_LOG_LEVEL 控制日志级别（默认 INFO）。
    """
    log_format = os.environ.get("CLAWGATE_LOG_FORMAT", "dev")
    log_level = os.environ.get("CLAWGATE_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
