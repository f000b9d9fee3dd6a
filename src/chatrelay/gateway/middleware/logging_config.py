"""structlog 配置模块

structlog 事件经 stdlib logging 输出，第三方库（pika、uvicorn、aiosqlite）
的日志走同一条 ProcessorFormatter 链。

环境变量：
- CHATRELAY_LOG_FORMAT: "dev"（默认，pretty print）或 "json"
- CHATRELAY_LOG_LEVEL: 根日志级别（默认 INFO）
- CHATRELAY_LOG_LEVELS: 按 logger 覆盖级别，如
  "chatrelay.gateway.services.relay=DEBUG,pika=INFO"
- LOGFIRE_SEND_TO_LOGFIRE: 是否启用 Logfire APM
"""

import logging
import os

import structlog

# 默认压低的 logger：
# pika 在 DEBUG 下逐帧输出；uvicorn.access 与 LoggingMiddleware 的请求日志重复；
# aiosqlite 每条语句一行
DEFAULT_LOGGER_LEVELS: dict[str, int] = {
    "pika": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _level(name: str, default: int = logging.INFO) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def parse_logger_levels(value: str) -> dict[str, int]:
    """解析 "logger=LEVEL,..."，忽略格式错误或未知级别的条目"""
    levels: dict[str, int] = {}
    for item in value.split(","):
        name, sep, level_name = item.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        level = logging.getLevelName(level_name.strip().upper())
        if isinstance(level, int):
            levels[name] = level
    return levels


def setup_logging() -> None:
    """初始化 structlog 与 stdlib logging"""
    log_format = os.environ.get("CHATRELAY_LOG_FORMAT", "dev")
    root_level = _level(os.environ.get("CHATRELAY_LOG_LEVEL", "INFO"))
    logger_levels = {
        **DEFAULT_LOGGER_LEVELS,
        **parse_logger_levels(os.environ.get("CHATRELAY_LOG_LEVELS", "")),
    }

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        # JSON 中异常需展开为字符串字段
        renderer_chain: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer_chain = [structlog.dev.ConsoleRenderer()]

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
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderer_chain,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    for name, level in logger_levels.items():
        logging.getLogger(name).setLevel(level)


def setup_logfire(app) -> None:
    """Logfire 可选初始化（需要 apm 可选依赖与 LOGFIRE_TOKEN）"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi(app)
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
            error=str(e),
        )
