"""structlog 配置

应用日志（structlog）与第三方库日志（stdlib logging）走同一个 handler，
dev 模式输出彩色控制台格式，json 模式每行一个 JSON 对象。
"""

import logging
import os

import structlog

# 这些库的 INFO 日志逐请求输出，只保留告警
QUIET_LOGGERS = ("LiteLLM", "httpx", "aiosqlite")


def _build_processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging() -> None:
    """按 OPSPILOT_LOG_FORMAT（json / dev）与 OPSPILOT_LOG_LEVEL 初始化日志"""
    json_output = os.environ.get("OPSPILOT_LOG_FORMAT", "dev").lower() == "json"
    level_name = os.environ.get("OPSPILOT_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain = _build_processors(json_output)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
