"""structlog 配置模块 -- gateway 与同步 CLI 共用

每条日志带 service 字段区分进程（chainmirror-gateway / chainmirror-sync）。
RPC 轮询会让 web3 / aiohttp / aiosqlite 等库产生大量日志，默认压到 WARNING，
可通过 CHAINMIRROR_THIRD_PARTY_LOG_LEVEL 放开。
"""

import logging
import os
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

THIRD_PARTY_LOGGERS = (
    "web3",
    "urllib3",
    "aiohttp",
    "aiosqlite",
    "httpx",
    "httpcore",
)


def add_service(service: str) -> Processor:
    """为每条日志补充 service 字段（已显式传入时不覆盖）"""

    def processor(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def _level(name: str, default: int) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), default)


def setup_logging(
    service: str = "chainmirror",
    log_format: str | None = None,
    log_level: str | None = None,
) -> None:
    """初始化 structlog 与标准库 logging

    Args:
        service: 写入每条日志的进程名
        log_format: "json" 为结构化输出，其他值为 dev 可读输出；
            默认取 CHAINMIRROR_LOG_FORMAT
        log_level: 默认取 CHAINMIRROR_LOG_LEVEL（INFO）
    """
    log_format = log_format or os.environ.get("CHAINMIRROR_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("CHAINMIRROR_LOG_LEVEL", "INFO")
    third_party_level = os.environ.get("CHAINMIRROR_THIRD_PARTY_LOG_LEVEL", "WARNING")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service(service),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer: Processor
    if log_format == "json":
        shared_processors.append(structlog.processors.dict_tracebacks)
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # web3 / uvicorn 的标准库日志也走同一个 formatter
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level(log_level, logging.INFO))

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(_level(third_party_level, logging.WARNING))
