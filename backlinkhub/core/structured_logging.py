"""
JSON logging for the API process and the cleanup CLI.

Every record, whether emitted through ``logging.getLogger(__name__)`` or
``structlog.get_logger()``, is rendered as one JSON object carrying the
service name plus the current request_id / run_id when set.
"""
from __future__ import annotations

import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)

SERVICE_NAME = "backlinkhub"
QUIET_LOGGERS = ("httpcore", "httpx", "stripe", "urllib3", "asyncio")


def _add_correlation(_logger, _method_name: str, event_dict: dict) -> dict:
    event_dict["service"] = SERVICE_NAME
    for key, var in (("request_id", request_id_var), ("run_id", run_id_var)):
        value = var.get()
        if value:
            event_dict[key] = value
    return event_dict


def _file_handler(log_dir: str, log_file: str, max_bytes: int, backup_count: int) -> logging.Handler | None:
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            Path(log_dir) / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        # unwritable log dir: stderr only
        return None


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "backlinkhub.jsonl",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_level: int | str = logging.INFO,
) -> None:
    """Route stdlib and structlog records to stderr and a rotating JSONL file.

    Replaces the root logger's handlers; call once per process.
    """
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_correlation,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_handler = _file_handler(log_dir, log_file, max_bytes, backup_count)
    if file_handler is not None:
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
