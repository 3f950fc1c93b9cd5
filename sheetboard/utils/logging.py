"""Structured logging: structlog events routed through stdlib handlers.

Events go to stdout and to a rotating ``sheetboard.log``. Debug mode renders
for humans; otherwise every line is one JSON object.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import structlog

# Chatty client libraries: per-request noise at INFO
_QUIET_LOGGERS = ("gspread", "google.auth", "urllib3", "httpx", "sqlalchemy.engine")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def setup_logging(
    debug: bool = False,
    log_dir: str = "logs",
    log_max_bytes: int = 10_000_000,
    log_backup_count: int = 5,
) -> None:
    """Configure structlog and the root logger. Safe to call more than once."""
    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *(
                [structlog.dev.ConsoleRenderer()]
                if debug
                else [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
            ),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "sheetboard.log"),
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError:
        # stdout only
        pass

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
