"""Structured logging setup for the Trading Arena."""
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from arena.core.config import logging_config


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None, json_output: bool = True):
    """Configure structlog over the standard library.

    Args:
        level: Overrides LOG_LEVEL
        log_file: Overrides LOG_FILE; an empty string disables the file handler
        json_output: JSON lines when True, human-readable console output otherwise
    """
    level_name = (level or logging_config.log_level).upper()
    log_level = getattr(logging, level_name)
    log_file = logging_config.log_file if log_file is None else log_file

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(log_level)
        logging.getLogger().addHandler(file_handler)

    # ccxt and httpx are chatty at DEBUG
    for noisy in ("ccxt", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))
