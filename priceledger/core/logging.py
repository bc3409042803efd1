import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

from priceledger.config import AppConfig


def configure_logging(config: AppConfig | None = None) -> None:
    """Configure structured logging for priceledger.

    Renders JSON when LOG_FORMAT is "json" (or JSON_LOGS=true in the
    environment), otherwise pretty console output.
    """
    log_level = config.log_level if config else os.getenv("LOG_LEVEL", "INFO")
    json_logs = os.getenv("JSON_LOGS", "false").lower() == "true" or (
        config is not None and config.log_format == "json"
    )

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers (logging.getLogger(__name__)) to the same stream
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = Path("logs/priceledger.log")
    if log_file.parent.exists():
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=log_level.upper(),
    )
