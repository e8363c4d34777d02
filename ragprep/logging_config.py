"""Structured logging setup for hosts embedding ragprep."""
import logging
from typing import Optional

import structlog

from ragprep import config


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog output through stdlib logging as JSON lines.

    Args:
        level: Log level name (default from config.LOG_LEVEL)
    """
    level_name = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(format="%(message)s", level=level_name)
    logging.getLogger().setLevel(level_name)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
