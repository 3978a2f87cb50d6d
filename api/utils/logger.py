"""
Structured logging configuration shared by the API, the worker and the CLI
"""
import logging
import sys
from typing import Optional

import structlog
from structlog.stdlib import LoggerFactory

from api.config import settings


def setup_logging(level: Optional[str] = None, console: Optional[bool] = None) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Log level name, defaults to API_LOG_LEVEL.
        console: Render human-readable lines instead of JSON. Defaults to DEBUG.
    """
    level_name = (level or settings.API_LOG_LEVEL).upper()
    use_console = settings.DEBUG if console is None else console

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout if not use_console else sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )

    if use_console:
        renderers = [structlog.dev.ConsoleRenderer()]
    else:
        renderers = [structlog.processors.EventRenamer("message"), structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            ),
            *renderers,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
