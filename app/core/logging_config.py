"""
structlog setup for the API process, the scheduler worker and the scripts.

Lines are JSON when ENVIRONMENT=production and console-rendered otherwise.
Context bound with structlog.contextvars (run_id, service) is merged into
every line.
"""

import logging
import os
import sys
from typing import Any, List, Optional

import structlog

IS_PRODUCTION = os.getenv("ENVIRONMENT", "development") == "production"

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "apscheduler")


def configure_logging(json_logs: bool = IS_PRODUCTION, level: int = logging.INFO) -> None:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


configure_logging()
