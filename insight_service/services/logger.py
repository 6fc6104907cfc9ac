"""
Structured Logging Service

Uses structlog over stdlib logging. Pipeline components import ``logger``;
per-user work binds its context once with ``get_logger(userId=...)``.
"""

import sys
import logging
import structlog

from insight_service.config import settings

# Chatty client libraries (httpx, httpcore, supabase's postgrest client)
QUIET_LOGGERS = ['httpx', 'httpcore', 'postgrest']


def configure_logging(environment: str, log_level: str):
    """
    Configure structlog and the stdlib root logger
    Args:
        environment: 'production' renders JSON, anything else renders for the console
        log_level: Level name (debug, info, warning, error)
    """
    renderer = structlog.processors.JSONRenderer() if environment == 'production' else structlog.dev.ConsoleRenderer()
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
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(**context):
    """Logger with context (userId, threadId, ...) bound to every event"""
    return structlog.get_logger().bind(**context)


configure_logging(settings.ENVIRONMENT, settings.LOG_LEVEL)

logger = structlog.get_logger()

"""
Log levels:
- debug: Per-chunk and per-batch progress
- info: Pipeline milestones (deduplication, persistence)
- warning: Soft failures (invalid confidence, missing bodies)
- error: AI generation failures, fatal pipeline errors
"""
