"""
Structured logging setup using structlog.

Every module logs through ``get_logger(__name__)`` and emits snake_case
event names with key/value context:

    logger.info("processing_started", source_id=42, force_reprocess=False)

The same shared processor chain feeds either a JSON renderer (log
aggregation, production) or a console renderer (local development).
Standard-library logging from third-party libraries (uvicorn, celery,
httpx, openai) is routed through the same formatter.
"""

import logging
import sys

import structlog

from contentpipe.core.config import settings


def _use_json() -> bool:
    return settings.LOG_FORMAT == "json" or settings.is_production


def setup_logging(log_level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Override for settings.LOG_LEVEL
    """
    level = (log_level or settings.LOG_LEVEL).upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if _use_json():
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a named structlog logger.

    Configures logging with defaults the first time it is called, so
    modules imported outside the API process (Celery workers, scripts)
    still get structured output.
    """
    if not structlog.is_configured():
        setup_logging()

    return structlog.get_logger(name)
