"""
Structured logging setup.

Call configure_logging() once at process start (API or scheduler).
Modules only ever do `logger = structlog.get_logger(__name__)`.
"""

import logging
import sys

import structlog


def add_job_context(logger, method_name, event_dict):
    """Promote bound job context to the front of the event dict."""
    job = event_dict.pop("job", None)
    if job:
        return {"job": job, **event_dict}
    return event_dict


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure stdlib logging and structlog with a shared processor chain."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # APScheduler's own "maximum number of running instances" chatter is
    # superseded by the pipeline's job_tick_skipped events.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_job_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if fmt == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
