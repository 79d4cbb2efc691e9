"""
Scheduler Entry Point — runs in its own process.

Usage:
    python -m ecobin.scheduler_main

This does NOT run a web server. It runs the pipeline jobs on their UTC
cadences: daily metrics, insights, anomaly detection and rewards accrual.
"""

import asyncio
import signal
import sys

import structlog

from ecobin.config import settings, validate_settings
from ecobin.db.engine import close_db, get_session_factory, init_db
from ecobin.exceptions import ConfigurationError
from ecobin.logging_config import configure_logging
from ecobin.services.scheduler import PipelineScheduler, register_pipeline_jobs

logger = structlog.get_logger(__name__)


async def main() -> int:
    """Initialize and run the scheduler until SIGINT/SIGTERM."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("scheduler_starting", version=settings.app_version)

    try:
        cfg = validate_settings(settings)
    except ConfigurationError as e:
        logger.error("invalid_configuration", **e.to_dict())
        return 1

    await init_db()
    session_factory = get_session_factory()

    scheduler = register_pipeline_jobs(PipelineScheduler(), cfg, session_factory)

    if cfg.run_jobs_on_startup:
        logger.info("running_startup_pass")
        outcomes = await scheduler.run_all()
        logger.info("startup_pass_completed", outcomes=outcomes)

    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    logger.info("scheduler_running", jobs=scheduler.job_names)
    await stop_event.wait()

    await scheduler.stop(grace_seconds=cfg.graceful_shutdown_seconds)
    await close_db()
    logger.info("scheduler_shutdown_complete")
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
