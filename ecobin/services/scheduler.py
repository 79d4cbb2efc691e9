"""
Pipeline Scheduler — fires each job on its cron cadence, in UTC.

Runs in its own process (python -m ecobin.scheduler_main), never inside the
API process, so background work cannot block user-facing requests.

Guarantees per job:
1. Skip-if-running — a tick that arrives while the previous tick of the same
   job is still executing is skipped and logged, never queued.
2. Bounded — each tick is cancelled once it exceeds the job's timeout.
3. Isolated — an error inside a tick is logged and does not affect future
   ticks of that job or any other job.

Different jobs run fully concurrently on the same event loop.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.anomalies.detector import AnomalyDetector
from ecobin.config import Settings
from ecobin.exceptions import ConfigurationError, JobTimeoutError, TransientStoreError
from ecobin.insights.generator import InsightGenerator
from ecobin.observability import JOB_DURATION, JOB_RUNS
from ecobin.rewards.engine import RewardsEngine
from ecobin.services.metrics_aggregator import aggregate_day

logger = structlog.get_logger(__name__)

JobHandler = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledJob:
    name: str
    cron_expression: str
    handler: JobHandler
    timeout_seconds: Optional[float]
    trigger: CronTrigger


class PipelineScheduler:
    """
    Registry of cron-triggered jobs with a per-job running guard.

    The guard is scoped to each job name; there is no global lock, so one
    slow job never delays another.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._jobs: dict[str, ScheduledJob] = {}
        self._running: dict[str, asyncio.Task] = {}

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def is_running(self, job_name: str) -> bool:
        return job_name in self._running

    def schedule(
        self,
        job_name: str,
        cron_expression: str,
        handler: JobHandler,
        timeout_seconds: Optional[float] = None,
    ) -> ScheduledJob:
        """Register a recurring UTC cron trigger for a handler."""
        if job_name in self._jobs:
            raise ConfigurationError(f"Job {job_name} is already scheduled", config_key=job_name)
        try:
            trigger = CronTrigger.from_crontab(cron_expression, timezone=timezone.utc)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid cron expression for {job_name}: {cron_expression!r}",
                config_key=job_name,
            ) from e
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ConfigurationError(
                f"Timeout for {job_name} must be positive", config_key=job_name
            )

        job = ScheduledJob(
            name=job_name,
            cron_expression=cron_expression,
            handler=handler,
            timeout_seconds=timeout_seconds,
            trigger=trigger,
        )
        self._jobs[job_name] = job

        # The running guard in run_job decides skips (and logs them), so
        # APScheduler must be allowed to hand over an overlapping tick.
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=[job_name],
            id=job_name,
            name=job_name,
            max_instances=2,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(
            "job_scheduled",
            job=job_name,
            cron=cron_expression,
            timeout_seconds=timeout_seconds,
        )
        return job

    def start(self) -> None:
        self.scheduler.start()
        logger.info("pipeline_scheduler_started", jobs=self.job_names)

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """
        Stop firing new ticks, let in-flight ticks finish, then cancel stragglers.

        Cancelled ticks roll back their open transaction.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        pending = list(self._running.values())
        if pending:
            logger.info("waiting_for_inflight_jobs", jobs=list(self._running))
            _, not_done = await asyncio.wait(pending, timeout=grace_seconds)
            for task in not_done:
                task.cancel()
            if not_done:
                await asyncio.gather(*not_done, return_exceptions=True)
                logger.warning("inflight_jobs_cancelled", count=len(not_done))

        logger.info("pipeline_scheduler_stopped")

    async def run_job(self, job_name: str) -> str:
        """
        Execute one tick of a job.

        Returns the outcome: "success", "failed", "timeout" or "skipped".
        Never raises for handler errors.
        """
        job = self._jobs.get(job_name)
        if job is None:
            raise KeyError(f"Unknown job: {job_name}")

        # No await between the check and the set: atomic on the event loop.
        if job_name in self._running:
            logger.warning(
                "job_tick_skipped",
                job=job_name,
                reason="previous tick still running",
            )
            JOB_RUNS.labels(job=job_name, outcome="skipped").inc()
            return "skipped"

        task = asyncio.create_task(self._invoke(job), name=f"job:{job_name}")
        self._running[job_name] = task
        try:
            return await task
        finally:
            if self._running.get(job_name) is task:
                del self._running[job_name]

    async def run_all(self) -> dict[str, str]:
        """Run one tick of every job concurrently (startup catch-up)."""
        names = self.job_names
        outcomes = await asyncio.gather(*(self.run_job(n) for n in names))
        return dict(zip(names, outcomes))

    async def _invoke(self, job: ScheduledJob) -> str:
        started = time.monotonic()
        with structlog.contextvars.bound_contextvars(job=job.name):
            logger.info("job_tick_started")
            try:
                if job.timeout_seconds:
                    result = await asyncio.wait_for(job.handler(), timeout=job.timeout_seconds)
                else:
                    result = await job.handler()
            except asyncio.TimeoutError:
                err = JobTimeoutError(job.name, job.timeout_seconds or 0)
                logger.error("job_tick_timeout", **err.to_dict())
                outcome = "timeout"
            except asyncio.CancelledError:
                logger.warning("job_tick_cancelled")
                JOB_RUNS.labels(job=job.name, outcome="cancelled").inc()
                raise
            except TransientStoreError as e:
                logger.warning("job_tick_store_unavailable", error=str(e), retry="next_tick")
                outcome = "failed"
            except Exception as e:
                logger.exception(
                    "job_tick_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome = "failed"
            else:
                outcome = "success"
                elapsed = time.monotonic() - started
                JOB_DURATION.labels(job=job.name).observe(elapsed)
                logger.info(
                    "job_tick_completed",
                    duration_ms=round(elapsed * 1000, 1),
                    result=str(result) if result is not None else None,
                )

        JOB_RUNS.labels(job=job.name, outcome=outcome).inc()
        return outcome


def register_pipeline_jobs(
    scheduler: PipelineScheduler,
    cfg: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    rewards_engine: Optional[RewardsEngine] = None,
) -> PipelineScheduler:
    """Wire the four pipeline jobs at their configured cadences."""
    detector = AnomalyDetector(cfg)
    generator = InsightGenerator(cfg)
    rewards = rewards_engine or RewardsEngine(cfg)
    crons = cfg.job_crons()
    timeouts = cfg.job_timeouts()

    handlers: dict[str, JobHandler] = {
        "daily_metrics": lambda: aggregate_day(session_factory),
        "insights": lambda: generator.run(session_factory),
        "anomalies": lambda: detector.run(session_factory),
        "rewards_accrual": lambda: rewards.run_accrual(session_factory),
    }
    for name, handler in handlers.items():
        scheduler.schedule(name, crons[name], handler, timeout_seconds=timeouts[name])
    return scheduler
