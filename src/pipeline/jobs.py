"""Maintenance jobs run on asyncio interval timers.

Jobs:
  reset_counters      zero positive daily counters
  subscription_check  log upcoming expiries, mark past-due subscriptions expired
  health_check        monitor health + configuration validation
"""

import asyncio
import contextlib
import logging
import math
import sqlite3
from collections.abc import Awaitable, Callable
from datetime import datetime

from src.core.config import JobsConfig
from src.core.db import expire_subscriptions, find_expiring_subscriptions, reset_daily_counters
from src.core.schemas import ConfigValidation, JobStatus
from src.pipeline.monitor import DistributionMonitor

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[None]]


class _Job:
    def __init__(self, name: str, interval_s: float, func: JobFunc) -> None:
        self.name = name
        self.interval_s = interval_s
        self.func = func
        self.task: asyncio.Task[None] | None = None
        self.runs = 0
        self.last_run: datetime | None = None
        self.last_error: str | None = None


class BackgroundJobs:
    """Schedules, triggers and reports the maintenance jobs."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        monitor: DistributionMonitor,
        config: JobsConfig | None = None,
        validate: Callable[[], ConfigValidation] | None = None,
        health_check_interval_s: float = 3600.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._monitor = monitor
        self._config = config or JobsConfig()
        self._validate = validate
        self._clock = clock
        self._shutting_down = False
        self._jobs: dict[str, _Job] = {}
        self._register("reset_counters", self._config.reset_counters_interval_hours * 3600,
                       self.reset_counters)
        self._register("subscription_check",
                       self._config.subscription_check_interval_hours * 3600,
                       self.check_subscription_expiry)
        self._register("health_check", health_check_interval_s, self.system_health_check)

    def _register(self, name: str, interval_s: float, func: JobFunc) -> None:
        self._jobs[name] = _Job(name, interval_s, func)

    @property
    def names(self) -> list[str]:
        return sorted(self._jobs)

    # -- jobs ---------------------------------------------------------------

    async def reset_counters(self) -> None:
        count = reset_daily_counters(self._conn, self._clock())
        logger.info("Reset daily counters for %d agencies", count)

    async def check_subscription_expiry(self) -> None:
        now = self._clock()
        notice_days = set(self._config.expiry_notice_days)
        horizon = max(notice_days, default=0)
        notices = 0
        for subscription, company_name in find_expiring_subscriptions(self._conn, now, horizon):
            days_left = math.ceil(
                (subscription.expiration_date - now).total_seconds() / 86400
            )
            if days_left in notice_days:
                logger.info("Subscription expiring in %d days: %s", days_left, company_name)
                notices += 1
        expired = expire_subscriptions(self._conn, now)
        logger.info(
            "Subscription check: %d expiry notices, %d subscriptions marked expired",
            notices, expired,
        )

    async def system_health_check(self) -> None:
        # Alert emails belong to the monitor timer; this job only reads and logs.
        health = self._monitor.get_health()
        validation = self._validate() if self._validate else None
        if health.status == "critical" or (validation is not None and not validation.is_valid):
            issues = list(health.issues) + (validation.issues if validation else [])
            logger.error(
                "SYSTEM HEALTH ALERT: distribution=%s issues=%s", health.status, issues,
            )

    # -- scheduling -----------------------------------------------------------

    async def trigger(self, name: str) -> None:
        """Run one job now. Raises KeyError for an unknown job, propagates job errors."""
        job = self._jobs.get(name)
        if job is None:
            msg = f"Job not found: {name}. Available: {', '.join(self.names)}"
            raise KeyError(msg)
        logger.info("Manually triggering job: %s", name)
        await self._run_once(job, raise_errors=True)

    def start(self) -> None:
        """Start every job's interval timer on the running event loop."""
        loop = asyncio.get_running_loop()
        self._shutting_down = False
        for job in self._jobs.values():
            if job.task is None or job.task.done():
                job.task = loop.create_task(self._loop(job))
                logger.info("Scheduled job: %s every %.0fs", job.name, job.interval_s)

    async def shutdown(self) -> None:
        self._shutting_down = True
        for job in self._jobs.values():
            if job.task is None:
                continue
            job.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await job.task
            job.task = None
            logger.info("Stopped job: %s", job.name)

    def status(self) -> list[JobStatus]:
        return [
            JobStatus(
                name=job.name,
                interval_s=job.interval_s,
                running=job.task is not None and not job.task.done(),
                runs=job.runs,
                last_run=job.last_run,
                last_error=job.last_error,
            )
            for job in self._jobs.values()
        ]

    async def _loop(self, job: _Job) -> None:
        while not self._shutting_down:
            await asyncio.sleep(job.interval_s)
            await self._run_once(job, raise_errors=False)

    async def _run_once(self, job: _Job, raise_errors: bool) -> None:
        started = self._clock()
        try:
            await job.func()
        except Exception as e:
            job.last_error = str(e) or type(e).__name__
            logger.exception("Background job %s failed", job.name)
            if raise_errors:
                raise
        else:
            job.last_error = None
            logger.info(
                "Completed background job: %s (%.0fms)",
                job.name, (self._clock() - started).total_seconds() * 1000,
            )
        finally:
            job.runs += 1
            job.last_run = started
