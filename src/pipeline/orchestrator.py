"""Orchestrator: wires eligibility, queue, dispatcher, quota and monitor.

Data flow:
  1. Precondition check on the candidate
  2. Region + eligibility resolution (synchronous, errors propagate)
  3. Enqueue the job and return the resolved count
  4. Background drain: batches -> channel sends -> quota -> monitor
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.core.config import Settings
from src.core.errors import PreconditionError
from src.core.schemas import Candidate, DistributionJob, DistributionResult
from src.notify.base import DeliveryChannel, TimeoutChannel
from src.pipeline.directory import AgencyDirectory
from src.pipeline.dispatch_queue import DispatchQueue
from src.pipeline.dispatcher import BatchDispatcher
from src.pipeline.eligibility import EligibilityResolver
from src.pipeline.monitor import AlertSink, DistributionMonitor
from src.pipeline.quota_manager import QuotaTracker

logger = logging.getLogger(__name__)


class CVDistributionService:
    """Entry point called right after a candidate record is persisted."""

    def __init__(
        self,
        resolver: EligibilityResolver,
        queue: DispatchQueue,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._resolver = resolver
        self._queue = queue
        self._clock = clock

    @property
    def queue(self) -> DispatchQueue:
        return self._queue

    async def distribute_cv_to_agencies(self, candidate: Candidate) -> DistributionResult:
        """Resolve eligible agencies and queue the delivery.

        Returns as soon as the job is queued; delivery outcomes are only
        visible through the monitor.

        Raises:
            PreconditionError: If the candidate has no id or no positions.
        """
        _check_candidate(candidate)

        region = self._resolver.region_for(candidate)
        logger.info("Starting CV distribution for candidate %s, region '%s'", candidate.id, region)

        eligible = self._resolver.resolve(candidate, region)
        if not eligible:
            logger.info("No eligible agencies for candidate %s", candidate.id)
            return DistributionResult(success=True, distributed_count=0)

        now = self._clock()
        job = DistributionJob(
            id=f"{candidate.id}_{int(now.timestamp() * 1000)}",
            candidate=candidate,
            region=region,
            agencies=eligible,
            enqueued_at=now,
        )
        self._queue.enqueue(job)
        return DistributionResult(success=True, distributed_count=len(eligible), job_id=job.id)

    async def wait_until_idle(self) -> None:
        """Wait for every queued job to finish."""
        await self._queue.join()


def _check_candidate(candidate: Candidate | None) -> None:
    if candidate is None or not candidate.id:
        msg = "Invalid candidate data: missing id"
        raise PreconditionError(msg)
    if not candidate.positions:
        msg = f"Invalid candidate data: candidate {candidate.id} has no positions"
        raise PreconditionError(msg)


@dataclass
class DistributionSystem:
    """All pipeline components, constructed once per process."""

    settings: Settings
    conn: sqlite3.Connection
    channel: DeliveryChannel
    directory: AgencyDirectory
    quota: QuotaTracker
    monitor: DistributionMonitor
    dispatcher: BatchDispatcher
    queue: DispatchQueue
    resolver: EligibilityResolver
    service: CVDistributionService
    clock: Callable[[], datetime] = datetime.now

    async def shutdown(self, wait: bool = True) -> None:
        await self.queue.close(wait=wait)
        await self.monitor.stop()


def build_distribution_system(
    settings: Settings,
    conn: sqlite3.Connection,
    channel: DeliveryChannel,
    alert_sink: AlertSink | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> DistributionSystem:
    """Construct and wire the pipeline. Wraps ``channel`` in a timeout if configured."""
    dist = settings.distribution
    if dist.send_timeout_s is not None:
        channel = TimeoutChannel(channel, dist.send_timeout_s)

    directory = AgencyDirectory(conn)
    quota = QuotaTracker(
        conn,
        default_max_per_day=dist.default_max_per_day,
        window=timedelta(hours=dist.reset_window_hours),
        clock=clock,
    )
    monitor = DistributionMonitor(settings.monitoring, alert_sink=alert_sink, clock=clock)
    dispatcher = BatchDispatcher(
        channel,
        quota,
        monitor,
        max_batch_size=dist.max_batch_size,
        batch_delay_ms=dist.batch_delay_ms,
        clock=clock,
    )
    queue = DispatchQueue(dispatcher.process_job, job_delay_ms=dist.job_delay_ms)
    resolver = EligibilityResolver(directory, quota, settings.regions, clock=clock)
    service = CVDistributionService(resolver, queue, clock=clock)
    return DistributionSystem(
        settings=settings,
        conn=conn,
        channel=channel,
        directory=directory,
        quota=quota,
        monitor=monitor,
        dispatcher=dispatcher,
        queue=queue,
        resolver=resolver,
        service=service,
        clock=clock,
    )
