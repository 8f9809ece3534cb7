"""Batch dispatcher: delivers one distribution job to its agencies.

A job's agencies are split into consecutive batches of at most
``max_batch_size``. Batches run strictly in order with ``batch_delay_ms``
between them; inside a batch every agency is sent concurrently and the batch
completes when all sends have settled. A failing agency never affects its
siblings, later batches or later jobs.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable
from datetime import datetime

from src.core.errors import DeliveryError
from src.core.schemas import (
    CandidateEmailData,
    DispatchOutcome,
    DistributionJob,
    EligibleAgency,
    JobSummary,
    NotificationPayload,
)
from src.notify.base import DeliveryChannel
from src.notify.template import build_candidate_email_data
from src.pipeline.monitor import DistributionMonitor
from src.pipeline.quota_manager import QuotaTracker

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def chunk(agencies: list[EligibleAgency], size: int) -> list[list[EligibleAgency]]:
    """Split into consecutive batches of at most ``size``."""
    return [agencies[i:i + size] for i in range(0, len(agencies), size)]


class BatchDispatcher:
    """Processes distribution jobs batch by batch."""

    def __init__(
        self,
        channel: DeliveryChannel,
        quota: QuotaTracker,
        monitor: DistributionMonitor,
        max_batch_size: int = 100,
        batch_delay_ms: int = 500,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._channel = channel
        self._quota = quota
        self._monitor = monitor
        self._max_batch_size = max_batch_size
        self._batch_delay_s = batch_delay_ms / 1000
        self._clock = clock
        self._sleep = sleep

    async def process_job(self, job: DistributionJob) -> JobSummary:
        """Deliver a job to all its agencies and tally the results."""
        started_at = self._clock()
        payload_data = build_candidate_email_data(job.candidate, job.region)
        batches = chunk(job.agencies, self._max_batch_size)

        success_count = 0
        error_count = 0
        for index, batch in enumerate(batches):
            if index > 0 and self._batch_delay_s > 0:
                await self._sleep(self._batch_delay_s)
            logger.debug(
                "Job %s: batch %d/%d (%d agencies)",
                job.id, index + 1, len(batches), len(batch),
            )
            results = await asyncio.gather(
                *(self.send_to_agency(job, eligible, payload_data) for eligible in batch)
            )
            succeeded = sum(results)
            success_count += succeeded
            error_count += len(results) - succeeded

        summary = JobSummary(
            job_id=job.id,
            candidate_id=job.candidate.id,
            batches=len(batches),
            success_count=success_count,
            error_count=error_count,
            started_at=started_at,
            finished_at=self._clock(),
        )
        logger.info(
            "Distribution completed for candidate %s: %d success, %d errors (%d batches)",
            job.candidate.id, success_count, error_count, len(batches),
        )
        return summary

    async def send_to_agency(
        self,
        job: DistributionJob,
        eligible: EligibleAgency,
        payload_data: CandidateEmailData | None = None,
    ) -> bool:
        """Deliver to every active address of one agency.

        Never raises: failures become a failed outcome. Returns True on success.
        """
        agency = eligible.agency
        if payload_data is None:
            payload_data = build_candidate_email_data(job.candidate, job.region)
        payload = NotificationPayload(
            candidate=payload_data, agency_id=agency.id, agency_name=agency.company_name,
        )

        start = time.perf_counter()
        error: str | None = None
        try:
            await self._deliver(agency.active_emails(), payload)
        except Exception as e:
            error = str(e) or type(e).__name__
        elapsed_ms = (time.perf_counter() - start) * 1000

        if error is None:
            self._record_quota(agency.id)
            logger.info(
                "CV sent to agency %s (%d recipients)",
                agency.company_name, len(agency.active_emails()),
            )

        self._monitor.record(
            DispatchOutcome(
                timestamp=self._clock(),
                candidate_id=job.candidate.id,
                agency_id=agency.id,
                success=error is None,
                error=error,
                processing_time_ms=elapsed_ms,
            )
        )
        return error is None

    async def _deliver(self, addresses: list[str], payload: NotificationPayload) -> None:
        """Send to all addresses; any failed address fails the agency."""
        if not addresses:
            msg = "no active recruitment emails"
            raise DeliveryError(msg)
        results = await asyncio.gather(
            *(self._channel.send(address, payload) for address in addresses),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if isinstance(failure, asyncio.CancelledError):
                raise failure
        if failures:
            msg = f"{len(failures)}/{len(addresses)} recipients failed: {failures[0]}"
            raise DeliveryError(msg)

    def _record_quota(self, agency_id: str) -> None:
        try:
            self._quota.increment(agency_id)
        except sqlite3.Error as e:
            logger.warning("Quota update failed for agency %s: %s", agency_id, e)
