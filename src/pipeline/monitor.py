"""Distribution monitor: live outcome buffer and health classification.

Outcomes are kept in memory only, in a bounded deque (oldest evicted first).
Health is derived from the outcomes inside the trailing window:

  failure_rate > max_failure_rate          -> warning
  avg_processing_time > max_processing_time -> warning
  success_rate < min_success_rate           -> critical

The most severe triggered condition wins; no outcomes in the window is
"unknown".
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from src.core.config import MonitoringConfig
from src.core.schemas import DispatchOutcome, HealthMetrics, HealthState, HealthStatus

logger = logging.getLogger(__name__)

AlertSink = Callable[[HealthStatus], Awaitable[None]]

_SEVERITY: dict[HealthState, int] = {"unknown": 0, "healthy": 1, "warning": 2, "critical": 3}


class OutcomeSummary:
    """Counts over a slice of recorded outcomes."""

    def __init__(self, attempts: int, successes: int, total_time_ms: float) -> None:
        self.attempts = attempts
        self.successes = successes
        self.failures = attempts - successes
        self.total_time_ms = total_time_ms

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.attempts if self.attempts else 0.0


class DistributionMonitor:
    """Records every dispatch attempt and reports pipeline health."""

    def __init__(
        self,
        config: MonitoringConfig | None = None,
        alert_sink: AlertSink | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config or MonitoringConfig()
        self._alert_sink = alert_sink
        self._clock = clock
        self._outcomes: deque[DispatchOutcome] = deque(maxlen=self._config.buffer_capacity)
        self._task: asyncio.Task[None] | None = None
        self.last_health: HealthStatus | None = None

    @property
    def capacity(self) -> int:
        return self._config.buffer_capacity

    def __len__(self) -> int:
        return len(self._outcomes)

    def outcomes(self) -> list[DispatchOutcome]:
        """Snapshot of the buffer, oldest first."""
        return list(self._outcomes)

    def record(self, outcome: DispatchOutcome) -> DispatchOutcome:
        """Append an outcome, evicting the oldest one when full."""
        self._outcomes.append(outcome)
        if outcome.success:
            logger.info(
                "Distribution success: candidate %s -> agency %s (%.0fms)",
                outcome.candidate_id, outcome.agency_id, outcome.processing_time_ms,
            )
        else:
            logger.warning(
                "Distribution failed: candidate %s -> agency %s - %s",
                outcome.candidate_id, outcome.agency_id, outcome.error,
            )
        return outcome

    def summarize(self, since: datetime) -> OutcomeSummary:
        """Aggregate outcomes recorded at or after ``since``."""
        attempts = successes = 0
        total_time = 0.0
        for o in self._outcomes:
            if o.timestamp < since:
                continue
            attempts += 1
            successes += int(o.success)
            total_time += o.processing_time_ms
        return OutcomeSummary(attempts, successes, total_time)

    def get_health(self, now: datetime | None = None) -> HealthStatus:
        """Classify the outcomes inside the trailing health window."""
        now = now or self._clock()
        since = now - timedelta(minutes=self._config.health_window_minutes)
        summary = self.summarize(since)

        if summary.attempts == 0:
            return HealthStatus(
                status="unknown",
                message="No recent distribution activity",
                checked_at=now,
            )

        success_rate = summary.successes / summary.attempts
        failure_rate = summary.failures / summary.attempts
        avg_time = summary.avg_time_ms

        status: HealthState = "healthy"
        issues: list[str] = []

        if failure_rate > self._config.max_failure_rate:
            status = _worst(status, "warning")
            issues.append(f"High failure rate: {failure_rate * 100:.1f}%")
        if avg_time > self._config.max_processing_time_ms:
            status = _worst(status, "warning")
            issues.append(f"Slow processing: {avg_time:.0f}ms average")
        if success_rate < self._config.min_success_rate:
            status = _worst(status, "critical")
            issues.append(f"Low success rate: {success_rate * 100:.1f}%")

        return HealthStatus(
            status=status,
            message="All systems operational" if not issues else ", ".join(issues),
            metrics=HealthMetrics(
                total_attempts=summary.attempts,
                successful=summary.successes,
                failed=summary.failures,
                success_rate=round(success_rate, 2),
                failure_rate=round(failure_rate, 2),
                avg_processing_time_ms=round(avg_time),
            ),
            issues=issues,
            checked_at=now,
        )

    async def check_health(self) -> HealthStatus:
        """One tick of the periodic health check. Alerts on critical."""
        health = self.get_health()
        self.last_health = health
        if health.status == "critical":
            logger.error("CRITICAL: distribution health degraded: %s", health.message)
            await self._send_alert(health)
        elif health.status == "warning":
            logger.warning("Distribution performance issues: %s", health.message)
        return health

    async def _send_alert(self, health: HealthStatus) -> None:
        if self._alert_sink is None:
            return
        try:
            await self._alert_sink(health)
        except Exception:
            logger.exception("Failed to send health alert")

    def start(self) -> None:
        """Start the periodic health check on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Distribution monitoring started (every %.0fs)",
            self._config.health_check_interval_s,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._config.health_check_interval_s)
            try:
                await self.check_health()
            except Exception:
                logger.exception("Health check failed")


def _worst(current: HealthState, candidate: HealthState) -> HealthState:
    return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current
