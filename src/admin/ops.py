"""Admin and ops read-outs over the distribution pipeline."""

import logging
import os
import resource
import time
from datetime import datetime, timedelta
from typing import Any

from src.core.db import (
    count_active_agencies,
    count_agencies_without_active_emails,
    count_candidates_since,
    count_pending_agencies,
    ping,
    set_agency_approval,
)
from src.core.schemas import (
    ApprovalStatus,
    ConfigValidation,
    DistributionStats,
    HealthStatus,
    PerformanceMetrics,
)
from src.notify.base import TimeoutChannel
from src.notify.smtp import SmtpChannel
from src.pipeline.jobs import BackgroundJobs
from src.pipeline.orchestrator import DistributionSystem

logger = logging.getLogger(__name__)

_PROCESS_STARTED = time.monotonic()


class AdminOps:
    """Pass-through reads of monitor state plus a few admin actions."""

    def __init__(
        self,
        system: DistributionSystem,
        jobs: BackgroundJobs | None = None,
    ) -> None:
        self._system = system
        self.jobs = jobs

    def _now(self) -> datetime:
        return self._system.clock()

    def get_health_status(self) -> HealthStatus:
        return self._system.monitor.get_health()

    def get_distribution_stats(self, days: int = 7) -> DistributionStats:
        """Agency and candidate counts plus recorded outcomes for the last ``days``."""
        health = self._system.monitor.get_health()
        now = self._now()
        since = now - timedelta(days=days)
        conn = self._system.conn

        active_agencies = count_active_agencies(conn)
        candidates = count_candidates_since(conn, since)
        recorded = self._system.monitor.summarize(since)
        return DistributionStats(
            period_days=days,
            active_agencies=active_agencies,
            candidates_processed=candidates,
            estimated_distributions=candidates * active_agencies,
            recorded_attempts=recorded.attempts,
            recorded_successes=recorded.successes,
            recorded_failures=recorded.failures,
            system_health=health,
            last_updated=now,
        )

    def validate_system_configuration(self) -> ConfigValidation:
        """Check the database, agency addresses, backlog and transport settings."""
        issues: list[str] = []
        conn = self._system.conn

        if not ping(conn):
            issues.append("Database connection issue")
            return ConfigValidation(is_valid=False, issues=issues)

        without_emails = count_agencies_without_active_emails(conn)
        if without_emails > 0:
            issues.append(f"{without_emails} active agencies without valid email addresses")

        pending = len(self._system.queue)
        max_queue = self._system.settings.monitoring.max_queue_length
        if pending > max_queue:
            issues.append(f"Distribution queue backlog: {pending} jobs (limit {max_queue})")

        channel = self._system.channel
        if isinstance(channel, TimeoutChannel):
            channel = channel.inner
        if isinstance(channel, SmtpChannel) and not channel.mailer.config.configured:
            issues.append("SMTP transport is not configured")

        return ConfigValidation(is_valid=not issues, issues=issues)

    def get_performance_metrics(self) -> PerformanceMetrics:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        times = os.times()
        return PerformanceMetrics(
            # ru_maxrss is in kilobytes on Linux
            max_rss_mb=round(usage.ru_maxrss / 1024, 1),
            cpu_user_s=times.user,
            cpu_system_s=times.system,
            uptime_s=round(time.monotonic() - _PROCESS_STARTED, 1),
            recorded_outcomes=len(self._system.monitor),
            pending_jobs=len(self._system.queue),
            is_processing=self._system.queue.is_processing,
        )

    def overview(self, days: int = 7) -> dict[str, Any]:
        """Everything an operator needs on one page, JSON-serializable."""
        conn = self._system.conn
        now = self._now()
        return {
            "system_health": self.get_health_status().model_dump(mode="json"),
            "config_validation": self.validate_system_configuration().model_dump(mode="json"),
            "performance": self.get_performance_metrics().model_dump(mode="json"),
            "distribution_stats": self.get_distribution_stats(days).model_dump(mode="json"),
            "counts": {
                "active_agencies": count_active_agencies(conn),
                "pending_approvals": count_pending_agencies(conn),
                "recent_candidates": count_candidates_since(conn, now - timedelta(hours=24)),
            },
            "background_jobs": (
                [s.model_dump(mode="json") for s in self.jobs.status()] if self.jobs else []
            ),
        }

    def emergency_stop(self, reason: str = "Emergency stop requested by admin") -> int:
        """Drop every pending job. The job in flight finishes. Returns the count."""
        dropped = self._system.queue.clear()
        logger.error("EMERGENCY STOP: %s (%d pending jobs dropped)", reason, dropped)
        return dropped

    def set_agency_approval(self, agency_id: str, approve: bool) -> bool:
        """Approve or deny an agency. Returns False if it is unknown."""
        status: ApprovalStatus = "approved" if approve else "denied"
        updated = set_agency_approval(self._system.conn, agency_id, status)
        if updated:
            logger.info("Agency %s %s", agency_id, status)
        else:
            logger.warning("Recruitment agency not found: %s", agency_id)
        return updated
