"""Quota tracker: per-agency daily caps for CV distribution.

Counters live on the agency row in SQLite. A counter whose last reset is
older than the window reads as zero (virtual reset); the physical reset
happens lazily on the next increment, inside one conditional UPDATE.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta

from src.core.db import increment_daily_count
from src.core.schemas import Agency, to_local_naive

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Reads effective daily counts and records confirmed deliveries.

    Usage::

        qt = QuotaTracker(conn, default_max_per_day=50)
        if qt.has_capacity(agency):
            ...  # deliver
            qt.increment(agency.id)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        default_max_per_day: int = 50,
        window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._default_max = default_max_per_day
        self._window = window
        self._clock = clock

    def is_stale(self, last_reset: datetime | None, now: datetime | None = None) -> bool:
        """True if a counter last reset at ``last_reset`` must read as zero."""
        if last_reset is None:
            return True
        now = to_local_naive(now or self._clock())
        return to_local_naive(last_reset) < now - self._window

    def effective_count(self, agency: Agency, now: datetime | None = None) -> int:
        """Stored daily count, or 0 if its reset is older than the window."""
        settings = agency.distribution
        if self.is_stale(settings.last_count_reset, now):
            return 0
        return settings.daily_count

    def max_per_day(self, agency: Agency) -> int:
        return agency.distribution.max_per_day or self._default_max

    def has_capacity(self, agency: Agency, now: datetime | None = None) -> bool:
        """Return True if the agency may receive another CV today."""
        count = self.effective_count(agency, now)
        limit = self.max_per_day(agency)
        allowed = count < limit
        if not allowed:
            logger.info(
                "Daily limit reached for '%s': %d/%d CVs",
                agency.company_name, count, limit,
            )
        return allowed

    def increment(self, agency_id: str) -> bool:
        """Count one confirmed delivery. Returns False if the agency is unknown.

        Raises sqlite3.Error if the update fails.
        """
        updated = increment_daily_count(
            self._conn, agency_id, now=self._clock(), window=self._window,
        )
        if not updated:
            logger.warning("Quota increment skipped: unknown agency '%s'", agency_id)
        else:
            logger.debug("Recorded delivery for agency '%s'", agency_id)
        return updated
