"""Eligibility resolution: which agencies receive a given candidate today.

Data flow:
  1. Region from the candidate (location token, city table, default)
  2. Directory query: approved, active, enabled, has address, covers region
  3. Filter chain: dedup by id, valid subscription
  4. Daily quota with virtual reset, annotating each survivor
"""

import logging
from collections.abc import Callable
from datetime import datetime

from src.core.config import RegionConfig
from src.core.schemas import Candidate, EligibleAgency
from src.pipeline.directory import AgencyDirectory
from src.pipeline.matcher import (
    ActiveSubscriptionFilter,
    AgencyDeduplicationFilter,
    Filter,
    run_filter_chain,
)
from src.pipeline.quota_manager import QuotaTracker
from src.pipeline.regions import resolve_region

logger = logging.getLogger(__name__)


class EligibilityResolver:
    """Computes the agencies entitled to a candidate at resolution time."""

    def __init__(
        self,
        directory: AgencyDirectory,
        quota: QuotaTracker,
        regions: RegionConfig,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._directory = directory
        self._quota = quota
        self._regions = regions
        self._clock = clock

    def region_for(self, candidate: Candidate) -> str:
        return resolve_region(candidate, self._regions)

    def resolve(self, candidate: Candidate, region: str | None = None) -> list[EligibleAgency]:
        """Return eligible agencies in storage order. Empty when none match."""
        region = region or self.region_for(candidate)
        now = self._clock()

        agencies = self._directory.find_eligible_agencies(region)
        logger.debug("Found %d agencies covering region '%s'", len(agencies), region)

        filters: list[Filter] = [
            AgencyDeduplicationFilter(),
            ActiveSubscriptionFilter(self._directory, now),
        ]
        subscribed = run_filter_chain(agencies, filters)

        eligible: list[EligibleAgency] = []
        for agency in subscribed:
            if not self._quota.has_capacity(agency, now):
                continue
            eligible.append(
                EligibleAgency(
                    agency=agency,
                    effective_daily_count=self._quota.effective_count(agency, now),
                    max_per_day=self._quota.max_per_day(agency),
                )
            )

        logger.info(
            "Candidate %s (region '%s'): %d matched, %d subscribed, %d eligible",
            candidate.id, region, len(agencies), len(subscribed), len(eligible),
        )
        return eligible
