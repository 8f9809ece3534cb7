"""Filter chain for agency eligibility.

Filter order:
  1. AgencyDeduplicationFilter - one entry per agency id
  2. ActiveSubscriptionFilter  - one batched DB lookup, drops agencies silently
"""

import logging
from collections.abc import Callable
from datetime import datetime

from src.core.schemas import Agency
from src.pipeline.directory import AgencyDirectory

logger = logging.getLogger(__name__)

# A filter is a callable that takes agencies and returns a subset.
Filter = Callable[[list[Agency]], list[Agency]]


class AgencyDeduplicationFilter:
    """Keep the first occurrence of each agency id."""

    def __call__(self, agencies: list[Agency]) -> list[Agency]:
        seen: set[str] = set()
        result: list[Agency] = []
        for agency in agencies:
            if agency.id not in seen:
                seen.add(agency.id)
                result.append(agency)
        deduped = len(agencies) - len(result)
        if deduped:
            logger.debug("AgencyDeduplicationFilter: removed %d duplicates", deduped)
        return result


class ActiveSubscriptionFilter:
    """Remove agencies without a subscription that is active and unexpired at ``now``."""

    def __init__(self, directory: AgencyDirectory, now: datetime) -> None:
        self._directory = directory
        self._now = now

    def __call__(self, agencies: list[Agency]) -> list[Agency]:
        if not agencies:
            return agencies
        valid = self._directory.active_subscription_ids((a.id for a in agencies), self._now)
        result = []
        for agency in agencies:
            if agency.id in valid:
                result.append(agency)
            else:
                logger.debug("Agency '%s' skipped - no active subscription", agency.company_name)
        return result


def run_filter_chain(
    agencies: list[Agency],
    filters: list[Filter],
) -> list[Agency]:
    """Apply filters in order, returning the surviving agencies."""
    result = agencies
    for f in filters:
        result = f(result)
    return result
