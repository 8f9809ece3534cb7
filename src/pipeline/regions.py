"""Candidate -> region resolution.

Order:
  1. ``location`` if it already is a canonical region token
  2. first city in the lookup table found inside ``address`` or ``city``
  3. the configured default region
"""

import logging

from src.core.config import RegionConfig
from src.core.schemas import Candidate

logger = logging.getLogger(__name__)


def resolve_region(candidate: Candidate, config: RegionConfig) -> str:
    """Return the region whose agencies should receive this candidate."""
    location = candidate.location.strip().lower()
    if location in config.regions:
        return location

    text = (candidate.address or candidate.city).lower()
    if text:
        for city, region in config.city_map.items():
            if city.lower() in text:
                return region

    logger.debug(
        "No region match for candidate %s - defaulting to '%s'",
        candidate.id, config.default_region,
    )
    return config.default_region
