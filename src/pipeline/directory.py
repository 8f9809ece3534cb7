"""Read-only view over agency and subscription records."""

import sqlite3
from collections.abc import Iterable
from datetime import datetime

from src.core.db import (
    find_active_subscription,
    find_active_subscription_ids,
    find_agencies_by_region,
    get_agency,
)
from src.core.schemas import Agency, Subscription


class AgencyDirectory:
    """Queries the eligibility-relevant slice of the agency store."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def find_eligible_agencies(self, region: str) -> list[Agency]:
        """Approved, active, enabled agencies with an address that cover ``region``."""
        return find_agencies_by_region(self._conn, region)

    def find_active_subscription(
        self, agency_id: str, now: datetime | None = None,
    ) -> Subscription | None:
        return find_active_subscription(self._conn, agency_id, now)

    def active_subscription_ids(
        self, agency_ids: Iterable[str], now: datetime | None = None,
    ) -> set[str]:
        """Subset of ``agency_ids`` holding a currently valid subscription."""
        return find_active_subscription_ids(self._conn, agency_ids, now)

    def get(self, agency_id: str) -> Agency | None:
        return get_agency(self._conn, agency_id)
