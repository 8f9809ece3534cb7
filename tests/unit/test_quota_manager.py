"""Tests for QuotaTracker: capacity, virtual reset, recording deliveries."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from src.core.db import get_agency, init_db, upsert_agency
from src.core.schemas import Agency, DistributionSettings, NotificationAddress
from src.pipeline.quota_manager import QuotaTracker

NOW = datetime(2026, 10, 18, 12, 0, 0)


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


def _agency(
    *,
    count: int = 0,
    last_reset: datetime | None = None,
    max_per_day: int | None = None,
) -> Agency:
    return Agency(
        id="a1",
        company_name="Acme",
        approval_status="approved",
        support_regions=["north"],
        recruitment_emails=[NotificationAddress(email="cv@acme.example")],
        distribution=DistributionSettings(
            max_per_day=max_per_day, daily_count=count, last_count_reset=last_reset,
        ),
    )


def _qt(db: sqlite3.Connection, **kwargs: int) -> QuotaTracker:
    return QuotaTracker(
        db, default_max_per_day=kwargs.get("default_max", 50), clock=lambda: NOW,
    )


# ---------------------------------------------------------------------------
# effective_count / is_stale
# ---------------------------------------------------------------------------


class TestEffectiveCount:
    def test_never_reset_reads_zero(self, db: sqlite3.Connection) -> None:
        assert _qt(db).effective_count(_agency(count=7)) == 0

    def test_recent_reset_reads_stored(self, db: sqlite3.Connection) -> None:
        a = _agency(count=7, last_reset=NOW - timedelta(hours=23))
        assert _qt(db).effective_count(a) == 7

    def test_old_reset_reads_zero(self, db: sqlite3.Connection) -> None:
        a = _agency(count=50, last_reset=NOW - timedelta(hours=25))
        assert _qt(db).effective_count(a) == 0

    def test_aware_clock_and_reset(self, db: sqlite3.Connection) -> None:
        qt = _qt(db)
        reset = (NOW - timedelta(hours=2)).astimezone(timezone.utc)
        assert qt.is_stale(reset, NOW.astimezone(timezone.utc)) is False
        assert qt.is_stale(reset, NOW + timedelta(hours=23)) is True

    def test_exact_window_boundary_not_stale(self, db: sqlite3.Connection) -> None:
        assert _qt(db).is_stale(NOW - timedelta(hours=24)) is False


# ---------------------------------------------------------------------------
# has_capacity
# ---------------------------------------------------------------------------


class TestHasCapacity:
    def test_default_limit(self, db: sqlite3.Connection) -> None:
        qt = _qt(db, default_max=50)
        assert qt.max_per_day(_agency()) == 50
        assert qt.has_capacity(_agency(count=49, last_reset=NOW)) is True
        assert qt.has_capacity(_agency(count=50, last_reset=NOW)) is False

    def test_agency_limit_overrides_default(self, db: sqlite3.Connection) -> None:
        a = _agency(count=5, last_reset=NOW, max_per_day=5)
        qt = _qt(db)
        assert qt.max_per_day(a) == 5
        assert qt.has_capacity(a) is False

    def test_virtual_reset_restores_capacity(self, db: sqlite3.Connection) -> None:
        a = _agency(count=50, last_reset=NOW - timedelta(hours=25))
        assert _qt(db).has_capacity(a) is True

    def test_limit_logged(
        self, db: sqlite3.Connection, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level("INFO"):
            _qt(db).has_capacity(_agency(count=50, last_reset=NOW))
        assert "Daily limit reached" in caplog.text


# ---------------------------------------------------------------------------
# increment
# ---------------------------------------------------------------------------


class TestIncrement:
    def test_increments_stored_count(self, db: sqlite3.Connection) -> None:
        upsert_agency(db, _agency(count=2, last_reset=NOW - timedelta(hours=1)))
        assert _qt(db).increment("a1") is True
        stored = get_agency(db, "a1")
        assert stored is not None
        assert stored.distribution.daily_count == 3

    def test_stale_counter_restarts_at_one(self, db: sqlite3.Connection) -> None:
        upsert_agency(db, _agency(count=50, last_reset=NOW - timedelta(days=2)))
        _qt(db).increment("a1")
        stored = get_agency(db, "a1")
        assert stored is not None
        assert stored.distribution.daily_count == 1
        assert stored.distribution.last_count_reset == NOW

    def test_unknown_agency_warns(
        self, db: sqlite3.Connection, caplog: pytest.LogCaptureFixture,
    ) -> None:
        assert _qt(db).increment("missing") is False
        assert "unknown agency" in caplog.text

    def test_db_error_propagates(self, db: sqlite3.Connection) -> None:
        qt = _qt(db)
        db.close()
        with pytest.raises(sqlite3.Error):
            qt.increment("a1")
