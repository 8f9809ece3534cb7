"""Tests for CVDistributionService and system wiring."""

import sqlite3
from datetime import datetime, timedelta

import pytest

from src.core.config import DistributionConfig, Settings
from src.core.db import init_db, insert_subscription, upsert_agency
from src.core.errors import PreconditionError
from src.core.schemas import (
    Agency,
    Candidate,
    NotificationAddress,
    Position,
    Subscription,
)
from src.notify.base import LoggingChannel, TimeoutChannel
from src.pipeline.orchestrator import build_distribution_system

NOW = datetime(2026, 10, 18, 12, 0, 0)


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


def _settings(**dist: object) -> Settings:
    return Settings(distribution=DistributionConfig(**dist))  # type: ignore[arg-type]


def _add_agency(db: sqlite3.Connection, agency_id: str, region: str = "north") -> None:
    upsert_agency(db, Agency(
        id=agency_id,
        company_name=f"Agency {agency_id}",
        approval_status="approved",
        support_regions=[region],
        recruitment_emails=[NotificationAddress(email=f"{agency_id}@x.example")],
    ))
    insert_subscription(
        db, Subscription(company_id=agency_id, expiration_date=NOW + timedelta(days=30)),
    )


def _candidate(**kw: object) -> Candidate:
    defaults: dict[str, object] = {
        "id": "c1",
        "name": "Dana Levi",
        "positions": [Position(title="Driver")],
        "location": "north",
    }
    defaults.update(kw)
    return Candidate(**defaults)  # type: ignore[arg-type]


class TestDistributeCv:
    async def test_returns_count_and_job_id(self, db: sqlite3.Connection) -> None:
        _add_agency(db, "a")
        _add_agency(db, "b")
        system = build_distribution_system(_settings(), db, LoggingChannel(), clock=lambda: NOW)

        result = await system.service.distribute_cv_to_agencies(_candidate())

        assert result.success is True
        assert result.distributed_count == 2
        assert result.job_id == f"c1_{int(NOW.timestamp() * 1000)}"
        await system.shutdown()

    async def test_returns_before_delivery(self, db: sqlite3.Connection) -> None:
        _add_agency(db, "a")
        channel = LoggingChannel()
        system = build_distribution_system(_settings(), db, channel, clock=lambda: NOW)

        await system.service.distribute_cv_to_agencies(_candidate())
        assert channel.sent == []

        await system.service.wait_until_idle()
        assert [addr for addr, _ in channel.sent] == ["a@x.example"]

    async def test_no_eligible_agencies(self, db: sqlite3.Connection) -> None:
        _add_agency(db, "s", region="south")
        system = build_distribution_system(_settings(), db, LoggingChannel(), clock=lambda: NOW)

        result = await system.service.distribute_cv_to_agencies(_candidate())

        assert result.success is True
        assert result.distributed_count == 0
        assert result.job_id is None
        assert system.queue.drain_task is None

    async def test_missing_id_rejected(self, db: sqlite3.Connection) -> None:
        system = build_distribution_system(_settings(), db, LoggingChannel())
        with pytest.raises(PreconditionError, match="missing id"):
            await system.service.distribute_cv_to_agencies(_candidate(id=""))

    async def test_no_positions_rejected(self, db: sqlite3.Connection) -> None:
        system = build_distribution_system(_settings(), db, LoggingChannel())
        with pytest.raises(PreconditionError, match="no positions"):
            await system.service.distribute_cv_to_agencies(_candidate(positions=[]))

    async def test_eligibility_errors_propagate(self, db: sqlite3.Connection) -> None:
        system = build_distribution_system(_settings(), db, LoggingChannel())
        db.close()
        with pytest.raises(sqlite3.Error):
            await system.service.distribute_cv_to_agencies(_candidate())


class TestBuildSystem:
    def test_wraps_channel_in_timeout(self, db: sqlite3.Connection) -> None:
        inner = LoggingChannel()
        system = build_distribution_system(_settings(send_timeout_s=5), db, inner)
        assert isinstance(system.channel, TimeoutChannel)
        assert system.channel.inner is inner

    def test_timeout_disabled(self, db: sqlite3.Connection) -> None:
        inner = LoggingChannel()
        system = build_distribution_system(_settings(send_timeout_s=None), db, inner)
        assert system.channel is inner

    async def test_shutdown_drains_queue(self, db: sqlite3.Connection) -> None:
        _add_agency(db, "a")
        channel = LoggingChannel()
        system = build_distribution_system(_settings(), db, channel, clock=lambda: NOW)
        await system.service.distribute_cv_to_agencies(_candidate())
        await system.shutdown()
        assert len(channel.sent) == 1
