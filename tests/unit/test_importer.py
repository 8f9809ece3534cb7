"""Tests for YAML import of agencies and candidates."""

import sqlite3
from datetime import datetime
from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.admin.importer import AgencyFile, import_agencies, load_candidate
from src.core.db import find_active_subscription, get_agency, init_db

EXAMPLES = Path(__file__).resolve().parents[2] / "config"


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


class TestAgencyFile:
    def test_import(self, db: sqlite3.Connection, tmp_path: Path) -> None:
        path = tmp_path / "agencies.yaml"
        path.write_text(dedent("""\
            agencies:
              - id: a1
                company_name: Acme
                approval_status: approved
                support_regions: [North]
                recruitment_emails:
                  - email: cv@acme.example
                  - email: old@acme.example
                    is_active: false
                distribution:
                  max_per_day: 10
                subscriptions:
                  - expiration_date: "2027-01-01T00:00:00"
        """), encoding="utf-8")

        agencies, subs = import_agencies(db, AgencyFile.from_yaml(path))

        assert (agencies, subs) == (1, 1)
        agency = get_agency(db, "a1")
        assert agency is not None
        assert agency.support_regions == ["north"]
        assert agency.active_emails() == ["cv@acme.example"]
        assert agency.distribution.max_per_day == 10
        assert find_active_subscription(db, "a1", datetime(2026, 10, 18)) is not None

    def test_reimport_updates(self, db: sqlite3.Connection) -> None:
        data = AgencyFile.model_validate({"agencies": [{"id": "a1", "company_name": "Old"}]})
        import_agencies(db, data)
        data = AgencyFile.model_validate({"agencies": [{"id": "a1", "company_name": "New"}]})
        import_agencies(db, data)
        agency = get_agency(db, "a1")
        assert agency is not None
        assert agency.company_name == "New"

    def test_invalid_entry(self) -> None:
        with pytest.raises(ValidationError):
            AgencyFile.model_validate({"agencies": [{"id": "a1"}]})

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            AgencyFile.from_yaml(tmp_path / "nope.yaml")

    def test_shipped_example(self, db: sqlite3.Connection) -> None:
        agencies, subs = import_agencies(db, AgencyFile.from_yaml(EXAMPLES / "agencies.example.yaml"))
        assert agencies == 3
        assert subs == 2


class TestLoadCandidate:
    def test_shipped_example(self) -> None:
        candidate = load_candidate(EXAMPLES / "candidate.example.yaml")
        assert candidate.id == "cand-0001"
        assert candidate.positions[0].title == "Backend Developer"
        assert candidate.city == "חיפה"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_candidate(tmp_path / "nope.yaml")
