"""YAML import of agencies, subscriptions and candidates."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from src.core.db import insert_subscription, upsert_agency
from src.core.schemas import Agency, Candidate, Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionEntry(BaseModel):
    """A subscription nested under its agency in the import file."""

    status: SubscriptionStatus = "active"
    expiration_date: datetime


class AgencyEntry(Agency):
    """An agency as written in the import file."""

    subscriptions: list[SubscriptionEntry] = Field(default_factory=list)


class AgencyFile(BaseModel):
    agencies: list[AgencyEntry] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AgencyFile":
        """Load agencies from a YAML file."""
        return cls.model_validate(_read_yaml(path))


def load_candidate(path: str | Path) -> Candidate:
    """Load one candidate from a YAML file."""
    return Candidate.model_validate(_read_yaml(path))


def import_agencies(conn: sqlite3.Connection, data: AgencyFile) -> tuple[int, int]:
    """Upsert agencies and append their subscriptions.

    Returns (agencies, subscriptions) written.
    """
    subscriptions = 0
    for entry in data.agencies:
        agency = Agency.model_validate(entry.model_dump(exclude={"subscriptions"}))
        upsert_agency(conn, agency)
        for sub in entry.subscriptions:
            insert_subscription(
                conn,
                Subscription(
                    company_id=agency.id,
                    status=sub.status,
                    expiration_date=sub.expiration_date,
                ),
            )
            subscriptions += 1
    logger.info("Imported %d agencies, %d subscriptions", len(data.agencies), subscriptions)
    return len(data.agencies), subscriptions


def _read_yaml(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        msg = f"File not found: {path}"
        raise FileNotFoundError(msg)
    raw: dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return raw
