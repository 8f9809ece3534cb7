"""SQLite database layer for agencies, subscriptions, candidates and quota counters."""

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path

from src.core.schemas import (
    Agency,
    ApprovalStatus,
    Candidate,
    DistributionSettings,
    NotificationAddress,
    Subscription,
    to_local_naive,
)

_AGENCIES_TABLE = """
CREATE TABLE IF NOT EXISTS agencies (
    id                    TEXT    PRIMARY KEY,
    company_name          TEXT    NOT NULL,
    is_recruitment_agency INTEGER NOT NULL DEFAULT 1,
    approval_status       TEXT    NOT NULL DEFAULT 'pending',
    is_active             INTEGER NOT NULL DEFAULT 1,
    distribution_enabled  INTEGER NOT NULL DEFAULT 1,
    max_per_day           INTEGER,
    daily_count           INTEGER NOT NULL DEFAULT 0,
    last_count_reset      TEXT
);
"""

_AGENCY_REGIONS_TABLE = """
CREATE TABLE IF NOT EXISTS agency_regions (
    agency_id TEXT NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
    region    TEXT NOT NULL,
    PRIMARY KEY (agency_id, region)
);
"""

_AGENCY_EMAILS_TABLE = """
CREATE TABLE IF NOT EXISTS agency_emails (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    agency_id TEXT    NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
    email     TEXT    NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);
"""

_SUBSCRIPTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id      TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'active',
    expiration_date TEXT    NOT NULL
);
"""

_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS candidates (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL DEFAULT '',
    email           TEXT NOT NULL DEFAULT '',
    phone           TEXT NOT NULL DEFAULT '',
    location        TEXT NOT NULL DEFAULT '',
    positions_json  TEXT NOT NULL DEFAULT '[]',
    submission_date TEXT NOT NULL
);
"""

# Agencies that may receive CVs for a region: approved, active, enabled,
# with at least one address on file, covering the region.
_ELIGIBLE_BY_REGION = """
SELECT a.* FROM agencies a
JOIN agency_regions r ON r.agency_id = a.id
WHERE a.is_recruitment_agency = 1
  AND a.approval_status = 'approved'
  AND a.is_active = 1
  AND a.distribution_enabled = 1
  AND r.region = ?
  AND EXISTS (SELECT 1 FROM agency_emails e WHERE e.agency_id = a.id)
ORDER BY a.rowid
"""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(_AGENCIES_TABLE)
    conn.execute(_AGENCY_REGIONS_TABLE)
    conn.execute(_AGENCY_EMAILS_TABLE)
    conn.execute(_SUBSCRIPTIONS_TABLE)
    conn.execute(_CANDIDATES_TABLE)
    conn.commit()
    return conn


def ping(conn: sqlite3.Connection) -> bool:
    """Return True if the connection can run a trivial query."""
    try:
        conn.execute("SELECT 1").fetchone()
    except sqlite3.Error:
        return False
    return True


# ---------------------------------------------------------------------------
# Agencies
# ---------------------------------------------------------------------------


def upsert_agency(conn: sqlite3.Connection, agency: Agency) -> None:
    """Insert or replace an agency with its regions and addresses."""
    d = agency.distribution
    conn.execute(
        """
        INSERT INTO agencies
            (id, company_name, is_recruitment_agency, approval_status, is_active,
             distribution_enabled, max_per_day, daily_count, last_count_reset)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            company_name = excluded.company_name,
            is_recruitment_agency = excluded.is_recruitment_agency,
            approval_status = excluded.approval_status,
            is_active = excluded.is_active,
            distribution_enabled = excluded.distribution_enabled,
            max_per_day = excluded.max_per_day,
            daily_count = excluded.daily_count,
            last_count_reset = excluded.last_count_reset
        """,
        (
            agency.id,
            agency.company_name,
            int(agency.is_recruitment_agency),
            agency.approval_status,
            int(agency.is_active),
            int(d.enabled),
            d.max_per_day,
            d.daily_count,
            d.last_count_reset.isoformat() if d.last_count_reset else None,
        ),
    )
    conn.execute("DELETE FROM agency_regions WHERE agency_id = ?", (agency.id,))
    conn.executemany(
        "INSERT OR IGNORE INTO agency_regions (agency_id, region) VALUES (?, ?)",
        [(agency.id, region.lower()) for region in agency.support_regions],
    )
    conn.execute("DELETE FROM agency_emails WHERE agency_id = ?", (agency.id,))
    conn.executemany(
        "INSERT INTO agency_emails (agency_id, email, is_active) VALUES (?, ?, ?)",
        [(agency.id, a.email, int(a.is_active)) for a in agency.recruitment_emails],
    )
    conn.commit()


def get_agency(conn: sqlite3.Connection, agency_id: str) -> Agency | None:
    """Load one agency by id, or None if unknown."""
    row = conn.execute("SELECT * FROM agencies WHERE id = ?", (agency_id,)).fetchone()
    if row is None:
        return None
    return _agency_from_row(conn, row)


def find_agencies_by_region(conn: sqlite3.Connection, region: str) -> list[Agency]:
    """Return agencies eligible by profile for a region, in storage order."""
    rows = conn.execute(_ELIGIBLE_BY_REGION, (region,)).fetchall()
    return [_agency_from_row(conn, row) for row in rows]


def set_agency_approval(
    conn: sqlite3.Connection,
    agency_id: str,
    status: ApprovalStatus,
) -> bool:
    """Change an agency's approval status. Returns False if the agency is unknown."""
    cursor = conn.execute(
        "UPDATE agencies SET approval_status = ? WHERE id = ? AND is_recruitment_agency = 1",
        (status, agency_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def increment_daily_count(
    conn: sqlite3.Connection,
    agency_id: str,
    now: datetime | None = None,
    window: timedelta = timedelta(hours=24),
) -> bool:
    """Atomically count one delivery for an agency.

    A counter whose last reset is older than ``window`` (or was never reset)
    restarts at 1 and takes ``now`` as its reset time; otherwise it is
    incremented. Returns False if the agency is unknown.
    """
    now = to_local_naive(now or datetime.now())
    cutoff = (now - window).isoformat()
    stale = "(last_count_reset IS NULL OR last_count_reset < :cutoff)"
    cursor = conn.execute(
        f"""
        UPDATE agencies SET
            daily_count = CASE WHEN {stale} THEN 1 ELSE daily_count + 1 END,
            last_count_reset = CASE WHEN {stale} THEN :now ELSE last_count_reset END
        WHERE id = :id
        """,
        {"cutoff": cutoff, "now": now.isoformat(), "id": agency_id},
    )
    conn.commit()
    return cursor.rowcount > 0


def reset_daily_counters(conn: sqlite3.Connection, now: datetime | None = None) -> int:
    """Zero every positive agency counter. Returns the number of agencies reset."""
    now = to_local_naive(now or datetime.now())
    cursor = conn.execute(
        """
        UPDATE agencies SET daily_count = 0, last_count_reset = ?
        WHERE is_recruitment_agency = 1 AND daily_count > 0
        """,
        (now.isoformat(),),
    )
    conn.commit()
    return cursor.rowcount


def count_active_agencies(conn: sqlite3.Connection) -> int:
    """Approved, active agencies with at least one address on file."""
    row = conn.execute(
        """
        SELECT COUNT(*) FROM agencies a
        WHERE a.is_recruitment_agency = 1
          AND a.approval_status = 'approved'
          AND a.is_active = 1
          AND EXISTS (SELECT 1 FROM agency_emails e WHERE e.agency_id = a.id)
        """
    ).fetchone()
    return int(row[0])


def count_pending_agencies(conn: sqlite3.Connection) -> int:
    """Active agencies still waiting for approval."""
    row = conn.execute(
        """
        SELECT COUNT(*) FROM agencies
        WHERE is_recruitment_agency = 1 AND approval_status = 'pending' AND is_active = 1
        """
    ).fetchone()
    return int(row[0])


def count_agencies_without_active_emails(conn: sqlite3.Connection) -> int:
    """Approved, active agencies that have no active address."""
    row = conn.execute(
        """
        SELECT COUNT(*) FROM agencies a
        WHERE a.is_recruitment_agency = 1
          AND a.approval_status = 'approved'
          AND a.is_active = 1
          AND NOT EXISTS (
              SELECT 1 FROM agency_emails e WHERE e.agency_id = a.id AND e.is_active = 1
          )
        """
    ).fetchone()
    return int(row[0])


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def insert_subscription(conn: sqlite3.Connection, subscription: Subscription) -> int:
    """Store a subscription. Returns the row ID."""
    cursor = conn.execute(
        "INSERT INTO subscriptions (company_id, status, expiration_date) VALUES (?, ?, ?)",
        (
            subscription.company_id,
            subscription.status,
            subscription.expiration_date.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def find_active_subscription(
    conn: sqlite3.Connection,
    company_id: str,
    now: datetime | None = None,
) -> Subscription | None:
    """Return the currently valid subscription with the latest expiry, if any."""
    now = to_local_naive(now or datetime.now())
    row = conn.execute(
        """
        SELECT * FROM subscriptions
        WHERE company_id = ? AND status = 'active' AND expiration_date > ?
        ORDER BY expiration_date DESC
        LIMIT 1
        """,
        (company_id, now.isoformat()),
    ).fetchone()
    if row is None:
        return None
    return _subscription_from_row(row)


def find_active_subscription_ids(
    conn: sqlite3.Connection,
    company_ids: Iterable[str],
    now: datetime | None = None,
) -> set[str]:
    """Return the subset of company_ids holding a currently valid subscription."""
    ids = list(dict.fromkeys(company_ids))
    if not ids:
        return set()
    now = to_local_naive(now or datetime.now())
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"""
        SELECT DISTINCT company_id FROM subscriptions
        WHERE company_id IN ({placeholders})
          AND status = 'active'
          AND expiration_date > ?
        """,
        (*ids, now.isoformat()),
    ).fetchall()
    return {row["company_id"] for row in rows}


def find_expiring_subscriptions(
    conn: sqlite3.Connection,
    now: datetime | None = None,
    within_days: int = 7,
) -> list[tuple[Subscription, str]]:
    """Active subscriptions expiring within the next ``within_days``.

    Returns (subscription, company_name) pairs, soonest expiry first.
    """
    now = to_local_naive(now or datetime.now())
    horizon = now + timedelta(days=within_days)
    rows = conn.execute(
        """
        SELECT s.*, COALESCE(a.company_name, s.company_id) AS company_name
        FROM subscriptions s
        LEFT JOIN agencies a ON a.id = s.company_id
        WHERE s.status = 'active' AND s.expiration_date >= ? AND s.expiration_date <= ?
        ORDER BY s.expiration_date
        """,
        (now.isoformat(), horizon.isoformat()),
    ).fetchall()
    return [(_subscription_from_row(row), row["company_name"]) for row in rows]


def expire_subscriptions(conn: sqlite3.Connection, now: datetime | None = None) -> int:
    """Mark active subscriptions past their expiry as expired. Returns the count."""
    now = to_local_naive(now or datetime.now())
    cursor = conn.execute(
        "UPDATE subscriptions SET status = 'expired' WHERE status = 'active' AND expiration_date < ?",
        (now.isoformat(),),
    )
    conn.commit()
    return cursor.rowcount


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


def insert_candidate(conn: sqlite3.Connection, candidate: Candidate) -> bool:
    """Insert a candidate, ignoring duplicates by id.

    Returns True if a new row was inserted, False if it was a duplicate.
    """
    try:
        conn.execute(
            """
            INSERT INTO candidates
                (id, name, email, phone, location, positions_json, submission_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                candidate.id,
                candidate.name,
                candidate.email,
                candidate.phone,
                candidate.location or candidate.city or candidate.address,
                json.dumps([p.model_dump() for p in candidate.positions], ensure_ascii=False),
                candidate.submission_date.isoformat(),
            ),
        )
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        return False


def count_candidates_since(conn: sqlite3.Connection, since: datetime) -> int:
    """Number of candidates submitted at or after ``since``."""
    row = conn.execute(
        "SELECT COUNT(*) FROM candidates WHERE submission_date >= ?",
        (since.isoformat(),),
    ).fetchone()
    return int(row[0])


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _agency_from_row(conn: sqlite3.Connection, row: sqlite3.Row) -> Agency:
    regions = [
        r["region"]
        for r in conn.execute(
            "SELECT region FROM agency_regions WHERE agency_id = ? ORDER BY rowid",
            (row["id"],),
        ).fetchall()
    ]
    emails = [
        NotificationAddress(email=e["email"], is_active=bool(e["is_active"]))
        for e in conn.execute(
            "SELECT email, is_active FROM agency_emails WHERE agency_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
    ]
    last_reset = row["last_count_reset"]
    return Agency(
        id=row["id"],
        company_name=row["company_name"],
        is_recruitment_agency=bool(row["is_recruitment_agency"]),
        approval_status=row["approval_status"],
        is_active=bool(row["is_active"]),
        support_regions=regions,
        recruitment_emails=emails,
        distribution=DistributionSettings(
            enabled=bool(row["distribution_enabled"]),
            max_per_day=row["max_per_day"],
            daily_count=row["daily_count"],
            last_count_reset=datetime.fromisoformat(last_reset) if last_reset else None,
        ),
    )


def _subscription_from_row(row: sqlite3.Row) -> Subscription:
    return Subscription(
        id=row["id"],
        company_id=row["company_id"],
        status=row["status"],
        expiration_date=datetime.fromisoformat(row["expiration_date"]),
    )
