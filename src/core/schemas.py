"""Core data models for the CV distribution service."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ApprovalStatus = Literal["pending", "approved", "denied"]
SubscriptionStatus = Literal["active", "inactive", "expired"]
HealthState = Literal["unknown", "healthy", "warning", "critical"]


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through.

    All clocks in the service are naive ``datetime.now`` and SQLite compares
    timestamps as ISO strings, so stored datetimes must carry no offset.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class Position(BaseModel):
    """A job position the candidate is looking for."""

    model_config = ConfigDict(frozen=True)

    title: str
    category: str = ""
    experience: str = ""


class Candidate(BaseModel):
    """A submitted candidate. Owned by intake; the pipeline only reads it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    positions: list[Position] = Field(default_factory=list)
    location: str = ""
    address: str = ""
    city: str = ""
    submission_date: datetime = Field(default_factory=datetime.now)

    @field_validator("submission_date")
    @classmethod
    def submission_date_local(cls, v: datetime) -> datetime:
        return to_local_naive(v)


class NotificationAddress(BaseModel):
    """An outbound recruitment address of an agency."""

    model_config = ConfigDict(frozen=True)

    email: str
    is_active: bool = True


class DistributionSettings(BaseModel):
    """Per-agency distribution switch and daily counter."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_per_day: int | None = Field(default=None, ge=1)
    daily_count: int = Field(default=0, ge=0)
    last_count_reset: datetime | None = None

    @field_validator("last_count_reset")
    @classmethod
    def last_count_reset_local(cls, v: datetime | None) -> datetime | None:
        return to_local_naive(v) if v is not None else None


class Agency(BaseModel):
    """A company record that may receive candidate CVs."""

    model_config = ConfigDict(frozen=True)

    id: str
    company_name: str
    is_recruitment_agency: bool = True
    approval_status: ApprovalStatus = "pending"
    is_active: bool = True
    support_regions: list[str] = Field(default_factory=list)
    recruitment_emails: list[NotificationAddress] = Field(default_factory=list)
    distribution: DistributionSettings = Field(default_factory=DistributionSettings)

    def active_emails(self) -> list[str]:
        """Addresses flagged active, in stored order."""
        return [a.email for a in self.recruitment_emails if a.is_active]


class Subscription(BaseModel):
    """A paid subscription that gates distribution for one agency."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    company_id: str
    status: SubscriptionStatus = "active"
    expiration_date: datetime

    @field_validator("expiration_date")
    @classmethod
    def expiration_date_local(cls, v: datetime) -> datetime:
        return to_local_naive(v)

    def is_valid(self, now: datetime) -> bool:
        return self.status == "active" and self.expiration_date > to_local_naive(now)


class EligibleAgency(BaseModel):
    """An agency that passed eligibility, with its read-side daily count."""

    model_config = ConfigDict(frozen=True)

    agency: Agency
    effective_daily_count: int
    max_per_day: int


class DistributionJob(BaseModel):
    """One candidate and the agencies resolved for it. Never persisted."""

    model_config = ConfigDict(frozen=True)

    id: str
    candidate: Candidate
    region: str
    agencies: list[EligibleAgency]
    enqueued_at: datetime = Field(default_factory=datetime.now)


class CandidateEmailData(BaseModel):
    """Candidate fields rendered into the agency notification."""

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    name: str
    email: str
    phone: str
    previous_job: str
    experience_years: str
    requested_positions: str
    region: str
    submission_date: datetime


class NotificationPayload(BaseModel):
    """Everything a channel needs to notify one agency about one candidate."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateEmailData
    agency_id: str
    agency_name: str


class DistributionResult(BaseModel):
    """What the submission caller learns: the resolved agency count."""

    success: bool
    distributed_count: int
    job_id: str | None = None


class JobSummary(BaseModel):
    """Tally of a fully processed job."""

    job_id: str
    candidate_id: str
    batches: int
    success_count: int
    error_count: int
    started_at: datetime
    finished_at: datetime


class DispatchOutcome(BaseModel):
    """One attempt to deliver a candidate to one agency."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    candidate_id: str
    agency_id: str
    success: bool
    error: str | None = None
    processing_time_ms: float = Field(default=0.0, ge=0.0)


class HealthMetrics(BaseModel):
    """Aggregates over the trailing health window."""

    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    avg_processing_time_ms: float = 0.0


class HealthStatus(BaseModel):
    """Health classification of the distribution pipeline."""

    status: HealthState
    message: str
    metrics: HealthMetrics = Field(default_factory=HealthMetrics)
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.now)


class DistributionStats(BaseModel):
    """Reporting view over a period of days."""

    period_days: int
    active_agencies: int
    candidates_processed: int
    estimated_distributions: int
    recorded_attempts: int
    recorded_successes: int
    recorded_failures: int
    system_health: HealthStatus
    last_updated: datetime = Field(default_factory=datetime.now)


class ConfigValidation(BaseModel):
    """Result of the operational configuration check."""

    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.now)


class PerformanceMetrics(BaseModel):
    """Process-level resource usage and pipeline backlog."""

    max_rss_mb: float
    cpu_user_s: float
    cpu_system_s: float
    uptime_s: float
    recorded_outcomes: int
    pending_jobs: int
    is_processing: bool
    timestamp: datetime = Field(default_factory=datetime.now)


class JobStatus(BaseModel):
    """Runtime state of one maintenance job."""

    name: str
    interval_s: float
    running: bool
    runs: int = 0
    last_run: datetime | None = None
    last_error: str | None = None
