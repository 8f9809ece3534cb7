"""Configuration models and YAML loader for the CV distribution service."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

CANONICAL_REGIONS = ["north", "center", "lowlands", "south"]

# City name -> region. Jerusalem and its suburbs are served by center agencies.
DEFAULT_CITY_REGIONS: dict[str, str] = {
    # North (north of Hadera)
    "חיפה": "north", "נצרת": "north", "טבריה": "north", "קריית שמונה": "north",
    "עכו": "north", "נהריה": "north", "צפת": "north", "קצרין": "north",
    "כרמיאל": "north", "מעלות": "north", "קריית ביאליק": "north",
    # Center (Herzliya to Rishon Lezion)
    "תל אביב": "center", "רמת גן": "center", "פתח תקווה": "center",
    "הרצליה": "center", "נתניה": "center", "רעננה": "center",
    "הוד השרון": "center", "ראשון לציון": "center", "בני ברק": "center",
    "רמת השרון": "center", "כפר סבא": "center", "רחובות": "center",
    # Lowlands (Rishon Lezion to Ashkelon)
    "אשדוד": "lowlands", "גדרה": "lowlands", "יבנה": "lowlands",
    "אשקלון": "lowlands", "נס ציונה": "lowlands", "קריית מלאכי": "lowlands",
    # South (south of Ashkelon)
    "באר שבע": "south", "אילת": "south", "דימונה": "south",
    "נתיבות": "south", "אופקים": "south", "ערד": "south",
    # Jerusalem area
    "ירושלים": "center", "בית שמש": "center", "מעלה אדומים": "center",
}


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/distribution.db"


class DistributionConfig(BaseModel):
    """Batching, pacing and quota defaults for the dispatch pipeline."""

    max_batch_size: int = Field(default=100, ge=1)
    batch_delay_ms: int = Field(default=500, ge=0)
    job_delay_ms: int = Field(default=0, ge=0)
    default_max_per_day: int = Field(default=50, ge=1)
    reset_window_hours: int = Field(default=24, ge=1)
    send_timeout_s: float | None = Field(default=30.0, gt=0)


class RegionConfig(BaseModel):
    """Canonical region tokens and the city -> region lookup table."""

    regions: list[str] = Field(default_factory=lambda: list(CANONICAL_REGIONS))
    default_region: str = "center"
    city_map: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CITY_REGIONS))

    @field_validator("regions")
    @classmethod
    def regions_normalized(cls, v: list[str]) -> list[str]:
        cleaned = [r.strip().lower() for r in v if r.strip()]
        if not cleaned:
            msg = "at least one region must be configured"
            raise ValueError(msg)
        return cleaned

    @model_validator(mode="after")
    def regions_are_canonical(self) -> "RegionConfig":
        if self.default_region not in self.regions:
            msg = f"default_region '{self.default_region}' is not one of {self.regions}"
            raise ValueError(msg)
        unknown = sorted({r for r in self.city_map.values() if r not in self.regions})
        if unknown:
            msg = f"city_map references unknown regions: {unknown}"
            raise ValueError(msg)
        return self


class MonitoringConfig(BaseModel):
    """Ring buffer size, health window and alert thresholds."""

    buffer_capacity: int = Field(default=1000, ge=10)
    health_window_minutes: int = Field(default=60, ge=1)
    health_check_interval_s: float = Field(default=300.0, gt=0)
    max_failure_rate: float = Field(default=0.10, ge=0.0, le=1.0)
    min_success_rate: float = Field(default=0.90, ge=0.0, le=1.0)
    max_processing_time_ms: float = Field(default=30000.0, gt=0)
    max_queue_length: int = Field(default=500, ge=1)
    admin_emails: list[str] = Field(default_factory=list)


class EmailConfig(BaseModel):
    """SMTP transport settings. The password is read from the environment."""

    host: str = ""
    port: int = Field(default=587, ge=1, le=65535)
    username: str = ""
    password_env: str = "SMTP_PASSWORD"
    from_address: str = "noreply@cvgo.pro"
    use_tls: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username)


class JobsConfig(BaseModel):
    """Intervals for the maintenance jobs."""

    reset_counters_interval_hours: float = Field(default=24.0, gt=0)
    subscription_check_interval_hours: float = Field(default=24.0, gt=0)
    expiry_notice_days: list[int] = Field(default_factory=lambda: [7, 3, 1])


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    distribution: DistributionConfig = Field(default_factory=DistributionConfig)
    regions: RegionConfig = Field(default_factory=RegionConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return cls.model_validate(raw)
