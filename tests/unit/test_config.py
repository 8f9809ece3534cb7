"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.core.config import (
    CANONICAL_REGIONS,
    DistributionConfig,
    EmailConfig,
    MonitoringConfig,
    RegionConfig,
    Settings,
)


class TestDistributionConfig:
    def test_defaults(self) -> None:
        d = DistributionConfig()
        assert d.max_batch_size == 100
        assert d.batch_delay_ms == 500
        assert d.job_delay_ms == 0
        assert d.default_max_per_day == 50
        assert d.reset_window_hours == 24
        assert d.send_timeout_s == 30.0

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            DistributionConfig(max_batch_size=0)

    def test_timeout_can_be_disabled(self) -> None:
        assert DistributionConfig(send_timeout_s=None).send_timeout_s is None


class TestRegionConfig:
    def test_defaults(self) -> None:
        r = RegionConfig()
        assert r.regions == CANONICAL_REGIONS
        assert r.default_region == "center"
        assert r.city_map["חיפה"] == "north"
        assert r.city_map["באר שבע"] == "south"

    def test_regions_normalized(self) -> None:
        r = RegionConfig(regions=[" North ", "CENTER", ""], city_map={})
        assert r.regions == ["north", "center"]

    def test_empty_regions_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RegionConfig(regions=[], city_map={})

    def test_unknown_default_rejected(self) -> None:
        with pytest.raises(ValidationError, match="default_region"):
            RegionConfig(default_region="east")

    def test_city_map_must_use_known_regions(self) -> None:
        with pytest.raises(ValidationError, match="unknown regions"):
            RegionConfig(city_map={"Springfield": "west"})


class TestMonitoringConfig:
    def test_defaults(self) -> None:
        m = MonitoringConfig()
        assert m.buffer_capacity == 1000
        assert m.health_window_minutes == 60
        assert m.max_failure_rate == pytest.approx(0.10)
        assert m.min_success_rate == pytest.approx(0.90)
        assert m.max_processing_time_ms == 30000
        assert m.admin_emails == []

    def test_rate_bounds(self) -> None:
        with pytest.raises(ValidationError):
            MonitoringConfig(max_failure_rate=1.5)


class TestEmailConfig:
    def test_not_configured_by_default(self) -> None:
        assert EmailConfig().configured is False

    def test_configured_with_host_and_user(self) -> None:
        assert EmailConfig(host="smtp.example.com", username="bot").configured is True


class TestSettingsFromYaml:
    def test_load_full(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text(dedent("""\
            database:
              path: /tmp/test.db
            distribution:
              max_batch_size: 10
              batch_delay_ms: 0
            monitoring:
              admin_emails: [ops@example.com]
            jobs:
              expiry_notice_days: [5, 1]
        """))
        s = Settings.from_yaml(cfg)
        assert s.database.path == "/tmp/test.db"
        assert s.distribution.max_batch_size == 10
        assert s.distribution.batch_delay_ms == 0
        assert s.monitoring.admin_emails == ["ops@example.com"]
        assert s.jobs.expiry_notice_days == [5, 1]

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("")
        s = Settings.from_yaml(cfg)
        assert s.distribution.max_batch_size == 100
        assert s.regions.default_region == "center"

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "nope.yaml")

    def test_invalid_value(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("distribution:\n  max_batch_size: -1\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(cfg)

    def test_shipped_settings_load(self) -> None:
        path = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"
        s = Settings.from_yaml(path)
        assert s.distribution.send_timeout_s == 30
        assert s.regions.regions == CANONICAL_REGIONS
