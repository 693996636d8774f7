"""
test_config.py — Tests for settings, alert configuration loading, the
error hierarchy and structured logging.

Run with:
    pytest tests/test_config.py -v
"""

from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from climarisk.alerts.models import DEFAULT_REGION, AlertConfiguration, AlertThresholds
from climarisk.core.config import Settings
from climarisk.core.errors import ConfigurationError, ObservationError, RiskEngineError
from climarisk.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    clear_run_context,
    get_run_context,
    set_run_context,
)


def _make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _make_record(msg: str = "Scored cell", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="climarisk.test", level=logging.INFO, pathname=__file__, lineno=1,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ═══════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════

class TestSettings:

    def test_defaults(self):
        s = _make_settings()
        assert s.GRID_RESOLUTION_DEG == 0.5
        assert s.FORMATION_PROBABILITY_THRESHOLD == 0.4
        assert s.ALERT_ACTIVE_WINDOW_HOURS == 24.0
        assert s.ALERT_RETENTION_DAYS == 7.0
        assert s.ALERT_EMAIL is None
        assert s.is_development

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("NEARBY_DISTANCE_KM", "250")
        monkeypatch.setenv("ENVIRONMENT", "production")
        s = _make_settings()
        assert s.NEARBY_DISTANCE_KM == 250.0
        assert s.is_production


# ═══════════════════════════════════════════════════════════════════════════
# Alert configuration
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertConfiguration:

    def test_defaults(self):
        config = AlertConfiguration()
        assert config.regions == [DEFAULT_REGION]
        assert config.thresholds == AlertThresholds()
        assert config.thresholds.nearby_distance_km == 500.0

    def test_camel_case_surface(self):
        config = AlertConfiguration.load({
            "email": "ops@example.org",
            "webhookUrl": "https://hooks.example.org/alerts",
            "thresholds": {
                "formationProbability": 0.5,
                "timeToFormation": 48,
                "windSpeed": 90,
                "nearbyDistance": 300,
            },
            "regions": [{"name": "Reunion", "minLat": -22, "maxLat": -20, "minLng": 55, "maxLng": 56}],
        })
        assert config.webhook_url == "https://hooks.example.org/alerts"
        assert config.thresholds.time_to_formation_hours == 48.0
        assert config.thresholds.wind_speed_kt == 90.0
        assert config.region("Reunion").max_lng == 56.0

    def test_frozen(self):
        config = AlertConfiguration()
        with pytest.raises(ValidationError):
            config.email = "someone@example.org"

    @pytest.mark.parametrize("data", [
        {"regions": []},
        {"regions": [{"name": "Bad", "minLat": -10, "maxLat": -20, "minLng": 55, "maxLng": 65}]},
        {"thresholds": {"formationProbability": 0}},
        {"thresholds": {"nearbyDistance": -1}},
        {"gridResolutionDeg": 0},
        {"activeWindowHours": 200, "retentionDays": 1},
        {"regions": [
            {"name": "Dup", "minLat": -25, "maxLat": -15, "minLng": 55, "maxLng": 65},
            {"name": "Dup", "minLat": -22, "maxLat": -20, "minLng": 55, "maxLng": 56},
        ]},
    ])
    def test_invalid_configuration_rejected(self, data):
        with pytest.raises(ConfigurationError) as exc:
            AlertConfiguration.load(data)
        assert exc.value.error_code == "CONFIGURATION_ERROR"
        assert exc.value.details["errors"]

    def test_unknown_region(self):
        with pytest.raises(ConfigurationError):
            AlertConfiguration().region("Atlantis")

    def test_from_settings(self):
        s = _make_settings(ALERT_PHONE="+2305550100", FORMATION_PROBABILITY_THRESHOLD=0.6)
        config = AlertConfiguration.from_settings(s)
        assert config.phone == "+2305550100"
        assert config.thresholds.formation_probability == 0.6
        assert config.dedup_bucket_minutes == 60

    def test_from_settings_overrides(self):
        config = AlertConfiguration.from_settings(_make_settings(), active_window_hours=12)
        assert config.active_window_hours == 12.0

    def test_from_settings_invalid_override(self):
        with pytest.raises(ConfigurationError):
            AlertConfiguration.from_settings(_make_settings(), regions=[])


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════

class TestErrors:

    def test_hierarchy(self):
        assert issubclass(ConfigurationError, RiskEngineError)
        assert issubclass(ObservationError, RiskEngineError)

    def test_to_dict(self):
        err = ObservationError("Missing required observation fields: pressure", fields=["pressure"])
        d = err.to_dict()
        assert d["error"]["code"] == "OBSERVATION_ERROR"
        assert d["error"]["details"]["fields"] == ["pressure"]


# ═══════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════

class TestLogging:

    def teardown_method(self):
        clear_run_context()

    def test_run_context(self):
        ctx = set_run_context(region="Mauritius Region")
        assert ctx["run_id"]
        assert get_run_context()["region"] == "Mauritius Region"
        clear_run_context()
        assert get_run_context() == {}

    def test_json_formatter_includes_extras_and_context(self):
        set_run_context(region="Mauritius Region")
        line = JSONFormatter().format(_make_record(alert_id="ALR-1", severity="high"))
        entry = json.loads(line)
        assert entry["message"] == "Scored cell"
        assert entry["alert_id"] == "ALR-1"
        assert entry["context"]["region"] == "Mauritius Region"

    def test_pretty_formatter_shows_run_id(self):
        ctx = set_run_context()
        line = PrettyFormatter().format(_make_record())
        assert ctx["run_id"][:8] in line
        assert "climarisk.test: Scored cell" in line
