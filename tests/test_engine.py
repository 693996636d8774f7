"""
test_engine.py — End-to-end tests for the RiskEngine facade.

Run with:
    pytest tests/test_engine.py -v
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from climarisk.alerts.alert_service import RetryConfig
from climarisk.alerts.channels import EmailSink
from climarisk.alerts.models import AlertChannel, AlertSeverity, AlertType
from climarisk.core.config import Settings
from climarisk.core.errors import (
    AlertDeliveryError,
    ConfigurationError,
    ObservationError,
    ObservationFetchError,
)
from climarisk.core.logging_config import get_run_context
from climarisk.engine import RiskEngine, create_engine
from climarisk.ingestion.observation import EnvironmentalObservation
from climarisk.ingestion.observation_source import InMemoryObservationSource
from climarisk.ml.risk_score import RiskDomain, RiskLevel, RiskScore


JANUARY = datetime(2025, 1, 15, 6, 0, tzinfo=timezone.utc)
PORT_LOUIS = (-20.16, 57.50)


def _make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _make_obs(lat=PORT_LOUIS[0], lng=PORT_LOUIS[1], **overrides) -> EnvironmentalObservation:
    fields = dict(pressure=970.0, wind_speed=150.0, rainfall_24h=5.0, rainfall_72h=10.0)
    fields.update(overrides)
    return EnvironmentalObservation(lat=lat, lng=lng, timestamp=JANUARY, **fields)


def _make_engine(source=None, sinks=(), **kwargs) -> RiskEngine:
    kwargs.setdefault("clock", lambda: JANUARY)
    kwargs.setdefault("retry", RetryConfig(0, 0.0))
    return create_engine(
        _make_settings(),
        source=source if source is not None else InMemoryObservationSource([_make_obs()]),
        sinks=list(sinks),
        **kwargs,
    )


class _MutableClock:
    def __init__(self, now=JANUARY):
        self.now = now

    def __call__(self):
        return self.now


class _RecordingSink:
    name = "recording"
    channel = AlertChannel.WEBHOOK

    def __init__(self):
        self.received = []

    async def send(self, alert):
        self.received.append(alert)


class _DownSink:
    name = "down"
    channel = AlertChannel.SMS

    async def send(self, alert):
        raise AlertDeliveryError(alert.id, self.channel.value, "gateway unreachable")


class _OutageSource:
    """Serves one observation, then fails every fetch."""

    name = "outage"

    def __init__(self, observation):
        self.observation = observation
        self.down = False

    async def fetch(self, lat, lng):
        if self.down:
            raise ObservationFetchError(self.name, "station offline")
        return self.observation


class _FixedCycloneStrategy:
    domain = RiskDomain.CYCLONE

    def predict(self, observation):
        return RiskScore(RiskDomain.CYCLONE, 0.1, RiskLevel.LOW, explanation="fixed")


# ═══════════════════════════════════════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateEngine:

    def test_defaults_from_settings(self):
        engine = _make_engine()
        assert engine.config.thresholds.formation_probability == 0.4
        assert [r.name for r in engine.config.regions] == ["Mauritius Region"]
        assert engine.analyzer.resolution_deg == 0.5

    def test_sinks_built_from_settings(self):
        engine = create_engine(
            _make_settings(ALERT_EMAIL="ops@example.org"),
            source=InMemoryObservationSource(),
        )
        assert [type(s) for s in engine.alerts.sinks] == [EmailSink]

    def test_invalid_overrides_refuse_to_start(self):
        with pytest.raises(ConfigurationError):
            create_engine(_make_settings(), {"regions": []}, source=InMemoryObservationSource())

    def test_engines_are_independent(self):
        a, b = _make_engine(), _make_engine()
        assert a.alerts.log is not b.alerts.log

    def test_unknown_region(self):
        with pytest.raises(ConfigurationError):
            _make_engine().resolve_region("Atlantis")


# ═══════════════════════════════════════════════════════════════════════════
# Point scoring
# ═══════════════════════════════════════════════════════════════════════════

class TestScorePoint:

    @pytest.mark.asyncio
    async def test_scores_supported_domains_and_skips_others(self):
        assessment = await _make_engine().score_point(*PORT_LOUIS)
        assert set(assessment.scores) == {RiskDomain.CYCLONE, RiskDomain.FLOOD}
        assert set(assessment.skipped) == {RiskDomain.OCEAN_HEALTH, RiskDomain.REEF}
        assert assessment.scores[RiskDomain.CYCLONE].risk_level == RiskLevel.SEVERE
        assert "Missing required observation fields" in assessment.skipped[RiskDomain.REEF]

    @pytest.mark.asyncio
    async def test_requested_domains_only(self):
        assessment = await _make_engine().score_point(*PORT_LOUIS, domains=[RiskDomain.FLOOD])
        assert list(assessment.scores) == [RiskDomain.FLOOD]
        assert assessment.skipped == {}

    @pytest.mark.asyncio
    async def test_raise_alerts_for_elevated_scores(self):
        sink = _RecordingSink()
        engine = _make_engine(sinks=[sink])
        assessment = await engine.score_point(*PORT_LOUIS, raise_alerts=True)
        assert len(assessment.alerts) == 1
        alert = assessment.alerts[0]
        assert alert.type == AlertType.RISK
        assert alert.severity == AlertSeverity.CRITICAL
        assert sink.received == [alert]
        assert engine.get_active_alerts() == [alert]

    @pytest.mark.asyncio
    async def test_falls_back_to_last_known(self):
        source = _OutageSource(_make_obs())
        engine = _make_engine(source=source)
        await engine.score_point(*PORT_LOUIS)
        source.down = True
        assessment = await engine.score_point(*PORT_LOUIS)
        assert assessment.observation.source == "last-known"
        assert RiskDomain.CYCLONE in assessment.scores

    @pytest.mark.asyncio
    async def test_expired_last_known_not_used(self):
        clock = _MutableClock()
        source = _OutageSource(_make_obs())
        engine = _make_engine(source=source, clock=clock)
        await engine.score_point(*PORT_LOUIS)
        source.down = True
        clock.now = JANUARY + timedelta(hours=7)
        assessment = await engine.score_point(*PORT_LOUIS)
        assert assessment.observation is None
        assert assessment.scores == {}

    @pytest.mark.asyncio
    async def test_raised_alert_reports_attached(self):
        engine = _make_engine(sinks=[_DownSink()])
        assessment = await engine.score_point(*PORT_LOUIS, raise_alerts=True)
        assert [r.alert_id for r in assessment.reports] == [a.id for a in assessment.alerts]
        assert assessment.reports[0].failed_channels == [AlertChannel.SMS]

    @pytest.mark.asyncio
    async def test_no_observation_at_all(self):
        engine = _make_engine(source=InMemoryObservationSource())
        assessment = await engine.score_point(*PORT_LOUIS)
        assert assessment.observation is None
        assert assessment.scores == {}
        assert assessment.to_dict()["observation"] is None

    @pytest.mark.asyncio
    async def test_requires_source(self):
        engine = RiskEngine(_make_engine().config)
        with pytest.raises(RuntimeError):
            await engine.score_point(*PORT_LOUIS)

    def test_strategy_override(self):
        engine = _make_engine(strategies={RiskDomain.CYCLONE: _FixedCycloneStrategy()})
        assert engine.score_cyclone(_make_obs()).explanation == "fixed"
        assert engine.score_flood(_make_obs()).domain == RiskDomain.FLOOD

    @pytest.mark.parametrize("payload", [
        {"pressure": -5.0, "wind_speed": -10.0},
        {"pressure": math.nan, "wind_speed": 30.0},
    ])
    def test_invalid_cyclone_input_raises(self, payload):
        engine = _make_engine()
        with pytest.raises(ObservationError):
            engine.score_cyclone({"lat": -20.16, "lng": 57.5, "timestamp": JANUARY, **payload})
        with pytest.raises(ObservationError):
            engine.score_cyclone(_make_obs(**payload))

    def test_invalid_flood_input_raises(self):
        with pytest.raises(ObservationError):
            _make_engine().score_flood(_make_obs(rainfall_24h=math.nan, rainfall_72h=math.inf))

    def test_recommendations_for_score(self):
        engine = _make_engine()
        actions = engine.recommendations_for(engine.score_cyclone(_make_obs()))
        assert actions[0] == "Follow evacuation orders for coastal and low-lying areas immediately"


# ═══════════════════════════════════════════════════════════════════════════
# Forecast cycle
# ═══════════════════════════════════════════════════════════════════════════

class TestForecastCycle:

    def _make_favourable(self):
        return EnvironmentalObservation(
            lat=-20.0, lng=60.0, timestamp=JANUARY,
            sea_temp=29.8, pressure=1004.0, wind_shear=4.0, humidity=88.0,
        )

    @pytest.mark.asyncio
    async def test_cycle_produces_alerts(self):
        sink = _RecordingSink()
        engine = _make_engine(
            source=InMemoryObservationSource(fallback=self._make_favourable()), sinks=[sink],
        )
        result = await engine.run_forecast_cycle()
        assert result.run_id
        assert result.forecast.region.name == "Mauritius Region"
        assert result.forecast.candidates
        assert result.alerts
        assert all(a.type == AlertType.FORMATION for a in result.alerts)
        assert engine.get_active_alerts() == result.alerts
        assert len(sink.received) == len(result.alerts)
        assert get_run_context() == {}

    @pytest.mark.asyncio
    async def test_repeated_cycle_in_same_bucket_adds_nothing(self):
        engine = _make_engine(source=InMemoryObservationSource(fallback=self._make_favourable()))
        first = await engine.run_forecast_cycle()
        second = await engine.run_forecast_cycle()
        assert first.run_id != second.run_id
        assert first.alerts
        assert [c.location for c in second.forecast.candidates] == \
               [c.location for c in first.forecast.candidates]
        assert second.alerts == []
        assert engine.get_active_alerts() == first.alerts

    @pytest.mark.asyncio
    async def test_cycle_reports_channel_failures(self):
        engine = _make_engine(
            source=InMemoryObservationSource(fallback=self._make_favourable()),
            sinks=[_RecordingSink(), _DownSink()],
        )
        result = await engine.run_forecast_cycle()
        assert [r.alert_id for r in result.reports] == [a.id for a in result.alerts]
        assert result.failures == {a.id: [AlertChannel.SMS] for a in result.alerts}
        assert result.to_dict()["reports"][0]["failed_channels"] == ["sms"]

    @pytest.mark.asyncio
    async def test_cycle_with_unavailable_source(self):
        engine = _make_engine(source=InMemoryObservationSource())
        result = await engine.run_forecast_cycle("Mauritius Region", forecast_days=3)
        assert result.forecast.forecast_days == 3
        assert any("climatology" in note for note in result.forecast.notes)
        assert result.to_dict()["run_id"] == result.run_id

    @pytest.mark.asyncio
    async def test_close_is_safe_without_clients(self):
        engine = _make_engine()
        await engine.close()
