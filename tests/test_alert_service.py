"""
test_alert_service.py — Tests for alert generation, the alert log and
multi-channel dispatch.

Covers:
    • Severity classification (strict band edges)
    • Formation, tracking, intensification, landfall and risk alerts
    • Active window, retention purge, deduplication, ordering
    • Idempotent dispatch, retries, timeouts, failing sinks
    • Channel formatting (SMS ≤ 160 chars, email, webhook payload)
    • Concurrent producers

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from climarisk.alerts.alert_service import (
    IMMINENT_ACTIONS,
    AlertManager,
    RetryConfig,
    _compute_backoff,
    classify_severity,
    format_position,
)
from climarisk.alerts.channels import EmailSink, SmsSink, WebhookSink, build_sinks
from climarisk.alerts.channels.email_alert import render_email
from climarisk.alerts.channels.sms_gateway import SMS_MAX_GSM7, format_sms
from climarisk.alerts.models import (
    Alert,
    AlertChannel,
    AlertConfiguration,
    AlertSeverity,
    AlertType,
    DeliveryStatus,
    TrackingPrediction,
    TrackPoint,
)
from climarisk.core.errors import AlertDeliveryError
from climarisk.ml.cyclone_service import IntensityBucket
from climarisk.ml.formation import EnvironmentalFactors, FormationCandidate
from climarisk.ml.risk_score import RiskDomain, RiskLevel, RiskScore
from climarisk.spatial.radius_utils import Coordinate
from climarisk.spatial.regions import RegionBounds


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

# Port Louis, Mauritius
PORT_LOUIS = Coordinate(-20.16, 57.50)


class _Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _make_candidate(
    probability: float = 0.9,
    hours: float = 12.0,
    lat: float = -20.0,
    lng: float = 57.5,
) -> FormationCandidate:
    return FormationCandidate(
        location=Coordinate(lat, lng),
        formation_probability=probability,
        time_to_formation_hours=hours,
        expected_formation_timestamp=NOW + timedelta(hours=hours),
        expected_intensity_bucket=IntensityBucket.CATEGORY_1,
        environmental_factors=EnvironmentalFactors(True, True, True, True),
        region="South-West Indian Ocean",
        created_at=NOW,
    )


def _make_alert(**overrides) -> Alert:
    fields = dict(
        type=AlertType.FORMATION,
        severity=AlertSeverity.HIGH,
        title="High Cyclone Formation Probability Detected",
        message="90.0% chance of cyclone formation at 20.0°S, 57.5°E within 12 hours",
        location=PORT_LOUIS,
        timestamp=NOW,
        trigger="probability",
    )
    fields.update(overrides)
    return Alert(**fields)


def _make_track(position=(-14.0, 60.0), wind=80.0, trajectory=()) -> TrackingPrediction:
    return TrackingPrediction(
        storm_id="SWI-01",
        name="Belal",
        current_position=Coordinate(*position),
        current_wind_kt=wind,
        trajectory=tuple(TrackPoint(*p) for p in trajectory),
    )


def _make_manager(sinks=(), config=None, clock=None, **kwargs) -> AlertManager:
    kwargs.setdefault("retry", RetryConfig(1, 0.0))
    kwargs.setdefault("notification_timeout", 0.5)
    return AlertManager(
        config or AlertConfiguration(), list(sinks), clock=clock or _Clock(), **kwargs,
    )


class _RecordingSink:
    name = "recording"
    channel = AlertChannel.WEBHOOK

    def __init__(self):
        self.received = []

    async def send(self, alert):
        self.received.append(alert)


class _FailingSink:
    name = "failing"
    channel = AlertChannel.EMAIL

    def __init__(self):
        self.calls = 0

    async def send(self, alert):
        self.calls += 1
        raise AlertDeliveryError(alert.id, self.channel.value, "mailbox full")


class _FlakySink:
    name = "flaky"
    channel = AlertChannel.SMS

    def __init__(self):
        self.calls = 0

    async def send(self, alert):
        self.calls += 1
        if self.calls == 1:
            raise AlertDeliveryError(alert.id, self.channel.value, "gateway busy")


class _SlowSink:
    name = "slow"
    channel = AlertChannel.WEBHOOK

    async def send(self, alert):
        await asyncio.sleep(5)


class _RaisingSink:
    name = "raising"
    channel = AlertChannel.SMS

    async def send(self, alert):
        raise RuntimeError("boom")


# ═══════════════════════════════════════════════════════════════════════════
# Severity
# ═══════════════════════════════════════════════════════════════════════════

class TestClassifySeverity:

    @pytest.mark.parametrize("probability, hours, expected", [
        (0.85, 10, AlertSeverity.CRITICAL),
        (0.85, 30, AlertSeverity.HIGH),
        (0.65, 40, AlertSeverity.HIGH),
        (0.5, 60, AlertSeverity.MODERATE),
        (0.2, 200, AlertSeverity.LOW),
        (0.8, 10, AlertSeverity.HIGH),
        (0.9, 24, AlertSeverity.HIGH),
        (0.4, 10, AlertSeverity.LOW),
    ])
    def test_table(self, probability, hours, expected):
        assert classify_severity(probability, hours) == expected

    def test_severity_ordering(self):
        ranks = [s.rank for s in AlertSeverity]
        assert ranks == sorted(ranks)
        assert AlertSeverity.CRITICAL.rank > AlertSeverity.HIGH.rank

    def test_format_position(self):
        assert format_position(PORT_LOUIS) == "20.2°S, 57.5°E"
        assert format_position(Coordinate(13.08, -80.27)) == "13.1°N, 80.3°W"


# ═══════════════════════════════════════════════════════════════════════════
# Alert generation
# ═══════════════════════════════════════════════════════════════════════════

class TestFormationAlerts:

    def test_probable_and_imminent(self):
        alerts = _make_manager().formation_alerts(_make_candidate(0.9, 12))
        assert [a.trigger for a in alerts] == ["probability", "imminent"]
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[1].severity == AlertSeverity.HIGH
        assert alerts[1].recommended_actions == IMMINENT_ACTIONS
        assert "90.0%" in alerts[0].message
        assert "20.0°S, 57.5°E" in alerts[0].message

    def test_probability_only(self):
        alerts = _make_manager().formation_alerts(_make_candidate(0.5, 100))
        assert len(alerts) == 1
        assert alerts[0].title == "High Cyclone Formation Probability Detected"
        assert alerts[0].severity == AlertSeverity.LOW

    def test_imminent_only(self):
        alerts = _make_manager().formation_alerts(_make_candidate(0.3, 48))
        assert len(alerts) == 1
        assert alerts[0].title == "Imminent Cyclone Formation Alert"

    def test_thresholds_are_strict(self):
        assert _make_manager().formation_alerts(_make_candidate(0.4, 72)) == []

    def test_configured_thresholds(self):
        config = AlertConfiguration.load({"thresholds": {"formationProbability": 0.95}})
        alerts = _make_manager(config=config).formation_alerts(_make_candidate(0.9, 100))
        assert alerts == []

    def test_alert_carries_candidate_and_actions(self):
        alert = _make_manager().formation_alerts(_make_candidate(0.9, 12))[0]
        assert alert.source_data["formation_probability"] == 0.9
        assert "Issue cyclone formation warning" in alert.recommended_actions
        assert alert.timestamp == NOW
        assert alert.id.startswith("ALR-")


class TestTrackingAlerts:

    def test_intensification_far_from_regions(self):
        track = _make_track(position=(-10.0, 90.0), wind=50.0,
                            trajectory=[(-12.0, 85.0, 130.0, 24.0)])
        alerts = _make_manager().tracking_alerts(track)
        assert [a.type for a in alerts] == [AlertType.INTENSIFICATION]
        assert alerts[0].severity == AlertSeverity.HIGH
        assert alerts[0].trigger == "SWI-01"
        assert "from 50 to 130 kt" in alerts[0].message

    def test_no_intensification_below_ratio(self):
        track = _make_track(position=(-10.0, 90.0), wind=100.0,
                            trajectory=[(-12.0, 85.0, 110.0, 24.0)])
        assert _make_manager().tracking_alerts(track) == []

    @pytest.mark.parametrize("position, severity", [
        ((-20.0, 60.0), AlertSeverity.CRITICAL),
        ((-14.0, 60.0), AlertSeverity.HIGH),
        ((-12.0, 60.0), AlertSeverity.MODERATE),
    ])
    def test_proximity_severity(self, position, severity):
        alerts = _make_manager().tracking_alerts(_make_track(position=position))
        assert [a.type for a in alerts] == [AlertType.TRACKING]
        assert alerts[0].severity == severity
        assert alerts[0].region == "Mauritius Region"

    def test_outside_nearby_distance(self):
        assert _make_manager().tracking_alerts(_make_track(position=(-5.0, 60.0))) == []

    def test_landfall_at_first_point_inside(self):
        track = _make_track(
            position=(-5.0, 60.0),
            trajectory=[(-14.0, 60.0, 50.0, 12.0), (-16.0, 59.0, 60.0, 30.0), (-19.0, 58.0, 70.0, 50.0)],
        )
        alerts = _make_manager().tracking_alerts(track)
        assert [a.type for a in alerts] == [AlertType.LANDFALL]
        landfall = alerts[0]
        assert landfall.severity == AlertSeverity.HIGH
        assert landfall.location == Coordinate(-16.0, 59.0)
        assert landfall.source_data["hours_ahead"] == 30.0

    def test_per_region_alerts_not_collapsed(self):
        config = AlertConfiguration(regions=[
            RegionBounds(name="Mauritius Region", min_lat=-25, max_lat=-15, min_lng=55, max_lng=65),
            RegionBounds(name="Reunion", min_lat=-22, max_lat=-20, min_lng=55, max_lng=56),
        ])
        manager = _make_manager(config=config)
        alerts = manager.tracking_alerts(_make_track(position=(-20.0, 57.0)))
        assert {a.region for a in alerts} == {"Mauritius Region", "Reunion"}
        assert len(manager.log.extend(alerts)) == 2

    @pytest.mark.asyncio
    async def test_process_accepts_mappings(self):
        manager = _make_manager()
        track = {
            "id": "SWI-01",
            "cycloneName": "Belal",
            "currentStatus": {"currentPosition": {"lat": -14.0, "lng": 60.0}, "windSpeed": 80},
            "prediction": {"trajectory": [
                {"lat": -18.0, "lng": 58.0, "windSpeed": 110, "hoursAhead": 18},
            ]},
        }
        alerts = await manager.process_tracking_predictions([track])
        assert [a.type for a in alerts] == [
            AlertType.INTENSIFICATION, AlertType.TRACKING, AlertType.LANDFALL,
        ]
        assert alerts[2].severity == AlertSeverity.CRITICAL


class TestRiskAlert:

    def _make_score(self, level: RiskLevel) -> RiskScore:
        return RiskScore(
            domain=RiskDomain.FLOOD,
            probability_or_score=0.9 if level == RiskLevel.SEVERE else 0.2,
            risk_level=level,
            explanation=f"Flood risk {level.value}",
        )

    def test_severe_score_is_critical(self):
        alert = _make_manager().risk_alert(self._make_score(RiskLevel.SEVERE), PORT_LOUIS)
        assert alert.type == AlertType.RISK
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.trigger == "flood"
        assert alert.recommended_actions

    def test_low_score_no_alert(self):
        assert _make_manager().risk_alert(self._make_score(RiskLevel.LOW), PORT_LOUIS) is None

    @pytest.mark.asyncio
    async def test_process_risk_score_logs(self):
        manager = _make_manager()
        alerts = await manager.process_risk_score(self._make_score(RiskLevel.SEVERE), PORT_LOUIS)
        assert len(alerts) == 1
        assert manager.all_alerts() == alerts


# ═══════════════════════════════════════════════════════════════════════════
# Alert log lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertLifecycle:

    @pytest.mark.asyncio
    async def test_active_window(self):
        clock = _Clock(NOW - timedelta(hours=25))
        manager = _make_manager(clock=clock)
        old = await manager.process_formation_predictions([_make_candidate(lat=-18.0)])
        clock.now = NOW
        new = await manager.process_formation_predictions([_make_candidate(lat=-21.0)])

        active = manager.get_active_alerts()
        assert active == new
        assert manager.all_alerts() == old + new

    @pytest.mark.asyncio
    async def test_purge_after_retention(self):
        clock = _Clock(NOW - timedelta(days=8))
        manager = _make_manager([_RecordingSink()], clock=clock)
        old = await manager.process_formation_predictions([_make_candidate(lat=-18.0)])
        clock.now = NOW
        await manager.process_formation_predictions([_make_candidate(lat=-21.0)])

        assert manager.purge_expired() == 2
        assert len(manager.all_alerts()) == 2
        assert manager.dispatch_report(old[0].id) is None
        assert manager.purge_expired() == 0

    @pytest.mark.asyncio
    async def test_duplicates_dropped(self):
        manager = _make_manager()
        first = await manager.process_formation_predictions([_make_candidate()])
        second = await manager.process_formation_predictions([_make_candidate()])
        assert len(first) == 2
        assert second == []
        assert len(manager.all_alerts()) == 2

    @pytest.mark.asyncio
    async def test_new_bucket_realerts(self):
        clock = _Clock()
        manager = _make_manager(clock=clock)
        await manager.process_formation_predictions([_make_candidate()])
        clock.now = NOW + timedelta(hours=2)
        again = await manager.process_formation_predictions([_make_candidate()])
        assert len(again) == 2

    @pytest.mark.asyncio
    async def test_dedup_can_be_disabled(self):
        manager = _make_manager(deduplicate=False)
        await manager.process_formation_predictions([_make_candidate()])
        again = await manager.process_formation_predictions([_make_candidate()])
        assert len(again) == 2
        assert len(manager.all_alerts()) == 4

    @pytest.mark.asyncio
    async def test_append_order_preserved(self):
        manager = _make_manager()
        a, b = _make_candidate(lat=-18.0), _make_candidate(lat=-21.0)
        await manager.process_formation_predictions([a, b])
        logged = manager.all_alerts()
        assert [(x.location.latitude, x.trigger) for x in logged] == [
            (-18.0, "probability"), (-18.0, "imminent"),
            (-21.0, "probability"), (-21.0, "imminent"),
        ]

    @pytest.mark.asyncio
    async def test_by_severity(self):
        manager = _make_manager()
        await manager.process_formation_predictions([_make_candidate(0.9, 12)])
        critical = manager.get_alerts_by_severity("critical")
        assert len(critical) == 1
        assert critical[0].trigger == "probability"
        assert len(manager.get_alerts_by_severity(AlertSeverity.HIGH)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_producers_lose_nothing(self):
        manager = _make_manager([_RecordingSink()])
        candidates = [_make_candidate(lat=-15.0 - i * 0.5) for i in range(10)]
        await asyncio.gather(*(
            manager.process_formation_predictions([c]) for c in candidates
        ))
        assert len(manager.all_alerts()) == 20
        assert len({a.id for a in manager.all_alerts()}) == 20


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatch:

    @pytest.mark.asyncio
    async def test_delivered(self):
        sink = _RecordingSink()
        alert = _make_alert()
        report = await _make_manager([sink]).send_alert(alert)
        assert report.all_delivered
        assert report.delivered_channels == [AlertChannel.WEBHOOK]
        assert sink.received == [alert]

    @pytest.mark.asyncio
    async def test_send_is_idempotent(self):
        sink = _RecordingSink()
        manager = _make_manager([sink])
        alert = _make_alert()
        first = await manager.send_alert(alert)
        second = await manager.send_alert(alert)
        assert not first.already_dispatched
        assert second.already_dispatched
        assert [a.status for a in second.attempts] == [DeliveryStatus.DELIVERED]
        assert len(sink.received) == 1

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self):
        good, bad = _RecordingSink(), _FailingSink()
        report = await _make_manager([bad, good]).send_alert(_make_alert())
        assert report.delivered_channels == [AlertChannel.WEBHOOK]
        assert report.failed_channels == [AlertChannel.EMAIL]
        failed = report.attempts[0]
        assert failed.status == DeliveryStatus.FAILED
        assert failed.retry_count == 1
        assert "mailbox full" in failed.error_message
        assert bad.calls == 2

    @pytest.mark.asyncio
    async def test_failed_dispatch_keeps_alert_logged(self):
        manager = _make_manager([_FailingSink()])
        alerts = await manager.process_formation_predictions([_make_candidate()])
        assert manager.all_alerts() == alerts
        report = manager.dispatch_report(alerts[0].id)
        assert report.failed_channels == [AlertChannel.EMAIL]

    @pytest.mark.asyncio
    async def test_retry_then_deliver(self):
        sink = _FlakySink()
        report = await _make_manager([sink]).send_alert(_make_alert())
        assert report.all_delivered
        assert report.attempts[0].retry_count == 1
        assert report.attempts[0].error_message is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        manager = _make_manager([_SlowSink()], notification_timeout=0.05, retry=RetryConfig(0, 0.0))
        report = await manager.send_alert(_make_alert())
        assert report.attempts[0].status == DeliveryStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_unexpected_exception_recorded(self):
        report = await _make_manager([_RaisingSink()]).send_alert(_make_alert())
        assert report.attempts[0].status == DeliveryStatus.FAILED
        assert report.attempts[0].error_message == "boom"

    @pytest.mark.asyncio
    async def test_no_sinks(self):
        report = await _make_manager().send_alert(_make_alert())
        assert report.attempts == []
        assert not report.all_delivered

    @pytest.mark.asyncio
    async def test_hanging_sink_batch_dispatched_concurrently(self):
        # One alert costs 3 × 0.05s timeouts + 0.05s + 0.1s backoff ≈ 0.3s
        manager = _make_manager(
            [_SlowSink()], notification_timeout=0.05, retry=RetryConfig(2, 0.05),
        )
        candidates = [_make_candidate(lat=-20.0 - i * 0.5) for i in range(20)]

        loop = asyncio.get_running_loop()
        started = loop.time()
        alerts = await manager.process_formation_predictions(candidates)
        elapsed = loop.time() - started

        assert len(alerts) == 40
        assert elapsed < 1.5
        assert manager.all_alerts() == alerts
        reports = manager.dispatch_reports(alerts)
        assert [r.alert_id for r in reports] == [a.id for a in alerts]
        assert all(r.attempts[0].status == DeliveryStatus.TIMED_OUT for r in reports)
        assert all(r.attempts[0].retry_count == 2 for r in reports)

    @pytest.mark.asyncio
    async def test_dispatch_reports_skip_undispatched(self):
        manager = _make_manager([_RecordingSink()])
        sent, pending = _make_alert(), _make_alert(trigger="imminent")
        await manager.send_alert(sent)
        assert [r.alert_id for r in manager.dispatch_reports([pending, sent])] == [sent.id]


class TestBackoff:

    def test_exponential(self):
        config = RetryConfig(3, 1.0)
        assert [_compute_backoff(config, n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_linear(self):
        config = RetryConfig(3, 0.5, "linear")
        assert [_compute_backoff(config, n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]


# ═══════════════════════════════════════════════════════════════════════════
# Channels
# ═══════════════════════════════════════════════════════════════════════════

class TestSmsChannel:

    def test_long_message_truncated(self):
        alert = _make_alert(message="x" * 400)
        body = format_sms(alert)
        assert len(body) <= SMS_MAX_GSM7
        assert body.startswith("[HIGH] ")
        assert body.endswith(f"Ref:{alert.id[-8:]}")
        assert "..." in body

    def test_short_message_intact(self):
        alert = _make_alert(message="Formation likely")
        assert "Formation likely" in format_sms(alert)
        assert "..." not in format_sms(alert)

    def test_long_title_still_fits(self):
        alert = _make_alert(title="T" * 200, message="m" * 50)
        assert len(format_sms(alert)) <= SMS_MAX_GSM7

    @pytest.mark.asyncio
    async def test_send_records_body(self):
        sink = SmsSink("+2305550100")
        await sink.send(_make_alert())
        assert len(sink.sent) == 1

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        sink = SmsSink("+2305550100", history=3)
        alerts = [_make_alert(message=f"Update {i}") for i in range(5)]
        for alert in alerts:
            await sink.send(alert)
        assert len(sink.sent) == 3
        assert "Update 4" in sink.sent[-1]

    @pytest.mark.asyncio
    async def test_missing_phone(self):
        with pytest.raises(AlertDeliveryError):
            await SmsSink("").send(_make_alert())


class TestEmailChannel:

    def test_render(self):
        alert = _make_alert(severity=AlertSeverity.CRITICAL, recommended_actions=["Evacuate"])
        subject, body = render_email(alert)
        assert subject == "[CRITICAL] High Cyclone Formation Probability Detected"
        assert "  - Evacuate" in body
        assert body.endswith(f"Ref: {alert.id}")

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        sink = EmailSink("ops@example.org", history=2)
        for i in range(4):
            await sink.send(_make_alert(title=f"Alert {i}"))
        assert [subject for subject, _ in sink.sent] == ["[HIGH] Alert 2", "[HIGH] Alert 3"]

    @pytest.mark.asyncio
    async def test_invalid_address(self):
        with pytest.raises(AlertDeliveryError):
            await EmailSink("ops.example.org").send(_make_alert())


class TestWebhookChannel:

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(json.loads(request.content))
            return httpx.Response(200)

        sink = WebhookSink("https://hooks.example.org/alerts", transport=httpx.MockTransport(handler))
        alert = _make_alert()
        try:
            await sink.send(alert)
        finally:
            await sink.close()
        assert captured[0]["source"] == "climarisk"
        assert captured[0]["alert"]["id"] == alert.id
        assert "timestamp" in captured[0]

    @pytest.mark.asyncio
    async def test_http_error_reported_through_manager(self):
        sink = WebhookSink(
            "https://hooks.example.org/alerts",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        report = await _make_manager([sink], retry=RetryConfig(0, 0.0)).send_alert(_make_alert())
        await sink.close()
        assert report.attempts[0].status == DeliveryStatus.FAILED
        assert "HTTP 500" in report.attempts[0].error_message


class TestBuildSinks:

    def test_all_channels_in_order(self):
        config = AlertConfiguration(
            email="ops@example.org", phone="+2305550100", webhook_url="https://hooks.example.org",
        )
        sinks = build_sinks(config)
        assert [type(s) for s in sinks] == [WebhookSink, EmailSink, SmsSink]

    def test_none_configured(self):
        assert build_sinks(AlertConfiguration()) == []
