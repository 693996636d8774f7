"""
alert_service.py — Alert classification, lifecycle and dispatch.

The AlertManager is the coordinator that:
    1. Evaluates formation candidates, storm tracks and point risk scores
       against the configured thresholds
    2. Builds Alert records with a deterministic severity
    3. Appends each evaluation's alerts to the log atomically (with dedup)
    4. Dispatches every newly logged alert once to all sinks, concurrently,
       each channel bounded by a timeout and retried with backoff
    5. Serves the active view and purges expired history

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Formation /        │
    │  tracking / score   │
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Threshold       │  probability, imminent window, wind speed,
    │     evaluation      │  intensification ratio, proximity, landfall
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. AlertLog        │  One locked append per evaluation batch
    │     .extend()       │  Duplicates (same dedup key) dropped
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. send_alert()    │  Once per alert id; a batch's alerts
    │                     │  and their sinks run concurrently:
    │                     │    wait_for(timeout) → retry with backoff
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. DispatchReport  │  Per-channel DeliveryAttempt; failures logged,
    │                     │  alert stays in the log regardless
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
SEVERITY TABLE (formation)
═══════════════════════════════════════════════════════════════════════════

    probability > 0.8  and  time-to-event < 24 h   → critical
    probability > 0.6  and  time-to-event < 48 h   → high
    probability > 0.4  and  time-to-event < 72 h   → moderate
    otherwise                                      → low

Imminent-formation and intensification alerts are always high.

═══════════════════════════════════════════════════════════════════════════
RETRY STRATEGY
═══════════════════════════════════════════════════════════════════════════

    delay = base × 2^(attempt - 1)        (exponential, default)
    delay = base × attempt                (linear)

    Each attempt is bounded by NOTIFICATION_TIMEOUT; a timed-out send is
    cancelled before the next attempt starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from climarisk.alerts.alert_log import AlertLog
from climarisk.alerts.channels.base import NotificationSink
from climarisk.alerts.models import (
    Alert,
    AlertConfiguration,
    AlertSeverity,
    AlertType,
    DeliveryAttempt,
    DeliveryStatus,
    DispatchReport,
    TrackingPrediction,
)
from climarisk.core.config import settings
from climarisk.core.errors import AlertDeliveryError
from climarisk.ml.formation import FormationCandidate
from climarisk.ml.recommendations import formation_recommendations, score_recommendations
from climarisk.ml.risk_score import RiskLevel, RiskScore
from climarisk.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

INTENSIFICATION_RATIO = 1.2

IMMINENT_ACTIONS = (
    "Activate emergency monitoring protocols",
    "Increase satellite observation frequency",
    "Issue early warning to affected coastal areas",
    "Prepare emergency response teams",
)

INTENSIFICATION_ACTIONS = (
    "Prepare for stronger storm surge",
    "Reinforce coastal defenses",
    "Update evacuation plans",
    "Increase warning levels for affected areas",
)

TRACKING_ACTIONS = (
    "Monitor storm track updates",
    "Review coastal evacuation routes",
    "Secure vessels and port operations",
)

LANDFALL_ACTIONS = (
    "Prepare for landfall conditions",
    "Execute evacuation plans for exposed coastal zones",
    "Pre-position emergency supplies",
    "Close ports and suspend marine traffic",
)

_RISK_LEVEL_SEVERITY = {
    RiskLevel.HIGH: AlertSeverity.HIGH,
    RiskLevel.SEVERE: AlertSeverity.CRITICAL,
}


def classify_severity(probability: float, time_to_event_hours: float) -> AlertSeverity:
    """
    Deterministic severity from probability and time-to-event.

    Parameters
    ----------
    probability : float
        Event probability (0–1).
    time_to_event_hours : float
        Hours until the event is expected.

    Returns
    -------
    AlertSeverity
    """
    if probability > 0.8 and time_to_event_hours < 24:
        return AlertSeverity.CRITICAL
    if probability > 0.6 and time_to_event_hours < 48:
        return AlertSeverity.HIGH
    if probability > 0.4 and time_to_event_hours < 72:
        return AlertSeverity.MODERATE
    return AlertSeverity.LOW


def format_position(location: Coordinate) -> str:
    """'20.1°S, 57.5°E' style position."""
    ns = "S" if location.latitude < 0 else "N"
    ew = "W" if location.longitude < 0 else "E"
    return f"{abs(location.latitude):.1f}°{ns}, {abs(location.longitude):.1f}°{ew}"


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Dispatch retry parameters, shared by all sinks."""
    max_retries: int
    backoff_base_seconds: float
    backoff_type: str = "exponential"  # or "linear"


def _compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Compute delay before next retry.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Current attempt number (1-based).

    Returns
    -------
    float
        Delay in seconds.
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


def default_retry_config() -> RetryConfig:
    return RetryConfig(settings.NOTIFICATION_MAX_RETRIES, 1.0, "exponential")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Alert Manager
# ═══════════════════════════════════════════════════════════════════════════

class AlertManager:
    """
    Owns one alert log and the sinks alerts are dispatched to.

    Parameters
    ----------
    config : AlertConfiguration
        Thresholds, regions and lifecycle windows.
    sinks : sequence of NotificationSink
        Delivery endpoints; may be empty.
    clock : callable, optional
        Returns the current UTC datetime. Injected in tests.
    deduplicate : bool
        Drop alerts whose dedup key is already logged.
    notification_timeout : float, optional
        Per-attempt send timeout in seconds.
    retry : RetryConfig, optional
    """

    def __init__(
        self,
        config: AlertConfiguration,
        sinks: Optional[Sequence[NotificationSink]] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        deduplicate: bool = True,
        notification_timeout: Optional[float] = None,
        retry: Optional[RetryConfig] = None,
    ):
        self.config = config
        self.sinks: List[NotificationSink] = list(sinks or [])
        self._clock = clock or _utcnow
        self.notification_timeout = notification_timeout or settings.NOTIFICATION_TIMEOUT
        self.retry = retry or default_retry_config()
        self.log = AlertLog(
            deduplicate=deduplicate, bucket_minutes=config.dedup_bucket_minutes,
        )
        self._dispatched: Set[str] = set()
        self._reports: Dict[str, DispatchReport] = {}

    def now(self) -> datetime:
        return self._clock()

    @property
    def active_window(self) -> timedelta:
        return timedelta(hours=self.config.active_window_hours)

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.config.retention_days)

    # ── Alert construction ────────────────────────────────────────────

    def formation_alerts(self, candidate: FormationCandidate) -> List[Alert]:
        """Probability alert then imminent alert, for whichever thresholds are crossed."""
        thresholds = self.config.thresholds
        now = self.now()
        p = candidate.formation_probability
        t = candidate.time_to_formation_hours
        position = format_position(candidate.location)
        alerts: List[Alert] = []

        if p > thresholds.formation_probability:
            alerts.append(Alert(
                type=AlertType.FORMATION,
                trigger="probability",
                severity=classify_severity(p, t),
                title="High Cyclone Formation Probability Detected",
                message=(
                    f"{p * 100:.1f}% chance of cyclone formation at {position} "
                    f"within {round(t)} hours"
                ),
                location=candidate.location,
                timestamp=now,
                source_data=candidate.to_dict(),
                recommended_actions=tuple(formation_recommendations(candidate)),
            ))

        if t < thresholds.time_to_formation_hours:
            alerts.append(Alert(
                type=AlertType.FORMATION,
                trigger="imminent",
                severity=AlertSeverity.HIGH,
                title="Imminent Cyclone Formation Alert",
                message=f"Cyclone formation expected within {round(t)} hours at {position}",
                location=candidate.location,
                timestamp=now,
                source_data=candidate.to_dict(),
                recommended_actions=IMMINENT_ACTIONS,
            ))
        return alerts

    def tracking_alerts(self, track: TrackingPrediction) -> List[Alert]:
        """Intensification, proximity and landfall alerts for one storm."""
        thresholds = self.config.thresholds
        now = self.now()
        source = {
            "storm_id": track.storm_id,
            "name": track.name,
            "current_position": track.current_position.to_dict(),
            "current_wind_kt": track.current_wind_kt,
            "max_predicted_wind_kt": track.max_predicted_wind_kt,
        }
        alerts: List[Alert] = []

        max_wind = track.max_predicted_wind_kt
        if (max_wind > thresholds.wind_speed_kt
                and max_wind > track.current_wind_kt * INTENSIFICATION_RATIO):
            alerts.append(Alert(
                type=AlertType.INTENSIFICATION,
                trigger=track.storm_id,
                severity=AlertSeverity.HIGH,
                title="Cyclone Intensification Alert",
                message=(
                    f"{track.name} expected to intensify from "
                    f"{track.current_wind_kt:.0f} to {max_wind:.0f} kt"
                ),
                location=track.current_position,
                timestamp=now,
                source_data=source,
                recommended_actions=INTENSIFICATION_ACTIONS,
            ))

        for region in self.config.regions:
            distance = region.distance_km(track.current_position)
            if distance <= thresholds.nearby_distance_km:
                alerts.append(Alert(
                    type=AlertType.TRACKING,
                    trigger=track.storm_id,
                    severity=_proximity_severity(distance, thresholds.nearby_distance_km),
                    title=f"Cyclone Approaching {region.name}",
                    message=(
                        f"{track.name} ({track.current_wind_kt:.0f} kt) is "
                        f"{distance:.0f} km from {region.name}"
                    ),
                    location=track.current_position,
                    timestamp=now,
                    source_data={**source, "region": region.name, "distance_km": distance},
                    recommended_actions=TRACKING_ACTIONS,
                    region=region.name,
                ))

            landfall = next(
                (p for p in track.trajectory if region.contains(p.lat, p.lng)), None,
            )
            if landfall is not None:
                alerts.append(Alert(
                    type=AlertType.LANDFALL,
                    trigger=track.storm_id,
                    severity=_landfall_severity(landfall.hours_ahead),
                    title=f"Predicted Landfall in {region.name}",
                    message=(
                        f"{track.name} track enters {region.name} at "
                        f"{format_position(landfall.location)} in about "
                        f"{round(landfall.hours_ahead)} hours "
                        f"({landfall.wind_speed_kt:.0f} kt)"
                    ),
                    location=landfall.location,
                    timestamp=now,
                    source_data={**source, "region": region.name,
                                 "hours_ahead": landfall.hours_ahead},
                    recommended_actions=LANDFALL_ACTIONS,
                    region=region.name,
                ))
        return alerts

    def risk_alert(self, score: RiskScore, location: Coordinate) -> Optional[Alert]:
        """An alert for a point score at high or severe level, else None."""
        severity = _RISK_LEVEL_SEVERITY.get(score.risk_level)
        if severity is None:
            return None
        label = score.domain.value
        return Alert(
            type=AlertType.RISK,
            trigger=label,
            severity=severity,
            title=f"{score.risk_level.value.capitalize()} {label} risk",
            message=f"{score.explanation} at {format_position(location)}",
            location=location,
            timestamp=self.now(),
            source_data=score.to_dict(),
            recommended_actions=tuple(score_recommendations(score)),
        )

    # ── Processing ────────────────────────────────────────────────────

    async def _record_and_dispatch(self, alerts: List[Alert]) -> List[Alert]:
        added = self.log.extend(alerts)
        skipped = len(alerts) - len(added)
        if skipped:
            logger.info("Dropped %d duplicate alert(s)", skipped)
        for alert in added:
            logger.info(
                "Alert %s [%s] %s", alert.id, alert.severity.value.upper(), alert.title,
                extra={"alert_id": alert.id, "severity": alert.severity.value,
                       "lat": alert.location.latitude, "lng": alert.location.longitude},
            )
        # Alerts stay in log order; their deliveries overlap
        await asyncio.gather(*(self.send_alert(alert) for alert in added))
        return added

    async def process_formation_predictions(
        self, candidates: Iterable[FormationCandidate],
    ) -> List[Alert]:
        """
        Generate, log and dispatch alerts for formation candidates.

        Alerts are appended in candidate order.

        Returns
        -------
        list[Alert]
            Newly logged alerts (duplicates excluded).
        """
        alerts: List[Alert] = []
        for candidate in candidates:
            alerts.extend(self.formation_alerts(candidate))
        return await self._record_and_dispatch(alerts)

    async def process_tracking_predictions(
        self, tracks: Iterable[Union[TrackingPrediction, Mapping[str, Any]]],
    ) -> List[Alert]:
        alerts: List[Alert] = []
        for track in tracks:
            if not isinstance(track, TrackingPrediction):
                track = TrackingPrediction.from_dict(track)
            alerts.extend(self.tracking_alerts(track))
        return await self._record_and_dispatch(alerts)

    async def process_risk_score(self, score: RiskScore, location: Coordinate) -> List[Alert]:
        alert = self.risk_alert(score, location)
        if alert is None:
            return []
        return await self._record_and_dispatch([alert])

    # ── Dispatch ──────────────────────────────────────────────────────

    async def _deliver(self, sink: NotificationSink, alert: Alert) -> DeliveryAttempt:
        """Send via one sink with per-attempt timeout and retries."""
        attempt = DeliveryAttempt(
            alert_id=alert.id, channel=sink.channel, status=DeliveryStatus.FAILED,
        )
        start = time.monotonic()

        for attempt_num in range(1, self.retry.max_retries + 2):  # initial + retries
            attempt.retry_count = attempt_num - 1
            try:
                await asyncio.wait_for(sink.send(alert), timeout=self.notification_timeout)
                attempt.status = DeliveryStatus.DELIVERED
                attempt.error_message = None
                break
            except asyncio.TimeoutError:
                attempt.status = DeliveryStatus.TIMED_OUT
                attempt.error_message = f"Timed out after {self.notification_timeout}s"
            except AlertDeliveryError as e:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = e.message
            except Exception as e:
                logger.exception("Sink %s raised unexpectedly for %s", sink.name, alert.id)
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = str(e) or type(e).__name__

            if attempt_num <= self.retry.max_retries:
                delay = _compute_backoff(self.retry, attempt_num)
                logger.info(
                    "Retry %d/%d for %s via %s in %.1fs",
                    attempt_num, self.retry.max_retries, alert.id, sink.name, delay,
                )
                await asyncio.sleep(delay)

        attempt.duration_ms = (time.monotonic() - start) * 1000
        if attempt.status != DeliveryStatus.DELIVERED:
            logger.warning(
                "Delivery of %s via %s failed: %s",
                alert.id, sink.name, attempt.error_message,
                extra={"alert_id": alert.id, "channel": sink.channel.value,
                       "duration_ms": attempt.duration_ms},
            )
        return attempt

    async def send_alert(self, alert: Alert) -> DispatchReport:
        """
        Dispatch an alert to every sink, at most once per alert id.

        A repeated call returns a report flagged ``already_dispatched``
        carrying the first dispatch's attempts.
        """
        if alert.id in self._dispatched:
            previous = self._reports.get(alert.id)
            return DispatchReport(
                alert_id=alert.id,
                attempts=list(previous.attempts) if previous else [],
                already_dispatched=True,
            )
        self._dispatched.add(alert.id)

        attempts = await asyncio.gather(*(self._deliver(sink, alert) for sink in self.sinks))
        report = DispatchReport(alert_id=alert.id, attempts=list(attempts))
        self._reports[alert.id] = report

        logger.info(
            "Dispatched %s: %d/%d channel(s) delivered",
            alert.id, len(report.delivered_channels), len(report.attempts),
            extra={"alert_id": alert.id, "severity": alert.severity.value},
        )
        return report

    def dispatch_report(self, alert_id: str) -> Optional[DispatchReport]:
        return self._reports.get(alert_id)

    def dispatch_reports(self, alerts: Iterable[Alert]) -> List[DispatchReport]:
        """Reports for the dispatched alerts among ``alerts``, in the same order."""
        return [self._reports[a.id] for a in alerts if a.id in self._reports]

    # ── Views & retention ─────────────────────────────────────────────

    def get_active_alerts(self, now: Optional[datetime] = None) -> List[Alert]:
        """Alerts no older than the active window."""
        return self.log.active(now or self.now(), self.active_window)

    def get_alerts_by_severity(
        self, severity: Union[AlertSeverity, str], now: Optional[datetime] = None,
    ) -> List[Alert]:
        severity = AlertSeverity(severity)
        return [a for a in self.get_active_alerts(now) if a.severity == severity]

    def all_alerts(self) -> List[Alert]:
        """Full log scan, including expired but not yet purged alerts."""
        return self.log.snapshot()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        removed = self.log.purge(now or self.now(), self.retention)
        if removed:
            kept = {a.id for a in self.log.snapshot()}
            self._reports = {k: v for k, v in self._reports.items() if k in kept}
            self._dispatched &= kept
            logger.info("Purged %d alert(s) older than %s", removed, self.retention)
        return removed


def _proximity_severity(distance_km: float, nearby_km: float) -> AlertSeverity:
    if distance_km == 0:
        return AlertSeverity.CRITICAL
    if distance_km <= nearby_km * 0.5:
        return AlertSeverity.HIGH
    return AlertSeverity.MODERATE


def _landfall_severity(hours_ahead: float) -> AlertSeverity:
    if hours_ahead < 24:
        return AlertSeverity.CRITICAL
    if hours_ahead < 48:
        return AlertSeverity.HIGH
    return AlertSeverity.MODERATE
