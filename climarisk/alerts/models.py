"""
models.py — Shared data structures for the alerting pipeline.

Defines:
    • AlertType / AlertSeverity — what fired and how bad it is
    • AlertChannel / DeliveryStatus — dispatch bookkeeping
    • Alert            — immutable alert record with its dedup key
    • DeliveryAttempt  — one channel's send outcome
    • DispatchReport   — per-channel results of sending one alert
    • TrackPoint / TrackingPrediction — storm track input
    • AlertThresholds / AlertConfiguration — load-once engine configuration

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    none ──threshold crossed──▶ active ──age > active window──▶ expired
                                                   │
                                   age > retention │
                                                   ▼
                                                 purged

Pending and active coincide: an alert is active as soon as it is logged.
Nothing marks an alert expired; "active" is a view computed from the log.

═══════════════════════════════════════════════════════════════════════════
DEDUPLICATION KEY
═══════════════════════════════════════════════════════════════════════════

    (type, trigger, region, round(lat, 1), round(lng, 1), severity, time bucket)

Time bucket = floor(epoch minutes / bucket size). Two equivalent alerts in
the same bucket collapse into the first one logged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from climarisk.core.config import Settings
from climarisk.core.errors import ConfigurationError
from climarisk.spatial.radius_utils import Coordinate
from climarisk.spatial.regions import RegionBounds


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    FORMATION = "formation"
    TRACKING = "tracking"
    LANDFALL = "landfall"
    INTENSIFICATION = "intensification"
    RISK = "risk"  # point RiskScore crossing its level threshold


class AlertSeverity(str, Enum):
    """Ordered severities; ``rank`` enables comparison."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MODERATE: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"        # all retries exhausted
    TIMED_OUT = "timed_out"  # last attempt hit the send timeout


# ═══════════════════════════════════════════════════════════════════════════
# Alert
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Alert:
    """An immutable alert record."""
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    location: Coordinate
    timestamp: datetime = field(default_factory=_now)
    source_data: Dict[str, Any] = field(default_factory=dict)
    recommended_actions: Tuple[str, ...] = ()
    trigger: str = ""  # finer reason within a type, e.g. "imminent"
    region: str = ""
    id: str = field(default_factory=_generate_id)

    def __post_init__(self) -> None:
        if not isinstance(self.recommended_actions, tuple):
            object.__setattr__(self, "recommended_actions", tuple(self.recommended_actions))

    def dedup_key(self, bucket_minutes: int = 60) -> Tuple[Any, ...]:
        bucket = int(self.timestamp.timestamp() // (bucket_minutes * 60))
        lat, lng = self.location.rounded(1)
        return (self.type.value, self.trigger, self.region, lat, lng, self.severity.value, bucket)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "trigger": self.trigger,
            "region": self.region,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "location": self.location.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "source_data": self.source_data,
            "recommended_actions": list(self.recommended_actions),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryAttempt:
    """Outcome of sending one alert on one channel (after retries)."""
    alert_id: str
    channel: AlertChannel
    status: DeliveryStatus
    attempted_at: datetime = field(default_factory=_now)
    retry_count: int = 0
    duration_ms: float = 0.0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "retry_count": self.retry_count,
            "duration_ms": round(self.duration_ms, 1),
            "error_message": self.error_message,
        }


@dataclass
class DispatchReport:
    """Per-channel results of one ``send_alert`` call."""
    alert_id: str
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    already_dispatched: bool = False

    @property
    def delivered_channels(self) -> List[AlertChannel]:
        return [a.channel for a in self.attempts if a.status == DeliveryStatus.DELIVERED]

    @property
    def failed_channels(self) -> List[AlertChannel]:
        return [a.channel for a in self.attempts if a.status != DeliveryStatus.DELIVERED]

    @property
    def all_delivered(self) -> bool:
        return bool(self.attempts) and not self.failed_channels

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "already_dispatched": self.already_dispatched,
            "delivered_channels": [c.value for c in self.delivered_channels],
            "failed_channels": [c.value for c in self.failed_channels],
            "attempts": [a.to_dict() for a in self.attempts],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Storm tracks
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TrackPoint:
    lat: float
    lng: float
    wind_speed_kt: float
    hours_ahead: float = 0.0

    @property
    def location(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


@dataclass(frozen=True)
class TrackingPrediction:
    """A tracked storm: where it is now and where it is expected to go."""
    storm_id: str
    name: str
    current_position: Coordinate
    current_wind_kt: float
    trajectory: Tuple[TrackPoint, ...] = ()

    @property
    def max_predicted_wind_kt(self) -> float:
        return max((p.wind_speed_kt for p in self.trajectory), default=0.0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrackingPrediction":
        """Build from a ``{cycloneName, currentStatus, prediction.trajectory}`` mapping."""
        status = data.get("currentStatus") or data.get("current_status") or {}
        position = status.get("currentPosition") or status.get("position") or {}
        prediction = data.get("prediction") or {}
        points = tuple(
            TrackPoint(
                lat=float(p["lat"]),
                lng=float(p["lng"]),
                wind_speed_kt=float(p.get("windSpeed") or p.get("wind_speed_kt") or 0.0),
                hours_ahead=float(p.get("hoursAhead") or p.get("hours_ahead") or 0.0),
            )
            for p in prediction.get("trajectory") or []
        )
        name = data.get("cycloneName") or data.get("name") or "Unnamed system"
        return cls(
            storm_id=str(data.get("id") or data.get("storm_id") or name),
            name=name,
            current_position=Coordinate(float(position["lat"]), float(position["lng"])),
            current_wind_kt=float(status.get("windSpeed") or status.get("wind_speed_kt") or 0.0),
            trajectory=points,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════

class AlertThresholds(BaseModel):
    """Per-domain alert thresholds."""

    model_config = ConfigDict(frozen=True)

    formation_probability: float = Field(
        0.4, gt=0.0, le=1.0,
        validation_alias=AliasChoices("formation_probability", "formationProbability"),
    )
    time_to_formation_hours: float = Field(
        72.0, gt=0.0,
        validation_alias=AliasChoices(
            "time_to_formation_hours", "timeToFormationHours", "timeToFormation"),
    )
    wind_speed_kt: float = Field(
        100.0, gt=0.0,
        validation_alias=AliasChoices("wind_speed_kt", "windSpeedKt", "windSpeed"),
    )
    nearby_distance_km: float = Field(
        500.0, gt=0.0,
        validation_alias=AliasChoices(
            "nearby_distance_km", "nearbyDistanceKm", "nearbyDistance"),
    )


DEFAULT_REGION = RegionBounds(
    name="Mauritius Region", min_lat=-25.0, max_lat=-15.0, min_lng=55.0, max_lng=65.0,
)


class AlertConfiguration(BaseModel):
    """
    Load-once engine configuration: channel endpoints, thresholds, regions
    and lifecycle windows. Frozen after construction.
    """

    model_config = ConfigDict(frozen=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    webhook_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("webhook_url", "webhookUrl", "webhook"),
    )
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    regions: List[RegionBounds] = Field(default_factory=lambda: [DEFAULT_REGION], min_length=1)
    grid_resolution_deg: float = Field(
        0.5, gt=0.0, le=10.0,
        validation_alias=AliasChoices("grid_resolution_deg", "gridResolutionDeg"),
    )
    active_window_hours: float = Field(
        24.0, gt=0.0,
        validation_alias=AliasChoices("active_window_hours", "activeWindowHours"),
    )
    retention_days: float = Field(
        7.0, gt=0.0,
        validation_alias=AliasChoices("retention_days", "retentionDays"),
    )
    dedup_bucket_minutes: int = Field(
        60, gt=0,
        validation_alias=AliasChoices("dedup_bucket_minutes", "dedupBucketMinutes"),
    )

    @model_validator(mode="after")
    def _check_windows(self) -> "AlertConfiguration":
        if self.retention_days * 24 < self.active_window_hours:
            raise ValueError("retention window must not be shorter than the active window")
        names = [r.name for r in self.regions]
        if len(set(names)) != len(names):
            raise ValueError(f"region names must be unique, got {names}")
        return self

    def region(self, name: str) -> RegionBounds:
        for r in self.regions:
            if r.name == name:
                return r
        raise ConfigurationError(f"Unknown region '{name}'", region=name)

    @classmethod
    def load(cls, data: Mapping[str, Any]) -> "AlertConfiguration":
        """
        Validate a raw mapping; any problem is a ConfigurationError.
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid alert configuration",
                errors=[
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            ) from e

    @classmethod
    def from_settings(cls, config: Settings, **overrides: Any) -> "AlertConfiguration":
        data: Dict[str, Any] = {
            "email": config.ALERT_EMAIL,
            "phone": config.ALERT_PHONE,
            "webhook_url": config.ALERT_WEBHOOK_URL,
            "thresholds": {
                "formation_probability": config.FORMATION_PROBABILITY_THRESHOLD,
                "time_to_formation_hours": config.TIME_TO_FORMATION_THRESHOLD_HOURS,
                "wind_speed_kt": config.WIND_SPEED_THRESHOLD_KT,
                "nearby_distance_km": config.NEARBY_DISTANCE_KM,
            },
            "grid_resolution_deg": config.GRID_RESOLUTION_DEG,
            "active_window_hours": config.ALERT_ACTIVE_WINDOW_HOURS,
            "retention_days": config.ALERT_RETENTION_DAYS,
            "dedup_bucket_minutes": config.ALERT_DEDUP_BUCKET_MINUTES,
        }
        data.update(overrides)
        return cls.load(data)
