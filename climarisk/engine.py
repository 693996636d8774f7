"""
engine.py — RiskEngine facade.

Wires the scoring strategies, formation analyzer and alert manager behind
the engine's inbound operations. One engine owns one alert log; several
engines (e.g. one per region set) can coexist.

═══════════════════════════════════════════════════════════════════════════
FORECAST CYCLE
═══════════════════════════════════════════════════════════════════════════

    predict_formation(region)          sample → grid → candidates
              │
              ▼
    process_formation_predictions()    thresholds → log → dispatch
              │
              ▼
    ForecastCycleResult(forecast, alerts)

Scheduling cycles is the caller's job; the engine has no background loop.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from climarisk.alerts.alert_service import AlertManager, RetryConfig
from climarisk.alerts.channels import NotificationSink, build_sinks
from climarisk.alerts.models import (
    Alert,
    AlertChannel,
    AlertConfiguration,
    AlertSeverity,
    DispatchReport,
    TrackingPrediction,
)
from climarisk.core.config import Settings, get_settings
from climarisk.core.errors import ObservationError
from climarisk.core.logging_config import clear_run_context, set_run_context
from climarisk.ingestion.observation import EnvironmentalObservation, normalize_observation
from climarisk.ingestion.observation_source import (
    ObservationSampler,
    ObservationSource,
    OpenMeteoObservationSource,
)
from climarisk.ml.formation import FormationAnalyzer, FormationCandidate, RegionalFormationForecast
from climarisk.ml.recommendations import generate_recommendations
from climarisk.ml.risk_score import RiskDomain, RiskScore
from climarisk.ml.strategy import FormationModel, ScoringStrategy, default_strategies
from climarisk.spatial.radius_utils import Coordinate
from climarisk.spatial.regions import RegionBounds

logger = logging.getLogger(__name__)

ObservationInput = Union[EnvironmentalObservation, Mapping[str, Any]]


@dataclass
class PointAssessment:
    """Scores for one point; domains the observation cannot support are skipped."""
    location: Coordinate
    observation: Optional[EnvironmentalObservation]
    scores: Dict[RiskDomain, RiskScore] = field(default_factory=dict)
    skipped: Dict[RiskDomain, str] = field(default_factory=dict)
    alerts: List[Alert] = field(default_factory=list)
    reports: List[DispatchReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict(),
            "observation": self.observation.to_dict() if self.observation else None,
            "scores": {d.value: s.to_dict() for d, s in self.scores.items()},
            "skipped": {d.value: reason for d, reason in self.skipped.items()},
            "alerts": [a.to_dict() for a in self.alerts],
            "reports": [r.to_dict() for r in self.reports],
        }


@dataclass
class ForecastCycleResult:
    forecast: RegionalFormationForecast
    alerts: List[Alert]
    run_id: str
    reports: List[DispatchReport] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def failures(self) -> Dict[str, List[AlertChannel]]:
        """Alert id → channels that did not deliver it."""
        return {r.alert_id: r.failed_channels for r in self.reports if r.failed_channels}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "forecast": self.forecast.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "reports": [r.to_dict() for r in self.reports],
            "duration_ms": round(self.duration_ms, 1),
        }


def _as_observation(obs: ObservationInput) -> EnvironmentalObservation:
    if isinstance(obs, EnvironmentalObservation):
        return obs
    return normalize_observation(obs)


class RiskEngine:
    """
    Risk scoring and alerting engine.

    Parameters
    ----------
    config : AlertConfiguration
    source : ObservationSource, optional
        Upstream observations; None → formation grids use climatology only
        and ``score_point`` is unavailable.
    sinks : sequence of NotificationSink, optional
    strategies : mapping of RiskDomain → ScoringStrategy, optional
        Overrides for the heuristic defaults.
    formation_model : FormationModel, optional
    seed : int, optional
        Seed for climatological draws.
    clock : callable, optional
        Shared by the analyzer and the alert manager.
    """

    def __init__(
        self,
        config: AlertConfiguration,
        source: Optional[ObservationSource] = None,
        sinks: Optional[Sequence[NotificationSink]] = None,
        *,
        strategies: Optional[Mapping[RiskDomain, ScoringStrategy]] = None,
        formation_model: Optional[FormationModel] = None,
        seed: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        deduplicate: bool = True,
        fetch_timeout: Optional[float] = None,
        notification_timeout: Optional[float] = None,
        retry: Optional[RetryConfig] = None,
        n_samples: Optional[int] = None,
    ):
        self.config = config
        self.source = source
        self.sampler = ObservationSampler(source, timeout=fetch_timeout) if source else None
        self.strategies: Dict[RiskDomain, ScoringStrategy] = {
            **default_strategies(), **dict(strategies or {}),
        }
        self.analyzer = FormationAnalyzer(
            self.sampler,
            model=formation_model,
            seed=seed,
            clock=clock,
            bucket_minutes=config.dedup_bucket_minutes,
            resolution_deg=config.grid_resolution_deg,
            n_samples=n_samples,
        )
        self.alerts = AlertManager(
            config,
            sinks,
            clock=clock,
            deduplicate=deduplicate,
            notification_timeout=notification_timeout,
            retry=retry,
        )

    # ── Point scoring ─────────────────────────────────────────────────

    def score(self, domain: RiskDomain, observation: ObservationInput) -> RiskScore:
        """Score ``observation`` with the strategy configured for ``domain``."""
        return self.strategies[RiskDomain(domain)].predict(_as_observation(observation))

    def score_cyclone(self, observation: ObservationInput) -> RiskScore:
        return self.score(RiskDomain.CYCLONE, observation)

    def score_flood(self, observation: ObservationInput) -> RiskScore:
        return self.score(RiskDomain.FLOOD, observation)

    def score_ocean_health(self, observation: ObservationInput) -> RiskScore:
        return self.score(RiskDomain.OCEAN_HEALTH, observation)

    def score_reef_stress(self, observation: ObservationInput) -> RiskScore:
        return self.score(RiskDomain.REEF, observation)

    async def score_point(
        self,
        lat: float,
        lng: float,
        *,
        domains: Optional[Iterable[RiskDomain]] = None,
        raise_alerts: bool = False,
    ) -> PointAssessment:
        """
        Fetch an observation for (lat, lng) and score every requested domain.

        A failed fetch falls back to the last known observation for the
        location. Domains whose required fields are absent are listed in
        ``skipped`` with the reason.
        """
        if self.sampler is None:
            raise RuntimeError("score_point requires an ObservationSource")

        location = Coordinate(lat, lng)
        assessment = PointAssessment(location=location, observation=None)
        observation = await self.sampler.sample(
            lat, lng, use_last_known=True, now=self.alerts.now(),
        )
        if observation is None:
            logger.warning(
                "No observation available for (%.2f, %.2f)", lat, lng,
                extra={"lat": lat, "lng": lng},
            )
            return assessment
        assessment.observation = observation

        for domain in domains or self.strategies:
            domain = RiskDomain(domain)
            try:
                assessment.scores[domain] = self.strategies[domain].predict(observation)
            except ObservationError as e:
                assessment.skipped[domain] = e.message

        if raise_alerts:
            for score in assessment.scores.values():
                assessment.alerts.extend(await self.alerts.process_risk_score(score, location))
            assessment.reports = self.alerts.dispatch_reports(assessment.alerts)
        return assessment

    # ── Formation ─────────────────────────────────────────────────────

    def resolve_region(self, region: Union[str, RegionBounds, None] = None) -> RegionBounds:
        if region is None:
            return self.config.regions[0]
        if isinstance(region, RegionBounds):
            return region
        return self.config.region(region)

    async def predict_formation(
        self,
        region: Union[str, RegionBounds, None] = None,
        forecast_days: int = 7,
    ) -> RegionalFormationForecast:
        return await self.analyzer.predict_formation(self.resolve_region(region), forecast_days)

    # ── Alerts ────────────────────────────────────────────────────────

    async def process_formation_predictions(
        self, candidates: Iterable[FormationCandidate],
    ) -> List[Alert]:
        return await self.alerts.process_formation_predictions(candidates)

    async def process_tracking_predictions(
        self, tracks: Iterable[Union[TrackingPrediction, Mapping[str, Any]]],
    ) -> List[Alert]:
        return await self.alerts.process_tracking_predictions(tracks)

    async def send_alert(self, alert: Alert) -> DispatchReport:
        return await self.alerts.send_alert(alert)

    def get_active_alerts(self, now: Optional[datetime] = None) -> List[Alert]:
        return self.alerts.get_active_alerts(now)

    def get_alerts_by_severity(
        self, severity: Union[AlertSeverity, str], now: Optional[datetime] = None,
    ) -> List[Alert]:
        return self.alerts.get_alerts_by_severity(severity, now)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        return self.alerts.purge_expired(now)

    def recommendations_for(self, item: Union[RiskScore, FormationCandidate]) -> List[str]:
        return generate_recommendations(item)

    # ── Cycle ─────────────────────────────────────────────────────────

    async def run_forecast_cycle(
        self,
        region: Union[str, RegionBounds, None] = None,
        forecast_days: int = 7,
    ) -> ForecastCycleResult:
        """Predict formation over ``region``, then alert and dispatch on the result."""
        bounds = self.resolve_region(region)
        ctx = set_run_context(region=bounds.name)
        start = time.perf_counter()
        try:
            forecast = await self.predict_formation(bounds, forecast_days)
            alerts = await self.process_formation_predictions(forecast.candidates)
        finally:
            clear_run_context()
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Forecast cycle for %s: %d candidate(s), %d alert(s)",
            bounds.name, len(forecast.candidates), len(alerts),
            extra={"region": bounds.name, "duration_ms": duration_ms},
        )
        return ForecastCycleResult(
            forecast=forecast,
            alerts=alerts,
            run_id=ctx["run_id"],
            reports=self.alerts.dispatch_reports(alerts),
            duration_ms=duration_ms,
        )

    async def close(self) -> None:
        """Close HTTP clients held by the source and sinks."""
        for resource in [self.source, *self.alerts.sinks]:
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


def create_engine(
    config: Optional[Settings] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    source: Optional[ObservationSource] = None,
    sinks: Optional[Sequence[NotificationSink]] = None,
    **kwargs: Any,
) -> RiskEngine:
    """
    Build an engine from settings.

    Raises
    ------
    ConfigurationError
        When the resulting AlertConfiguration is invalid.
    """
    config = config or get_settings()
    alert_config = AlertConfiguration.from_settings(config, **dict(overrides or {}))
    if source is None:
        source = OpenMeteoObservationSource(
            config.OPEN_METEO_BASE_URL, timeout=config.OBSERVATION_FETCH_TIMEOUT,
        )
    if sinks is None:
        sinks = build_sinks(alert_config)
    kwargs.setdefault("seed", config.RANDOM_SEED)
    kwargs.setdefault("n_samples", config.GRID_SAMPLE_POINTS)
    logger.info(
        "Engine configured: %d region(s), %d sink(s)",
        len(alert_config.regions), len(sinks),
    )
    return RiskEngine(alert_config, source, sinks, **kwargs)
