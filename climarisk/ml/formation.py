"""
formation.py — Tropical cyclone formation analyzer.

Scores every cell of an environmental grid for cyclone-genesis potential,
ranks candidate locations, and estimates time-to-formation and intensity.

═══════════════════════════════════════════════════════════════════════════
FORMATION THRESHOLDS
═══════════════════════════════════════════════════════════════════════════

    Factor        Minimum     Optimal     Statistical weight (min / optimal)
    ──────────    ────────    ────────    ──────────────────────────────────
    SST           26.5 °C     28.0 °C     0.20 / 0.35
    Wind shear    ≤ 10 m/s    ≤ 5 m/s     0.10 / 0.25
    Humidity      70 %        85 %        0.10 / 0.20
    Vorticity     1e-5 s⁻¹    5e-5 s⁻¹    0.10 / 0.20

    p = min(base × seasonal × geographic, 0.95)

    Seasonal:    peak season 1.2, off season 0.3 (hemisphere-aware)
    Geographic:  high-activity core 1.3, active basin 1.1, elsewhere 0.7

═══════════════════════════════════════════════════════════════════════════
PATHS
═══════════════════════════════════════════════════════════════════════════

    Path          When                               Cutoff   Top K
    ───────────   ────────────────────────────────   ──────   ─────
    model         a FormationModel is configured     > 0.10   10
    statistical   no model, or the model failed      > 0.05   15

═══════════════════════════════════════════════════════════════════════════
TIME TO FORMATION & INTENSITY
═══════════════════════════════════════════════════════════════════════════

    t = 168 h × 0.7 (SST favourable) × 0.8 (low shear) × 0.8 (moist)
              × 0.7 (unstable) × (1.1 − p),   minimum 12 h

    Intensity score: SST > 28.5 → +2, > 27 → +1; shear < 5 → +2,
    < 10 → +1; humidity > 85 → +1.
    ≥ 5 category-2+, ≥ 3 category-1, ≥ 2 tropical-storm, else depression.

Regional activity = average probability × candidate count:
    ≥ 3 very-high, ≥ 2 high, ≥ 1 moderate, ≥ 0.5 low, else very-low.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from climarisk.core.config import settings
from climarisk.core.errors import ScoringError
from climarisk.ingestion.climatology import Season, season_for
from climarisk.ingestion.observation import EnvironmentalObservation
from climarisk.ingestion.observation_source import ObservationSampler
from climarisk.ml.cyclone_service import IntensityBucket
from climarisk.ml.grid_model import EnvironmentalGrid, build_environmental_grid
from climarisk.ml.risk_score import clamp
from climarisk.ml.strategy import FormationModel
from climarisk.spatial.radius_utils import Coordinate
from climarisk.spatial.regions import RegionBounds, basin_for

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

SEA_TEMP_MIN, SEA_TEMP_OPTIMAL = 26.5, 28.0
WIND_SHEAR_MAX, WIND_SHEAR_OPTIMAL = 10.0, 5.0
HUMIDITY_MIN, HUMIDITY_OPTIMAL = 70.0, 85.0
VORTICITY_MIN, VORTICITY_OPTIMAL = 1e-5, 5e-5

MAX_FORMATION_PROBABILITY = 0.95
PEAK_SEASON_FACTOR = 1.2
OFF_SEASON_FACTOR = 0.3
OUTSIDE_BASIN_FACTOR = 0.7

MODEL_CUTOFF, MODEL_TOP_K = 0.10, 10
STATISTICAL_CUTOFF, STATISTICAL_TOP_K = 0.05, 15

BASE_FORMATION_HOURS = 168.0
MIN_FORMATION_HOURS = 12.0

FORMATION_FIELDS = ("sea_temp", "wind_shear", "humidity", "vorticity")


@dataclass(frozen=True)
class ActivityZone:
    """A rectangle with a formation multiplier; first match wins."""
    name: str
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    factor: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


# Ordered: most specific zone first
HIGH_ACTIVITY_ZONES: Tuple[ActivityZone, ...] = (
    ActivityZone("Mascarene core", -25.0, -15.0, 50.0, 75.0, 1.3),
    ActivityZone("South-West Indian Ocean", -30.0, -10.0, 40.0, 100.0, 1.1),
)


class ActivityLevel(str, Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very-high"


# ═══════════════════════════════════════════════════════════════════════════
# Data structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EnvironmentalFactors:
    sea_temp_favorable: bool
    low_wind_shear: bool
    sufficient_moisture: bool
    atmospheric_instability: bool

    @property
    def favorable_count(self) -> int:
        return sum((self.sea_temp_favorable, self.low_wind_shear,
                    self.sufficient_moisture, self.atmospheric_instability))

    def to_dict(self) -> Dict[str, bool]:
        return {
            "sea_temp_favorable": self.sea_temp_favorable,
            "low_wind_shear": self.low_wind_shear,
            "sufficient_moisture": self.sufficient_moisture,
            "atmospheric_instability": self.atmospheric_instability,
        }


def _generate_id() -> str:
    return f"FRM-{uuid.uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class FormationCandidate:
    """A scored location where conditions favour cyclone genesis."""
    location: Coordinate
    formation_probability: float
    time_to_formation_hours: float
    expected_formation_timestamp: datetime
    expected_intensity_bucket: IntensityBucket
    environmental_factors: EnvironmentalFactors
    region: str
    created_at: datetime
    confidence: float = 0.5
    id: str = field(default_factory=_generate_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "location": self.location.to_dict(),
            "formation_probability": round(self.formation_probability, 4),
            "time_to_formation_hours": round(self.time_to_formation_hours, 1),
            "expected_formation_timestamp": self.expected_formation_timestamp.isoformat(),
            "expected_intensity_bucket": self.expected_intensity_bucket.value,
            "environmental_factors": self.environmental_factors.to_dict(),
            "region": self.region,
            "confidence": round(self.confidence, 3),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RegionalFormationForecast:
    """Ranked candidates and activity summary for one region and run."""
    region: RegionBounds
    candidates: List[FormationCandidate]
    activity_level: ActivityLevel
    average_probability: float
    max_probability: float
    confidence: float
    generated_at: datetime
    forecast_days: int
    path: str  # "model" | "statistical"
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
            "activity_level": self.activity_level.value,
            "average_probability": round(self.average_probability, 4),
            "max_probability": round(self.max_probability, 4),
            "confidence": round(self.confidence, 3),
            "generated_at": self.generated_at.isoformat(),
            "forecast_days": self.forecast_days,
            "path": self.path,
            "notes": list(self.notes),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Pure scoring functions
# ═══════════════════════════════════════════════════════════════════════════

def assess_environmental_factors(obs: EnvironmentalObservation) -> EnvironmentalFactors:
    obs.require(*FORMATION_FIELDS)
    return EnvironmentalFactors(
        sea_temp_favorable=obs.sea_temp >= SEA_TEMP_MIN,
        low_wind_shear=obs.wind_shear <= WIND_SHEAR_MAX,
        sufficient_moisture=obs.humidity >= HUMIDITY_MIN,
        atmospheric_instability=obs.vorticity >= VORTICITY_MIN,
    )


def base_formation_probability(obs: EnvironmentalObservation) -> float:
    """Unscaled statistical formation score (0–1)."""
    obs.require(*FORMATION_FIELDS)
    base = 0.0
    if obs.sea_temp >= SEA_TEMP_OPTIMAL:
        base += 0.35
    elif obs.sea_temp >= SEA_TEMP_MIN:
        base += 0.20

    if obs.wind_shear <= WIND_SHEAR_OPTIMAL:
        base += 0.25
    elif obs.wind_shear <= WIND_SHEAR_MAX:
        base += 0.10

    if obs.humidity >= HUMIDITY_OPTIMAL:
        base += 0.20
    elif obs.humidity >= HUMIDITY_MIN:
        base += 0.10

    if obs.vorticity >= VORTICITY_OPTIMAL:
        base += 0.20
    elif obs.vorticity >= VORTICITY_MIN:
        base += 0.10
    return round(base, 6)


def seasonal_factor(lat: float, when: datetime) -> float:
    return PEAK_SEASON_FACTOR if season_for(lat, when) is Season.PEAK else OFF_SEASON_FACTOR


def geographic_factor(
    lat: float,
    lng: float,
    zones: Sequence[ActivityZone] = HIGH_ACTIVITY_ZONES,
) -> float:
    for zone in zones:
        if zone.contains(lat, lng):
            return zone.factor
    return OUTSIDE_BASIN_FACTOR


def estimate_time_to_formation(probability: float, factors: EnvironmentalFactors) -> float:
    """Hours until formation; more favourable and more likely means sooner."""
    hours = BASE_FORMATION_HOURS
    if factors.sea_temp_favorable:
        hours *= 0.7
    if factors.low_wind_shear:
        hours *= 0.8
    if factors.sufficient_moisture:
        hours *= 0.8
    if factors.atmospheric_instability:
        hours *= 0.7
    hours *= (1.1 - probability)
    return max(hours, MIN_FORMATION_HOURS)


def estimate_intensity(obs: EnvironmentalObservation) -> IntensityBucket:
    score = 0
    if obs.sea_temp > 28.5:
        score += 2
    elif obs.sea_temp > 27.0:
        score += 1

    if obs.wind_shear < 5:
        score += 2
    elif obs.wind_shear < 10:
        score += 1

    if obs.humidity > 85:
        score += 1

    if score >= 5:
        return IntensityBucket.CATEGORY_2_PLUS
    if score >= 3:
        return IntensityBucket.CATEGORY_1
    if score >= 2:
        return IntensityBucket.TROPICAL_STORM
    return IntensityBucket.TROPICAL_DEPRESSION


def classify_activity(average_probability: float, count: int) -> ActivityLevel:
    score = average_probability * count
    if score >= 3:
        return ActivityLevel.VERY_HIGH
    if score >= 2:
        return ActivityLevel.HIGH
    if score >= 1:
        return ActivityLevel.MODERATE
    if score >= 0.5:
        return ActivityLevel.LOW
    return ActivityLevel.VERY_LOW


class EnvironmentalFavorabilityModel:
    """
    Favourability-weighted formation model.

    Satisfies the FormationModel seam: each favourable factor adds a fixed
    weight (SST 0.30, shear 0.25, moisture 0.20, instability 0.25), scaled
    by the seasonal factor.
    """

    name = "environmental-favorability"

    def predict(self, observation: EnvironmentalObservation, when: datetime) -> float:
        f = assess_environmental_factors(observation)
        base = (
            (0.30 if f.sea_temp_favorable else 0.0)
            + (0.25 if f.low_wind_shear else 0.0)
            + (0.20 if f.sufficient_moisture else 0.0)
            + (0.25 if f.atmospheric_instability else 0.0)
        )
        return min(base * seasonal_factor(observation.lat, when), 1.0)


# ═══════════════════════════════════════════════════════════════════════════
# Analyzer
# ═══════════════════════════════════════════════════════════════════════════

class FormationAnalyzer:
    """
    Regional formation forecasts over an environmental grid.

    Parameters
    ----------
    sampler : ObservationSampler, optional
        Real-sample source for grid calibration; None → climatology only.
    model : FormationModel, optional
        Primary model. Failures fall back to the statistical path.
    seed : int, optional
        Seed for climatological draws. Each run draws from a fresh
        RandomState keyed on the seed and the run's time bucket, so runs in
        the same bucket produce the same grid.
    bucket_minutes : int, optional
        Width of that time bucket; matches the alert dedup bucket.
    clock : callable, optional
        Returns "now" (aware UTC); injected for tests.
    zones : sequence of ActivityZone, optional
        High-activity areas for the geographic factor.
    """

    def __init__(
        self,
        sampler: Optional[ObservationSampler] = None,
        *,
        model: Optional[FormationModel] = None,
        seed: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        bucket_minutes: Optional[int] = None,
        resolution_deg: Optional[float] = None,
        n_samples: Optional[int] = None,
        zones: Sequence[ActivityZone] = HIGH_ACTIVITY_ZONES,
    ):
        self.sampler = sampler
        self.model = model
        self.seed = settings.RANDOM_SEED if seed is None else seed
        self.bucket_minutes = bucket_minutes or settings.ALERT_DEDUP_BUCKET_MINUTES
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolution_deg = resolution_deg
        self.n_samples = n_samples
        self.zones = tuple(zones)

    def run_rng(self, now: datetime) -> np.random.RandomState:
        """Fresh RandomState for the run at ``now``, keyed on (seed, time bucket)."""
        bucket = int(now.timestamp() // (self.bucket_minutes * 60))
        return np.random.RandomState([self.seed & 0xFFFFFFFF, bucket & 0xFFFFFFFF])

    # ── Single observation ──

    def _statistical_probability(self, obs: EnvironmentalObservation) -> Tuple[float, float]:
        base = base_formation_probability(obs)
        p = base * seasonal_factor(obs.lat, obs.timestamp) * geographic_factor(obs.lat, obs.lng, self.zones)
        return min(p, MAX_FORMATION_PROBABILITY), base

    def _model_probability(self, obs: EnvironmentalObservation) -> float:
        try:
            p = float(self.model.predict(obs, obs.timestamp))
        except ScoringError:
            raise
        except Exception as e:
            raise ScoringError(getattr(self.model, "name", "model"), str(e)) from e
        if not math.isfinite(p):
            raise ScoringError(getattr(self.model, "name", "model"), f"non-finite probability {p}")
        return clamp(p, 0.0, 1.0)

    def _build_candidate(
        self,
        obs: EnvironmentalObservation,
        probability: float,
        confidence: float,
        now: datetime,
    ) -> FormationCandidate:
        factors = assess_environmental_factors(obs)
        hours = estimate_time_to_formation(probability, factors)
        return FormationCandidate(
            location=Coordinate(obs.lat, obs.lng),
            formation_probability=round(probability, 6),
            time_to_formation_hours=round(hours, 3),
            expected_formation_timestamp=now + timedelta(hours=hours),
            expected_intensity_bucket=estimate_intensity(obs),
            environmental_factors=factors,
            region=basin_for(obs.lat, obs.lng),
            created_at=now,
            confidence=round(clamp(confidence, 0.0, 1.0), 4),
        )

    def analyze_observation(
        self,
        observation: EnvironmentalObservation,
        *,
        data_confidence: float = 1.0,
    ) -> FormationCandidate:
        """
        Score one observation into a candidate (no cutoff applied).

        Uses the model when configured, the statistical path otherwise or
        when the model fails. Requires sea_temp, wind_shear, humidity and
        vorticity.
        """
        now = self.clock()
        if self.model is not None:
            try:
                p = self._model_probability(observation)
                return self._build_candidate(observation, p, (0.8 * p + 0.2) * data_confidence, now)
            except ScoringError as e:
                logger.warning("Formation model failed, using statistical path: %s", e.message)
        p, base = self._statistical_probability(observation)
        return self._build_candidate(observation, p, (base * 0.7 + 0.3) * data_confidence, now)

    # ── Grid ──

    def _statistical_candidates(self, grid: EnvironmentalGrid, now: datetime) -> List[FormationCandidate]:
        out = []
        for cell in grid.cells:
            p, base = self._statistical_probability(cell.observation)
            if p > STATISTICAL_CUTOFF:
                out.append(self._build_candidate(
                    cell.observation, p, (base * 0.7 + 0.3) * cell.confidence, now))
        return out

    def _model_candidates(self, grid: EnvironmentalGrid, now: datetime) -> List[FormationCandidate]:
        out = []
        for cell in grid.cells:
            p = self._model_probability(cell.observation)
            if p > MODEL_CUTOFF:
                out.append(self._build_candidate(
                    cell.observation, p, (0.8 * p + 0.2) * cell.confidence, now))
        return out

    def analyze_grid(
        self,
        grid: EnvironmentalGrid,
        forecast_days: int = 7,
        now: Optional[datetime] = None,
    ) -> Tuple[List[FormationCandidate], str]:
        """
        Rank candidates over ``grid``.

        Returns the probability-descending, truncated candidate list and
        the path that produced it. Candidates expected beyond the forecast
        horizon are dropped.
        """
        now = now or self.clock()
        path, top_k = "statistical", STATISTICAL_TOP_K
        candidates: Optional[List[FormationCandidate]] = None

        if self.model is not None:
            try:
                candidates = self._model_candidates(grid, now)
                path, top_k = "model", MODEL_TOP_K
            except ScoringError as e:
                logger.warning(
                    "Formation model failed for %s, falling back to statistical path: %s",
                    grid.region.name, e.message, extra={"region": grid.region.name},
                )
        if candidates is None:
            candidates = self._statistical_candidates(grid, now)

        horizon = forecast_days * 24.0
        candidates = [c for c in candidates if c.time_to_formation_hours <= horizon]
        candidates.sort(key=lambda c: c.formation_probability, reverse=True)
        return candidates[:top_k], path

    async def predict_formation(
        self,
        region: RegionBounds,
        forecast_days: int = 7,
    ) -> RegionalFormationForecast:
        """
        Forecast cyclone formation over ``region`` for ``forecast_days``.

        Always returns a forecast; degraded inputs lower its confidence and
        are listed in ``notes``.
        """
        if forecast_days < 1:
            raise ValueError(f"forecast_days must be >= 1, got {forecast_days}")

        now = self.clock()
        grid = await build_environmental_grid(
            region,
            self.sampler,
            n_samples=self.n_samples,
            resolution_deg=self.resolution_deg,
            when=now,
            rng=self.run_rng(now),
        )
        candidates, path = self.analyze_grid(grid, forecast_days, now)

        notes: List[str] = []
        if grid.climatology_only:
            notes.append("No observations available; grid built from climatology")
        if self.model is not None and path == "statistical":
            notes.append("Formation model unavailable; statistical path used")

        probs = [c.formation_probability for c in candidates]
        avg = float(np.mean(probs)) if probs else 0.0
        confidence = (
            float(np.mean([c.confidence for c in candidates]))
            if candidates else grid.mean_confidence
        )
        forecast = RegionalFormationForecast(
            region=region,
            candidates=candidates,
            activity_level=classify_activity(avg, len(candidates)),
            average_probability=avg,
            max_probability=max(probs) if probs else 0.0,
            confidence=confidence,
            generated_at=now,
            forecast_days=forecast_days,
            path=path,
            notes=notes,
        )
        logger.info(
            "Formation forecast for %s: %d candidate(s), activity %s (%s path)",
            region.name, len(candidates), forecast.activity_level.value, path,
            extra={"region": region.name, "risk_score": forecast.max_probability},
        )
        return forecast
