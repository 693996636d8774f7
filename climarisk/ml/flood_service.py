"""
flood_service.py — Flood risk scoring and flood depth estimation.

Provides:
    • Additive point scoring from 24h rainfall, 72h accumulation, soil
      saturation and (optionally) river level
    • Rainfall-excess flood depth estimate with elevation damping

═══════════════════════════════════════════════════════════════════════════
POINT BANDS (strict ">" comparisons)
═══════════════════════════════════════════════════════════════════════════

    24h rainfall (mm)     72h rainfall (mm)     Soil saturation (0–1)
    ─────────────────     ─────────────────     ─────────────────────
    > 100 → 50            > 200 → 30            > 0.8 → 20
    > 50  → 35            > 100 → 20            > 0.6 → 10
    > 25  → 20            > 50  → 10
    > 10  → 10

    Exactly 100 mm in 24h scores 35 (probability 0.40, moderate);
    100.01 mm scores 50.

River level is optional. When a bankfull level is known, a river above
bankfull adds 15 points and one above 80 % of bankfull adds 5. The total
is capped at 100 and mapped with the same curve as cyclone scoring.

═══════════════════════════════════════════════════════════════════════════
FLOOD DEPTH
═══════════════════════════════════════════════════════════════════════════

    intensity  = rainfall / hours × 24                 (mm/day)
    excess     = intensity − drainage_capacity
    depth (m)  = excess × max(0.1, 1 − elevation/100) × 0.1    if excess > 0

    Depth (m)   Level
    ─────────   ────────
    > 2         critical
    > 1         high
    > 0.3       moderate
    else        low
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from climarisk.ingestion.observation import EnvironmentalObservation
from climarisk.ml.risk_score import (
    ContributingFactor,
    RiskDomain,
    RiskScore,
    explain,
    probability_from_points,
    source_confidence,
)

logger = logging.getLogger(__name__)


RAIN_24H_BANDS_MM: Tuple[Tuple[float, float], ...] = (
    (100.0, 50.0), (50.0, 35.0), (25.0, 20.0), (10.0, 10.0),
)
RAIN_72H_BANDS_MM: Tuple[Tuple[float, float], ...] = (
    (200.0, 30.0), (100.0, 20.0), (50.0, 10.0),
)
SOIL_BANDS: Tuple[Tuple[float, float], ...] = (
    (0.8, 20.0), (0.6, 10.0),
)

RIVER_BANKFULL_POINTS = 15.0
RIVER_NEAR_BANKFULL_POINTS = 5.0
RIVER_NEAR_BANKFULL_FRACTION = 0.8

# Missing optional soil input lowers confidence
SOIL_MISSING_CONFIDENCE_PENALTY = 0.1

DEFAULT_DRAINAGE_CAPACITY_MM_DAY = 25.0


def _band_points(value: float, bands: Tuple[Tuple[float, float], ...]) -> float:
    for limit, pts in bands:
        if value > limit:
            return pts
    return 0.0


def flood_points(
    precip_24h: float,
    precip_72h: float,
    soil_saturation: Optional[float] = None,
    river_level: Optional[float] = None,
    bankfull_level: Optional[float] = None,
) -> Tuple[float, List[ContributingFactor]]:
    """Additive flood points (0–100) and the factors behind them."""
    factors: List[ContributingFactor] = []

    p24 = _band_points(precip_24h, RAIN_24H_BANDS_MM)
    if p24:
        factors.append(ContributingFactor(
            "rainfall_24h", p24, f"heavy 24h rainfall ({precip_24h:.1f} mm)"))

    p72 = _band_points(precip_72h, RAIN_72H_BANDS_MM)
    if p72:
        factors.append(ContributingFactor(
            "rainfall_72h", p72, f"high 72h accumulation ({precip_72h:.1f} mm)"))

    soil = 0.0
    if soil_saturation is not None:
        soil = _band_points(soil_saturation, SOIL_BANDS)
        if soil:
            factors.append(ContributingFactor(
                "soil_saturation", soil,
                f"saturated soil ({soil_saturation:.0%})"))

    river = 0.0
    if river_level is not None and bankfull_level:
        if river_level > bankfull_level:
            river = RIVER_BANKFULL_POINTS
            factors.append(ContributingFactor(
                "river_level", river,
                f"river above bankfull ({river_level:.2f} m > {bankfull_level:.2f} m)"))
        elif river_level > RIVER_NEAR_BANKFULL_FRACTION * bankfull_level:
            river = RIVER_NEAR_BANKFULL_POINTS
            factors.append(ContributingFactor(
                "river_level", river,
                f"river near bankfull ({river_level:.2f} m)"))

    return min(100.0, p24 + p72 + soil + river), factors


def score_flood(
    observation: EnvironmentalObservation,
    *,
    bankfull_level: Optional[float] = None,
) -> RiskScore:
    """
    Score flood risk for one observation.

    Requires ``rainfall_24h`` and ``rainfall_72h``; soil saturation and
    river level contribute when present.
    """
    observation.require("rainfall_24h", "rainfall_72h")
    points, factors = flood_points(
        observation.rainfall_24h,
        observation.rainfall_72h,
        observation.soil_saturation,
        observation.river_level,
        bankfull_level,
    )
    probability, level = probability_from_points(points)

    confidence = source_confidence(observation.source)
    tail = f"{points:.0f}/100 points"
    if observation.soil_saturation is None:
        confidence -= SOIL_MISSING_CONFIDENCE_PENALTY
        tail += "; soil saturation unavailable"

    return RiskScore(
        domain=RiskDomain.FLOOD,
        probability_or_score=probability,
        risk_level=level,
        contributing_factors=tuple(factors),
        confidence=max(0.0, confidence),
        explanation=explain("Flood", level, factors, tail),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Depth estimate
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FloodDepthEstimate:
    depth_m: float
    level: str  # low | moderate | high | critical
    rainfall_intensity_mm_day: float
    excess_mm_day: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth_m": round(self.depth_m, 3),
            "level": self.level,
            "rainfall_intensity_mm_day": round(self.rainfall_intensity_mm_day, 2),
            "excess_mm_day": round(self.excess_mm_day, 2),
        }


def _depth_level(depth_m: float) -> str:
    if depth_m > 2.0:
        return "critical"
    if depth_m > 1.0:
        return "high"
    if depth_m > 0.3:
        return "moderate"
    return "low"


def estimate_flood_depth(
    rainfall_mm: float,
    hours: float = 24.0,
    elevation_m: float = 0.0,
    drainage_capacity_mm_day: float = DEFAULT_DRAINAGE_CAPACITY_MM_DAY,
    *,
    river_level: Optional[float] = None,
    bankfull_level: Optional[float] = None,
) -> FloodDepthEstimate:
    """
    Estimate standing-water depth from rainfall excess over drainage.

    Parameters
    ----------
    rainfall_mm : float
        Rain accumulated over ``hours``.
    hours : float
        Accumulation window (> 0).
    elevation_m : float
        Ground elevation; higher ground drains better.
    drainage_capacity_mm_day : float
        What local drainage removes per day.
    river_level, bankfull_level : float, optional
        River overtopping adds its excess (m) to the depth.

    Raises
    ------
    ValueError
        If ``hours`` is not positive or rainfall is negative.
    """
    if hours <= 0:
        raise ValueError(f"hours must be positive, got {hours}")
    if rainfall_mm < 0:
        raise ValueError(f"rainfall_mm must be >= 0, got {rainfall_mm}")

    intensity = rainfall_mm / hours * 24.0
    excess = intensity - drainage_capacity_mm_day
    depth = 0.0
    if excess > 0:
        depth = excess * max(0.1, 1.0 - elevation_m / 100.0) * 0.1
    if river_level is not None and bankfull_level is not None and river_level > bankfull_level:
        depth += river_level - bankfull_level

    return FloodDepthEstimate(
        depth_m=depth,
        level=_depth_level(depth),
        rainfall_intensity_mm_day=intensity,
        excess_mm_day=max(0.0, excess),
    )
