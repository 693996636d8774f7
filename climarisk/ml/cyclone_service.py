"""
cyclone_service.py — Cyclone risk scoring from pressure and wind.

Provides:
    • Additive point scoring from minimum pressure and maximum wind
    • Point → probability / risk level mapping (shared with flood)
    • Intensity buckets for formation forecasts

═══════════════════════════════════════════════════════════════════════════
POINT BANDS
═══════════════════════════════════════════════════════════════════════════

    Minimum pressure (hPa)          Maximum wind (km/h)
    ──────────────────────          ───────────────────
    < 980   → 50 points             > 120 → 50 points
    < 990   → 35                    > 90  → 35
    < 1000  → 20                    > 60  → 20
    < 1010  → 10                    > 40  → 10

Both comparisons are strict: 980 hPa scores 35, 120 km/h scores 35.
Total (0–100) maps to probability via ``probability_from_points``.

═══════════════════════════════════════════════════════════════════════════
INTENSITY BUCKETS (sustained wind, knots)
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┬──────────────┐
    │ Bucket              │ Wind (kt)    │
    ├─────────────────────┼──────────────┤
    │ tropical-depression │ < 34         │
    │ tropical-storm      │ 34–63        │
    │ category-1          │ 64–82        │
    │ category-2+         │ ≥ 83         │
    └─────────────────────┴──────────────┘
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Tuple

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


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

PRESSURE_BANDS_HPA: Tuple[Tuple[float, float, str], ...] = (
    (980.0, 50.0, "extremely low pressure"),
    (990.0, 35.0, "very low pressure"),
    (1000.0, 20.0, "low pressure"),
    (1010.0, 10.0, "slightly low pressure"),
)

WIND_BANDS_KMH: Tuple[Tuple[float, float, str], ...] = (
    (120.0, 50.0, "hurricane-force winds"),
    (90.0, 35.0, "storm-force winds"),
    (60.0, 20.0, "strong winds"),
    (40.0, 10.0, "moderate winds"),
)

KMH_PER_KT = 1.852


class IntensityBucket(str, Enum):
    """Expected storm intensity, ordered weakest to strongest."""
    TROPICAL_DEPRESSION = "tropical-depression"
    TROPICAL_STORM = "tropical-storm"
    CATEGORY_1 = "category-1"
    CATEGORY_2_PLUS = "category-2+"

    @property
    def rank(self) -> int:
        return list(IntensityBucket).index(self)


# ═══════════════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════════════

def cyclone_points(min_pressure_hpa: float, max_wind_kmh: float) -> Tuple[float, List[ContributingFactor]]:
    """
    Additive cyclone points (0–100) and the factors that produced them.

    Parameters
    ----------
    min_pressure_hpa : float
        Minimum sea-level pressure.
    max_wind_kmh : float
        Maximum sustained wind.
    """
    factors: List[ContributingFactor] = []
    points = 0.0

    for limit, pts, label in PRESSURE_BANDS_HPA:
        if min_pressure_hpa < limit:
            points += pts
            factors.append(ContributingFactor(
                "pressure", pts, f"{label} ({min_pressure_hpa:.0f} hPa)"))
            break

    for limit, pts, label in WIND_BANDS_KMH:
        if max_wind_kmh > limit:
            points += pts
            factors.append(ContributingFactor(
                "wind", pts, f"{label} ({max_wind_kmh:.0f} km/h)"))
            break

    return min(points, 100.0), factors


def score_cyclone(observation: EnvironmentalObservation) -> RiskScore:
    """
    Score cyclone risk for one observation.

    Requires ``pressure`` and ``wind_speed``; raises ObservationError when
    either is absent.

    Examples
    --------
    An observation with pressure 975 hPa and wind 130 km/h scores 100
    points → probability 1.0, level severe.
    """
    observation.require("pressure", "wind_speed")
    points, factors = cyclone_points(observation.pressure, observation.wind_speed)
    probability, level = probability_from_points(points)

    logger.debug(
        "Cyclone score %.0f pts → p=%.3f (%s)", points, probability, level.value,
        extra={"lat": observation.lat, "lng": observation.lng, "risk_score": probability},
    )

    return RiskScore(
        domain=RiskDomain.CYCLONE,
        probability_or_score=probability,
        risk_level=level,
        contributing_factors=tuple(factors),
        confidence=source_confidence(observation.source),
        explanation=explain("Cyclone", level, factors, f"{points:.0f}/100 points"),
    )


def classify_intensity(wind_kt: float) -> IntensityBucket:
    """
    Bucket a sustained wind speed (knots).

    >>> classify_intensity(50)
    <IntensityBucket.TROPICAL_STORM: 'tropical-storm'>
    """
    if wind_kt >= 83:
        return IntensityBucket.CATEGORY_2_PLUS
    if wind_kt >= 64:
        return IntensityBucket.CATEGORY_1
    if wind_kt >= 34:
        return IntensityBucket.TROPICAL_STORM
    return IntensityBucket.TROPICAL_DEPRESSION


def kmh_to_kt(kmh: float) -> float:
    return kmh / KMH_PER_KT
