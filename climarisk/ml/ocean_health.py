"""
ocean_health.py — Ocean and coral-reef health scoring.

Provides:
    • Water quality score (pH, temperature, oxygen, turbidity, salinity)
    • Pollution index (inverted: lower is healthier)
    • Biodiversity index
    • Reef health index
    • Composite ocean health score
    • NOAA-style reef stress index (SST, HotSpot, DHW)
    • Coral bleaching risk assessment

═══════════════════════════════════════════════════════════════════════════
COMPOSITE
═══════════════════════════════════════════════════════════════════════════

    overall = 0.25·water_quality + 0.20·(100 − pollution)
            + 0.20·biodiversity  + 0.35·reef_health

    Overall     Risk level
    ────────    ──────────
    ≥ 80        low
    ≥ 60        moderate
    ≥ 40        high
    < 40        severe

Higher overall = healthier (Polarity.HIGHER_IS_BETTER). The pollution
sub-index runs the other way and is inverted before weighting.

═══════════════════════════════════════════════════════════════════════════
BLEACHING RISK (NOAA Coral Reef Watch thresholds)
═══════════════════════════════════════════════════════════════════════════

    Level      Trigger (any)                          p     confidence
    ────────   ────────────────────────────────────   ───   ──────────
    severe     alert ≥ 4 or SST ≥ 31 or DHW ≥ 12      0.9   0.95
    high       alert ≥ 3 or SST ≥ 30.5 or DHW ≥ 8     0.7   0.85
    moderate   alert ≥ 2 or SST ≥ 30 or DHW ≥ 4       0.4   0.75
    low        otherwise                              0.1   0.80
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from climarisk.ingestion.observation import EnvironmentalObservation
from climarisk.ml.risk_score import (
    ContributingFactor,
    Polarity,
    RiskDomain,
    RiskLevel,
    RiskScore,
    clamp,
    explain,
    source_confidence,
)

logger = logging.getLogger(__name__)


W_WATER_QUALITY = 0.25
W_POLLUTION = 0.20
W_BIODIVERSITY = 0.20
W_REEF = 0.35

# Optional inputs: neutral defaults, each one used lowers confidence
DEFAULT_SALINITY_PSU = 35.0
DEFAULT_CORAL_COVERAGE_PCT = 30.0
DEFAULTED_INPUT_PENALTY = 0.05

OCEAN_REQUIRED_FIELDS = (
    "sea_temp", "ph", "dissolved_oxygen", "turbidity",
    "chlorophyll", "degree_heating_weeks",
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ═══════════════════════════════════════════════════════════════════════════
# Sub-scores
# ═══════════════════════════════════════════════════════════════════════════

def water_quality_score(
    ph: float,
    temperature: float,
    dissolved_oxygen: float,
    turbidity: float,
    salinity: float = DEFAULT_SALINITY_PSU,
) -> float:
    """Water quality 0–100 (higher is better)."""
    score = 100.0

    if ph < 7.6 or ph > 8.4:
        score -= 30
    elif ph < 7.8 or ph > 8.2:
        score -= 15
    elif 8.0 <= ph <= 8.1:
        score += 5

    if temperature < 24 or temperature > 31:
        score -= 25
    elif temperature < 25 or temperature > 30:
        score -= 10
    elif 26 <= temperature <= 29:
        score += 5

    if dissolved_oxygen < 4:
        score -= 30
    elif dissolved_oxygen < 5:
        score -= 20
    elif dissolved_oxygen < 6 or dissolved_oxygen > 9:
        score -= 10
    elif 6.5 <= dissolved_oxygen <= 7.5:
        score += 5

    if turbidity > 0.5:
        score -= 20
    elif turbidity > 0.3:
        score -= 10
    elif turbidity < 0.1:
        score += 5

    if salinity < 32 or salinity > 38:
        score -= 15
    elif salinity < 33 or salinity > 37:
        score -= 5

    return clamp(score, 0.0, 100.0)


def pollution_index(
    turbidity: float,
    chlorophyll: float,
    dissolved_oxygen: float,
    ph: float,
) -> int:
    """Pollution index 0–100 (lower is better)."""
    index = min(30.0, turbidity * 60)
    # Eutrophication
    if chlorophyll > 0.5:
        index += min(25.0, (chlorophyll - 0.5) * 50)
    if dissolved_oxygen < 6:
        index += (6 - dissolved_oxygen) * 5
    if ph < 8.0:
        index += (8.0 - ph) * 10
    return min(100, _round_half_up(index))


def biodiversity_index(
    chlorophyll: float,
    turbidity: float,
    coral_coverage: float,
    dissolved_oxygen: float,
) -> int:
    """Biodiversity index 0–100 (higher is better)."""
    index = 50.0
    if 0.2 <= chlorophyll <= 0.4:
        index += 15
    elif chlorophyll > 0.4:
        index += 10

    if turbidity < 0.2:
        index += 10
    elif turbidity > 0.4:
        index -= 10

    index += coral_coverage * 0.4
    if dissolved_oxygen >= 6.5:
        index += 5
    return int(clamp(_round_half_up(index), 0, 100))


def reef_health_index(
    sst: float,
    dhw: float,
    ph: float,
    dissolved_oxygen: float,
    coral_coverage: float,
) -> int:
    """Coral reef health index 0–100 (higher is better)."""
    index = 100.0

    if sst >= 31:
        index -= 40
    elif sst >= 30.5:
        index -= 30
    elif sst >= 30:
        index -= 20
    elif sst >= 29.5:
        index -= 10
    elif 26 <= sst <= 29:
        index += 5

    if dhw >= 12:
        index -= 30
    elif dhw >= 8:
        index -= 20
    elif dhw >= 4:
        index -= 10
    elif dhw >= 1:
        index -= 5

    if ph < 7.8:
        index -= 20
    elif ph < 8.0:
        index -= 10
    elif ph <= 8.2:
        index += 5

    if dissolved_oxygen < 5:
        index -= 15
    elif dissolved_oxygen < 6:
        index -= 8

    index += (coral_coverage - 30) * 0.3
    return int(clamp(_round_half_up(index), 0, 100))


def health_level(score: float) -> RiskLevel:
    """Risk level for a higher-is-better 0–100 composite."""
    if score >= 80:
        return RiskLevel.LOW
    if score >= 60:
        return RiskLevel.MODERATE
    if score >= 40:
        return RiskLevel.HIGH
    return RiskLevel.SEVERE


# ═══════════════════════════════════════════════════════════════════════════
# Composite score
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OceanSubScores:
    water_quality: float
    pollution: int
    biodiversity: int
    reef_health: int

    @property
    def overall(self) -> float:
        return round(
            W_WATER_QUALITY * self.water_quality
            + W_POLLUTION * (100 - self.pollution)
            + W_BIODIVERSITY * self.biodiversity
            + W_REEF * self.reef_health,
            2,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "water_quality": self.water_quality,
            "pollution_index": self.pollution,
            "biodiversity_index": self.biodiversity,
            "reef_health_index": self.reef_health,
            "overall": self.overall,
        }


def ocean_sub_scores(observation: EnvironmentalObservation) -> Tuple[OceanSubScores, List[str]]:
    """
    Compute the four sub-scores.

    Returns the sub-scores and the names of optional inputs that fell back
    to neutral defaults.
    """
    o = observation
    o.require(*OCEAN_REQUIRED_FIELDS)
    defaulted: List[str] = []
    salinity = o.salinity
    if salinity is None:
        salinity = DEFAULT_SALINITY_PSU
        defaulted.append("salinity")
    coral = o.coral_coverage
    if coral is None:
        coral = DEFAULT_CORAL_COVERAGE_PCT
        defaulted.append("coral_coverage")

    subs = OceanSubScores(
        water_quality=water_quality_score(
            o.ph, o.sea_temp, o.dissolved_oxygen, o.turbidity, salinity),
        pollution=pollution_index(
            o.turbidity, o.chlorophyll, o.dissolved_oxygen, o.ph),
        biodiversity=biodiversity_index(
            o.chlorophyll, o.turbidity, coral, o.dissolved_oxygen),
        reef_health=reef_health_index(
            o.sea_temp, o.degree_heating_weeks, o.ph, o.dissolved_oxygen, coral),
    )
    return subs, defaulted


def score_ocean_health(observation: EnvironmentalObservation) -> RiskScore:
    """
    Composite ocean health score (0–100, higher is healthier).

    Requires sea_temp, ph, dissolved_oxygen, turbidity, chlorophyll and
    degree_heating_weeks. Salinity and coral coverage are optional.
    """
    subs, defaulted = ocean_sub_scores(observation)
    overall = clamp(subs.overall, 0.0, 100.0)
    level = health_level(overall)

    factors = [
        ContributingFactor(
            "water_quality", W_WATER_QUALITY * subs.water_quality,
            f"water quality {subs.water_quality:.0f}/100"),
        ContributingFactor(
            "pollution", W_POLLUTION * (100 - subs.pollution),
            f"pollution index {subs.pollution}/100 (lower is cleaner)"),
        ContributingFactor(
            "biodiversity", W_BIODIVERSITY * subs.biodiversity,
            f"biodiversity {subs.biodiversity}/100"),
        ContributingFactor(
            "reef_health", W_REEF * subs.reef_health,
            f"reef health {subs.reef_health}/100"),
    ]
    if observation.ph < 7.8:
        factors.append(ContributingFactor(
            "acidification", 0.0, f"acidified water (pH {observation.ph:.2f})"))

    confidence = source_confidence(observation.source) - DEFAULTED_INPUT_PENALTY * len(defaulted)
    tail = f"overall {overall:.1f}/100"
    if defaulted:
        tail += f"; defaults used for {', '.join(defaulted)}"

    return RiskScore(
        domain=RiskDomain.OCEAN_HEALTH,
        probability_or_score=overall,
        risk_level=level,
        contributing_factors=tuple(factors),
        confidence=clamp(confidence, 0.0, 1.0),
        explanation=f"Ocean health {level.value} risk: {tail}",
        polarity=Polarity.HIGHER_IS_BETTER,
        scale=100.0,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Reef stress (NOAA HotSpot / DHW)
# ═══════════════════════════════════════════════════════════════════════════

def reef_stress_points(sst: float, hotspot: float, dhw: float) -> Tuple[float, List[ContributingFactor]]:
    score = 100.0
    factors: List[ContributingFactor] = []

    for limit, penalty, label in ((31, 40, "extreme temperature"),
                                  (30, 30, "very high temperature"),
                                  (29, 15, "elevated temperature")):
        if sst > limit:
            score -= penalty
            factors.append(ContributingFactor("sea_temp", -penalty, f"{label} ({sst:.1f} °C)"))
            break
    else:
        if sst < 24:
            score -= 20
            factors.append(ContributingFactor("sea_temp", -20, f"low temperature ({sst:.1f} °C)"))

    for limit, penalty, label in ((2, 30, "severe hotspot"),
                                  (1, 20, "high hotspot"),
                                  (0.5, 10, "moderate hotspot")):
        if hotspot > limit:
            score -= penalty
            factors.append(ContributingFactor("hotspot", -penalty, f"{label} ({hotspot:.1f} °C)"))
            break

    for limit, penalty, label in ((12, 30, "extreme heat stress"),
                                  (8, 25, "severe heat stress"),
                                  (4, 15, "moderate heat stress"),
                                  (0, 5, "mild heat stress")):
        if dhw > limit:
            score -= penalty
            factors.append(ContributingFactor(
                "degree_heating_weeks", -penalty, f"{label} ({dhw:.1f} DHW)"))
            break

    return clamp(score, 0.0, 100.0), factors


def score_reef_stress(observation: EnvironmentalObservation) -> RiskScore:
    """
    Reef stress index (0–100, higher is healthier) from SST, HotSpot, DHW.

    Level: < 40 severe, < 60 high, < 80 moderate, else low.
    """
    observation.require("sea_temp", "hotspot", "degree_heating_weeks")
    score, factors = reef_stress_points(
        observation.sea_temp, observation.hotspot, observation.degree_heating_weeks)

    if score < 40:
        level = RiskLevel.SEVERE
    elif score < 60:
        level = RiskLevel.HIGH
    elif score < 80:
        level = RiskLevel.MODERATE
    else:
        level = RiskLevel.LOW

    return RiskScore(
        domain=RiskDomain.REEF,
        probability_or_score=score,
        risk_level=level,
        contributing_factors=tuple(factors),
        confidence=source_confidence(observation.source),
        explanation=explain("Reef stress", level, factors, f"index {score:.0f}/100"),
        polarity=Polarity.HIGHER_IS_BETTER,
        scale=100.0,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Bleaching
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BleachingAssessment:
    risk_level: RiskLevel
    probability: float
    days_to_bleaching: Optional[int]
    confidence: float
    recommended_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "probability": self.probability,
            "days_to_bleaching": self.days_to_bleaching,
            "confidence": self.confidence,
            "recommended_actions": list(self.recommended_actions),
        }


def assess_bleaching_risk(
    sst: float,
    dhw: float,
    alert_level: float = 0.0,
    ph: Optional[float] = None,
) -> BleachingAssessment:
    """
    Coral bleaching risk from NOAA alert level, SST and DHW.

    ``days_to_bleaching`` estimates when DHW reaches the next tier's
    threshold at one DHW per week; None when risk is low.
    """
    from climarisk.ml.recommendations import bleaching_recommendations

    if alert_level >= 4 or sst >= 31 or dhw >= 12:
        level, p, conf = RiskLevel.SEVERE, 0.9, 0.95
        days = 0 if dhw >= 12 else max(1, _round_half_up((12 - dhw) * 7))
    elif alert_level >= 3 or sst >= 30.5 or dhw >= 8:
        level, p, conf = RiskLevel.HIGH, 0.7, 0.85
        days = 7 if dhw >= 8 else max(7, _round_half_up((8 - dhw) * 7))
    elif alert_level >= 2 or sst >= 30 or dhw >= 4:
        level, p, conf = RiskLevel.MODERATE, 0.4, 0.75
        days = 14 if dhw >= 4 else max(14, _round_half_up((4 - dhw) * 7))
    else:
        level, p, conf, days = RiskLevel.LOW, 0.1, 0.8, None

    return BleachingAssessment(
        risk_level=level,
        probability=p,
        days_to_bleaching=days,
        confidence=conf,
        recommended_actions=bleaching_recommendations(p, ph),
    )
