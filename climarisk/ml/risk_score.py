"""
risk_score.py — Domain-tagged risk score shared by every scoring function.

Polarity
========
Scores do not all point the same way:

    Domain        Value                Scale   Polarity
    ───────────   ──────────────────   ─────   ─────────────────
    cyclone       probability          0–1     higher is worse
    flood         probability          0–1     higher is worse
    oceanHealth   composite index      0–100   higher is better
    reef          reef stress index    0–100   higher is better

``risk_level`` is always "higher is worse" regardless of polarity, so alerting
code compares levels and never raw values.

Additive point mapping (cyclone and flood)
==========================================
Points out of 100 map to probability by four linear segments:

    Points      Probability         Level
    ────────    ────────────────    ────────
    0–30        0.00 → 0.35         low
    30–60       0.35 → 0.65         moderate
    60–80       0.65 → 0.85         high
    80–100      0.85 → 1.00         severe
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Tuple

from climarisk.core.errors import ScoringError


class RiskDomain(str, Enum):
    CYCLONE = "cyclone"
    FLOOD = "flood"
    OCEAN_HEALTH = "oceanHealth"
    REEF = "reef"


class RiskLevel(str, Enum):
    """Ordered risk levels; ``rank`` enables comparison."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MODERATE: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.SEVERE: 3,
}


class Polarity(str, Enum):
    HIGHER_IS_WORSE = "higher_is_worse"
    HIGHER_IS_BETTER = "higher_is_better"


@dataclass(frozen=True)
class ContributingFactor:
    """One term of a score: name, signed contribution, explanation."""
    name: str
    weight_contribution: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "weight_contribution": round(self.weight_contribution, 4),
            "description": self.description,
        }


@dataclass(frozen=True)
class RiskScore:
    """
    Immutable result of scoring one observation for one domain.

    Raises ScoringError on construction when the value or confidence is
    NaN or outside its range.
    """
    domain: RiskDomain
    probability_or_score: float
    risk_level: RiskLevel
    contributing_factors: Tuple[ContributingFactor, ...] = field(default_factory=tuple)
    confidence: float = 1.0
    explanation: str = ""
    polarity: Polarity = Polarity.HIGHER_IS_WORSE
    scale: float = 1.0

    def __post_init__(self) -> None:
        value = self.probability_or_score
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ScoringError(self.domain.value, f"non-finite score {value!r}")
        if not (0.0 <= value <= self.scale):
            raise ScoringError(
                self.domain.value, f"score {value} outside [0, {self.scale}]"
            )
        if not math.isfinite(self.confidence) or not (0.0 <= self.confidence <= 1.0):
            raise ScoringError(
                self.domain.value, f"confidence {self.confidence} outside [0, 1]"
            )
        if not isinstance(self.contributing_factors, tuple):
            object.__setattr__(
                self, "contributing_factors", tuple(self.contributing_factors)
            )

    @property
    def normalized(self) -> float:
        """Value on a 0–1 scale, keeping the domain's polarity."""
        return self.probability_or_score / self.scale

    @property
    def is_elevated(self) -> bool:
        return self.risk_level.rank >= RiskLevel.HIGH.rank

    def factor(self, name: str) -> ContributingFactor:
        for f in self.contributing_factors:
            if f.name == name:
                return f
        raise KeyError(name)

    def has_factor(self, name: str) -> bool:
        return any(f.name == name for f in self.contributing_factors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain.value,
            "probability_or_score": round(self.probability_or_score, 4),
            "risk_level": self.risk_level.value,
            "contributing_factors": [f.to_dict() for f in self.contributing_factors],
            "confidence": round(self.confidence, 3),
            "explanation": self.explanation,
            "polarity": self.polarity.value,
            "scale": self.scale,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Shared helpers
# ═══════════════════════════════════════════════════════════════════════════

def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def probability_from_points(points: float) -> Tuple[float, RiskLevel]:
    """
    Map an additive 0–100 point score to (probability, level).

    Examples
    --------
    >>> probability_from_points(100)
    (1.0, <RiskLevel.SEVERE: 'severe'>)
    >>> probability_from_points(30)
    (0.35, <RiskLevel.MODERATE: 'moderate'>)
    """
    s = clamp(points, 0.0, 100.0)
    if s >= 80:
        p, level = 0.85 + (s - 80) / 20 * 0.15, RiskLevel.SEVERE
    elif s >= 60:
        p, level = 0.65 + (s - 60) / 20 * 0.20, RiskLevel.HIGH
    elif s >= 30:
        p, level = 0.35 + (s - 30) / 30 * 0.30, RiskLevel.MODERATE
    else:
        p, level = s / 30 * 0.35, RiskLevel.LOW
    return round(clamp(p, 0.0, 1.0), 6), level


def source_confidence(source: str) -> float:
    """Baseline confidence for an observation's provenance."""
    return _SOURCE_CONFIDENCE.get(source, 0.85)


_SOURCE_CONFIDENCE = {
    "observed": 0.9,
    "open-meteo": 0.85,
    "calibrated": 0.7,
    "last-known": 0.6,
    "climatology": 0.4,
}


def explain(label: str, level: RiskLevel, factors: Iterable[ContributingFactor], tail: str = "") -> str:
    names = [f.description for f in factors if f.weight_contribution]
    body = "; ".join(names) if names else "no significant stress factors"
    text = f"{label} risk {level.value}: {body}"
    return f"{text}. {tail}" if tail else text
