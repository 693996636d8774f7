"""
strategy.py — Pluggable scoring seams.

Two seams let a trained model replace the fixed-weight heuristics without
touching the alert pipeline:

    ScoringStrategy.predict(observation) -> RiskScore
    FormationModel.predict(observation, when) -> formation probability (0–1)

The heuristic strategies below are the defaults and simply delegate to the
pure scoring functions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Protocol

from climarisk.ingestion.observation import EnvironmentalObservation
from climarisk.ml.cyclone_service import score_cyclone
from climarisk.ml.flood_service import score_flood
from climarisk.ml.ocean_health import score_ocean_health, score_reef_stress
from climarisk.ml.risk_score import RiskDomain, RiskScore


class ScoringStrategy(Protocol):
    """Observation → RiskScore for one domain."""

    domain: RiskDomain

    def predict(self, observation: EnvironmentalObservation) -> RiskScore:
        ...


class FormationModel(Protocol):
    """Learned cyclone-formation model."""

    name: str

    def predict(self, observation: EnvironmentalObservation, when: datetime) -> float:
        ...


class HeuristicCycloneStrategy:
    domain = RiskDomain.CYCLONE

    def predict(self, observation: EnvironmentalObservation) -> RiskScore:
        return score_cyclone(observation)


class HeuristicFloodStrategy:
    domain = RiskDomain.FLOOD

    def __init__(self, bankfull_level: Optional[float] = None):
        self.bankfull_level = bankfull_level

    def predict(self, observation: EnvironmentalObservation) -> RiskScore:
        return score_flood(observation, bankfull_level=self.bankfull_level)


class HeuristicOceanHealthStrategy:
    domain = RiskDomain.OCEAN_HEALTH

    def predict(self, observation: EnvironmentalObservation) -> RiskScore:
        return score_ocean_health(observation)


class HeuristicReefStressStrategy:
    domain = RiskDomain.REEF

    def predict(self, observation: EnvironmentalObservation) -> RiskScore:
        return score_reef_stress(observation)


def default_strategies() -> Dict[RiskDomain, ScoringStrategy]:
    return {
        RiskDomain.CYCLONE: HeuristicCycloneStrategy(),
        RiskDomain.FLOOD: HeuristicFloodStrategy(),
        RiskDomain.OCEAN_HEALTH: HeuristicOceanHealthStrategy(),
        RiskDomain.REEF: HeuristicReefStressStrategy(),
    }
