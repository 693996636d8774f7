"""
recommendations.py — Ordered, human-readable action lists.

Pure functions: the same score or candidate always yields the same list.
Tier actions come first, then factor-specific actions (e.g. acidification
is always called out when pH < 7.8, whatever the overall tier).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from climarisk.ml.formation import FormationCandidate
from climarisk.ml.risk_score import RiskDomain, RiskLevel, RiskScore

ACIDIFICATION_PH = 7.8
ACIDIFICATION_ACTION = "Address ocean acidification through local CO2 reduction"


CYCLONE_ACTIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.SEVERE: [
        "Follow evacuation orders for coastal and low-lying areas immediately",
        "Move to a designated cyclone shelter or reinforced building",
        "Suspend all marine and fishing activity",
    ],
    RiskLevel.HIGH: [
        "Prepare emergency kits and review evacuation routes",
        "Secure loose objects, shutters and roofing",
        "Monitor official cyclone bulletins every 3 hours",
    ],
    RiskLevel.MODERATE: [
        "Monitor official weather updates",
        "Check emergency supplies and communication plans",
    ],
    RiskLevel.LOW: [
        "No action required; continue routine monitoring",
    ],
}

FLOOD_ACTIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.SEVERE: [
        "Evacuate flood-prone and low-lying areas now",
        "Avoid walking or driving through flood water",
        "Switch off electricity at the mains if water is entering buildings",
    ],
    RiskLevel.HIGH: [
        "Move valuables and vehicles to higher ground",
        "Clear drains and gutters around property",
        "Prepare to evacuate if water levels keep rising",
    ],
    RiskLevel.MODERATE: [
        "Monitor rainfall and river level updates",
        "Avoid low-lying roads during heavy rain",
    ],
    RiskLevel.LOW: [
        "No action required; continue routine monitoring",
    ],
}

OCEAN_HEALTH_ACTIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.SEVERE: [
        "Restrict reef access and extractive activities in affected areas",
        "Investigate pollution sources and enforce discharge controls",
        "Increase water quality sampling to daily",
    ],
    RiskLevel.HIGH: [
        "Reduce local stressors such as runoff, fishing pressure and anchoring",
        "Increase water quality monitoring frequency",
    ],
    RiskLevel.MODERATE: [
        "Maintain regular water quality monitoring",
        "Review land-based runoff controls",
    ],
    RiskLevel.LOW: [
        "Continue regular monitoring",
        "Maintain good water quality standards",
    ],
}

REEF_ACTIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.SEVERE: [
        "Immediate monitoring and protective measures required",
        "Consider temporary restrictions on reef activities",
        "Increase water circulation if possible (artificial upwelling)",
        "Monitor water quality parameters daily",
    ],
    RiskLevel.HIGH: [
        "Immediate monitoring and protective measures required",
        "Consider temporary restrictions on reef activities",
        "Monitor water quality parameters daily",
    ],
    RiskLevel.MODERATE: [
        "Enhanced monitoring recommended",
        "Track SST trends and DHW accumulation",
        "Prepare contingency plans for reef protection",
    ],
    RiskLevel.LOW: [
        "Continue regular monitoring",
        "Maintain baseline data collection",
    ],
}

_TIER_ACTIONS = {
    RiskDomain.CYCLONE: CYCLONE_ACTIONS,
    RiskDomain.FLOOD: FLOOD_ACTIONS,
    RiskDomain.OCEAN_HEALTH: OCEAN_HEALTH_ACTIONS,
    RiskDomain.REEF: REEF_ACTIONS,
}

# Factor name → action appended when that factor contributed
_FACTOR_ACTIONS = {
    RiskDomain.CYCLONE: {
        "pressure": "Prepare for storm surge along exposed coastlines",
        "wind": "Reinforce or vacate structures vulnerable to high winds",
    },
    RiskDomain.FLOOD: {
        "soil_saturation": "Expect rapid runoff: saturated ground cannot absorb more rain",
        "river_level": "Keep away from river banks and bridges",
    },
    RiskDomain.REEF: {
        "degree_heating_weeks": "Track DHW accumulation weekly",
    },
}


def _dedupe(actions: List[str]) -> List[str]:
    seen = set()
    out = []
    for a in actions:
        if a not in seen:
            seen.add(a)
            out.append(a)
    return out


def score_recommendations(score: RiskScore) -> List[str]:
    """Actions for a RiskScore: tier list, then factor-specific actions."""
    actions = list(_TIER_ACTIONS[score.domain][score.risk_level])
    if score.risk_level is not RiskLevel.LOW:
        for name, action in _FACTOR_ACTIONS.get(score.domain, {}).items():
            if score.has_factor(name) and score.factor(name).weight_contribution:
                actions.append(action)
    if score.has_factor("acidification"):
        actions.append(ACIDIFICATION_ACTION)
    return _dedupe(actions)


def formation_recommendations(candidate: FormationCandidate) -> List[str]:
    """Actions for a formation candidate."""
    actions: List[str] = []
    if candidate.formation_probability > 0.7:
        actions.append("Issue cyclone formation warning")
        actions.append("Activate enhanced monitoring")
    if candidate.time_to_formation_hours < 48:
        actions.append("Alert maritime traffic")
        actions.append("Prepare coastal emergency services")
    factors = candidate.environmental_factors
    if factors.sea_temp_favorable and factors.low_wind_shear:
        actions.append("Monitor for rapid intensification potential")
    actions.append("Continue tracking environmental conditions")
    actions.append("Focus satellite resources on formation zone")
    return actions


def bleaching_recommendations(probability: float, ph: Optional[float] = None) -> List[str]:
    """Actions by bleaching probability tier, plus acidification when pH < 7.8."""
    if probability > 0.8:
        actions = [
            "URGENT: Implement emergency protection measures",
            "Consider temporary fishing restrictions in affected areas",
            "Deploy shading or cooling interventions if feasible",
            "Increase monitoring frequency to daily",
        ]
    elif probability > 0.6:
        actions = [
            "HIGH RISK: Reduce local stressors (fishing, pollution)",
            "Increase shading or cooling measures",
            "Monitor reef health daily",
            "Prepare emergency response protocols",
        ]
    elif probability > 0.3:
        actions = [
            "Monitor temperature trends closely",
            "Reduce non-climate stressors",
            "Maintain regular reef health assessments",
        ]
    else:
        actions = [
            "Continue regular monitoring",
            "Maintain good water quality standards",
        ]
    if ph is not None and ph < ACIDIFICATION_PH:
        actions.append(ACIDIFICATION_ACTION)
    return actions


def generate_recommendations(item: Union[RiskScore, FormationCandidate]) -> List[str]:
    """
    Ordered action list for a RiskScore or FormationCandidate.

    Raises
    ------
    TypeError
        For any other input type.
    """
    if isinstance(item, RiskScore):
        return score_recommendations(item)
    if isinstance(item, FormationCandidate):
        return formation_recommendations(item)
    raise TypeError(f"Cannot generate recommendations for {type(item).__name__}")
