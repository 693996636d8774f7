"""
ml — Scoring and forecasting.

Modules:
    risk_score       — RiskScore / RiskLevel / Polarity types, point→probability mapping
    cyclone_service  — cyclone risk from pressure + wind, intensity buckets
    flood_service    — flood risk from rainfall + soil + river, flood depth
    ocean_health     — water quality, pollution, biodiversity, reef, bleaching
    strategy         — ScoringStrategy / FormationModel seams and heuristic defaults
    grid_model       — spatial grid interpolation over a region
    formation        — cyclone formation analyzer
    recommendations  — ordered action lists per score or candidate
"""
