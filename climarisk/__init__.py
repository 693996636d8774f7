"""
climarisk — risk scoring & alerting engine for cyclone, flood and ocean hazards.

Subpackages:
    core       configuration, errors, logging
    spatial    distances and monitored regions
    ingestion  observation normalisation, climatology, observation sources
    ml         scoring functions, grid interpolation, formation analysis
    alerts     alert lifecycle and notification sinks
"""

__version__ = "1.0.0"
