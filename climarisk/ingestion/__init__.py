"""
ingestion — Observation intake.

Modules:
    observation         — EnvironmentalObservation + payload normaliser
    climatology         — season/location-conditioned fallback values
    observation_source  — async ObservationSource backends, timeouts, last-known cache
"""
