"""
climatology.py — Season- and location-conditioned fallback conditions.

When a grid cell has no real sample, or a fetch times out, its conditions
come from here instead of from zeros. Zero-filling would read as "calm sea,
no rain, no shear" and bias every score toward no risk.

Two flavours:

    climatological_baseline   deterministic expected values
    sample_climatology        stochastic draw around the same regime using an
                              injected numpy RandomState (seeded for tests)

Cyclone season by hemisphere:

    Hemisphere   Peak months
    ──────────   ─────────────────
    Southern     Nov – Apr
    Northern     Jun – Nov

Warm/peak regime draws (U ~ uniform[0, 1)):
    SST 28 + 2.5U °C, shear 3 + 8U m/s, pressure 1008 + 10U hPa, humidity 75 + 20U %
Cool/off regime draws:
    SST 25.5 + 2U °C, shear 8 + 12U m/s, pressure 1012 + 8U hPa, humidity 65 + 25U %
Both regimes:
    vorticity (U − 0.3)·4e-5 s⁻¹, divergence (U − 0.6)·2e-5 s⁻¹
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from climarisk.ingestion.observation import OBSERVATION_FIELDS, EnvironmentalObservation

SOUTHERN_PEAK_MONTHS = frozenset({11, 12, 1, 2, 3, 4})
NORTHERN_PEAK_MONTHS = frozenset({6, 7, 8, 9, 10, 11})

# Tropical SST declines poleward of this latitude
_SST_LAT_LIMIT = 20.0
_SST_LAPSE_PER_DEG = 0.25


class Season(str, Enum):
    PEAK = "peak"
    OFF = "off"


def season_for(lat: float, when: datetime) -> Season:
    """Cyclone season at ``lat`` for the month of ``when``."""
    months = SOUTHERN_PEAK_MONTHS if lat < 0 else NORTHERN_PEAK_MONTHS
    return Season.PEAK if when.month in months else Season.OFF


# Expected values per regime; centres of the stochastic draw ranges
_BASELINES: Dict[Season, Dict[str, float]] = {
    Season.PEAK: {
        "sea_temp": 29.25,
        "pressure": 1013.0,
        "wind_speed": 25.0,
        "wind_shear": 7.0,
        "humidity": 85.0,
        "vorticity": 0.8e-5,
        "divergence": -0.2e-5,
        "rainfall_24h": 8.0,
        "rainfall_72h": 24.0,
        "soil_saturation": 0.5,
        "degree_heating_weeks": 1.0,
    },
    Season.OFF: {
        "sea_temp": 26.5,
        "pressure": 1016.0,
        "wind_speed": 20.0,
        "wind_shear": 14.0,
        "humidity": 77.5,
        "vorticity": 0.8e-5,
        "divergence": -0.2e-5,
        "rainfall_24h": 3.0,
        "rainfall_72h": 9.0,
        "soil_saturation": 0.35,
        "degree_heating_weeks": 0.0,
    },
}

_OCEAN_DEFAULTS: Dict[str, float] = {
    "ph": 8.1,
    "dissolved_oxygen": 6.8,
    "turbidity": 0.2,
    "chlorophyll": 0.3,
    "hotspot": 0.0,
    "coral_coverage": 40.0,
    "salinity": 35.0,
    "bleaching_alert_level": 0.0,
}


def _sst_adjustment(lat: float) -> float:
    return -max(0.0, abs(lat) - _SST_LAT_LIMIT) * _SST_LAPSE_PER_DEG


def climatological_baseline(lat: float, lng: float, when: datetime) -> Dict[str, float]:
    """
    Deterministic expected conditions at (lat, lng) for the season of ``when``.

    River level has no climatology (it is gauge-specific) and is omitted.
    """
    values = dict(_BASELINES[season_for(lat, when)])
    values.update(_OCEAN_DEFAULTS)
    values["sea_temp"] = round(values["sea_temp"] + _sst_adjustment(lat), 3)
    return values


def sample_climatology(
    lat: float,
    lng: float,
    when: datetime,
    rng: np.random.RandomState,
) -> Dict[str, float]:
    """
    Stochastic climatological draw at (lat, lng).

    Draw order is fixed so a seeded ``rng`` gives reproducible grids.
    """
    values = climatological_baseline(lat, lng, when)
    u = rng.random_sample(6)
    if season_for(lat, when) is Season.PEAK:
        values["sea_temp"] = 28.0 + u[0] * 2.5
        values["wind_shear"] = 3.0 + u[1] * 8.0
        values["pressure"] = 1008.0 + u[2] * 10.0
        values["humidity"] = 75.0 + u[3] * 20.0
    else:
        values["sea_temp"] = 25.5 + u[0] * 2.0
        values["wind_shear"] = 8.0 + u[1] * 12.0
        values["pressure"] = 1012.0 + u[2] * 8.0
        values["humidity"] = 65.0 + u[3] * 25.0
    values["sea_temp"] += _sst_adjustment(lat)
    values["vorticity"] = (u[4] - 0.3) * 4e-5
    values["divergence"] = (u[5] - 0.6) * 2e-5
    return {k: float(v) for k, v in values.items()}


def climatology_observation(
    lat: float,
    lng: float,
    when: datetime,
    rng: Optional[np.random.RandomState] = None,
) -> EnvironmentalObservation:
    """Observation built entirely from climatology."""
    values = (
        sample_climatology(lat, lng, when, rng)
        if rng is not None
        else climatological_baseline(lat, lng, when)
    )
    return EnvironmentalObservation(
        lat=lat, lng=lng, timestamp=when, source="climatology", **values
    )


def fill_from_climatology(
    observation: EnvironmentalObservation,
    rng: Optional[np.random.RandomState] = None,
) -> Tuple[EnvironmentalObservation, List[str]]:
    """
    Fill absent fields with climatology.

    Returns
    -------
    (observation, substituted)
        The completed observation and the names of the fields that were
        filled in. Fields with no climatology stay absent.
    """
    o = observation
    values = (
        sample_climatology(o.lat, o.lng, o.timestamp, rng)
        if rng is not None
        else climatological_baseline(o.lat, o.lng, o.timestamp)
    )
    substituted = [
        f for f in OBSERVATION_FIELDS
        if getattr(o, f) is None and f in values
    ]
    if not substituted:
        return o, []
    return o.replace(**{f: values[f] for f in substituted}), substituted
