"""
observation.py — Canonical environmental observation record and normaliser.

Upstream providers (weather APIs, marine buoys, satellite products) all
describe the same physical quantities with different keys and units. This
module turns any of those payloads into one immutable
``EnvironmentalObservation`` with known units and validated ranges.

═══════════════════════════════════════════════════════════════════════════
CANONICAL UNITS & PHYSICAL RANGES
═══════════════════════════════════════════════════════════════════════════

    Field                   Unit            Accepted range
    ─────────────────────   ─────────────   ─────────────────
    sea_temp                °C              -5 .. 40
    pressure                hPa             850 .. 1090
    wind_speed              km/h            0 .. 500
    wind_shear              m/s             0 .. 100
    humidity                %               0 .. 100
    vorticity               s⁻¹             -1e-3 .. 1e-3
    divergence              s⁻¹             -1e-3 .. 1e-3
    rainfall_24h            mm              0 .. 2000
    rainfall_72h            mm              0 .. 5000
    soil_saturation         fraction        0 .. 1
    river_level             m               -10 .. 100
    ph                      pH              0 .. 14
    dissolved_oxygen        mg/L            0 .. 20
    turbidity               index           0 .. 10
    chlorophyll             mg/m³           0 .. 100
    hotspot                 °C              -10 .. 10
    degree_heating_weeks    °C-weeks        0 .. 50
    coral_coverage          %               0 .. 100
    salinity                PSU             0 .. 50
    bleaching_alert_level   NOAA level      0 .. 5

Construction rejects non-numeric, non-finite and out-of-range values with
``ObservationError``, whichever path built the record.

Absent fields stay ``None``. They are never zero-filled here: only the grid
interpolator may substitute climatology, and scoring functions raise
``ObservationError`` when a field they need is missing.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from climarisk.core.errors import ObservationError
from climarisk.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Field catalogue
# ═══════════════════════════════════════════════════════════════════════════

FIELD_RANGES: Dict[str, Tuple[float, float]] = {
    "sea_temp": (-5.0, 40.0),
    "pressure": (850.0, 1090.0),
    "wind_speed": (0.0, 500.0),
    "wind_shear": (0.0, 100.0),
    "humidity": (0.0, 100.0),
    "vorticity": (-1e-3, 1e-3),
    "divergence": (-1e-3, 1e-3),
    "rainfall_24h": (0.0, 2000.0),
    "rainfall_72h": (0.0, 5000.0),
    "soil_saturation": (0.0, 1.0),
    "river_level": (-10.0, 100.0),
    "ph": (0.0, 14.0),
    "dissolved_oxygen": (0.0, 20.0),
    "turbidity": (0.0, 10.0),
    "chlorophyll": (0.0, 100.0),
    "hotspot": (-10.0, 10.0),
    "degree_heating_weeks": (0.0, 50.0),
    "coral_coverage": (0.0, 100.0),
    "salinity": (0.0, 50.0),
    "bleaching_alert_level": (0.0, 5.0),
}

OBSERVATION_FIELDS: Tuple[str, ...] = tuple(FIELD_RANGES)

# Incoming key (after camelCase → snake_case) → canonical field
_ALIASES: Dict[str, str] = {
    "lat": "lat",
    "latitude": "lat",
    "lng": "lng",
    "lon": "lng",
    "long": "lng",
    "longitude": "lng",
    "timestamp": "timestamp",
    "time": "timestamp",
    "observed_at": "timestamp",
    "sst": "sea_temp",
    "sea_temperature": "sea_temp",
    "sea_surface_temperature": "sea_temp",
    "min_pressure": "pressure",
    "pressure_msl": "pressure",
    "max_wind_speed": "wind_speed",
    "wind_speed_10m": "wind_speed",
    "shear": "wind_shear",
    "relative_humidity": "humidity",
    "relative_humidity_2m": "humidity",
    "precip24h": "rainfall_24h",
    "precip_24h": "rainfall_24h",
    "rainfall24h": "rainfall_24h",
    "rain_24h": "rainfall_24h",
    "precip72h": "rainfall_72h",
    "precip_72h": "rainfall_72h",
    "rainfall72h": "rainfall_72h",
    "rain_72h": "rainfall_72h",
    "soil_moisture": "soil_saturation",
    "p_h": "ph",
    "do": "dissolved_oxygen",
    "oxygen": "dissolved_oxygen",
    "chl": "chlorophyll",
    "chlorophyll_a": "chlorophyll",
    "hot_spot": "hotspot",
    "dhw": "degree_heating_weeks",
    "coral_cover": "coral_coverage",
    "alert_level": "bleaching_alert_level",
}
_ALIASES.update({f: f for f in OBSERVATION_FIELDS})

_WIND_TO_KMH = {"km/h": 1.0, "kmh": 1.0, "m/s": 3.6, "ms": 3.6,
                "kt": 1.852, "kn": 1.852, "knots": 1.852, "mph": 1.609344,
                "mp/h": 1.609344}
_SHEAR_TO_MS = {"m/s": 1.0, "ms": 1.0, "km/h": 1 / 3.6, "kmh": 1 / 3.6,
                "kt": 0.514444, "kn": 0.514444, "knots": 0.514444}
_PRESSURE_TO_HPA = {"hpa": 1.0, "mb": 1.0, "mbar": 1.0, "pa": 0.01,
                    "kpa": 10.0, "inhg": 33.8639}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _to_snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


# ═══════════════════════════════════════════════════════════════════════════
# Observation record
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EnvironmentalObservation:
    """A point-in-time, point-in-space environmental reading."""
    lat: float
    lng: float
    timestamp: datetime
    sea_temp: Optional[float] = None
    pressure: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_shear: Optional[float] = None
    humidity: Optional[float] = None
    vorticity: Optional[float] = None
    divergence: Optional[float] = None
    rainfall_24h: Optional[float] = None
    rainfall_72h: Optional[float] = None
    soil_saturation: Optional[float] = None
    river_level: Optional[float] = None
    ph: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    turbidity: Optional[float] = None
    chlorophyll: Optional[float] = None
    hotspot: Optional[float] = None
    degree_heating_weeks: Optional[float] = None
    coral_coverage: Optional[float] = None
    salinity: Optional[float] = None
    bleaching_alert_level: Optional[float] = None
    source: str = "observed"

    def __post_init__(self):
        try:
            Coordinate(self.lat, self.lng)
        except (TypeError, ValueError) as e:
            raise ObservationError(
                f"Invalid observation location: {e}", field="location",
            ) from e
        for name in OBSERVATION_FIELDS:
            value = getattr(self, name)
            if value is not None:
                _check_value(name, value)

    @property
    def location(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)

    def missing(self, *fields: str) -> List[str]:
        """Names among ``fields`` that are absent on this observation."""
        return [f for f in fields if getattr(self, f) is None]

    def require(self, *fields: str) -> None:
        """
        Raise ``ObservationError`` listing every absent field in ``fields``.
        """
        absent = self.missing(*fields)
        if absent:
            raise ObservationError(
                f"Missing required observation fields: {', '.join(absent)}",
                fields=absent,
                lat=self.lat,
                lng=self.lng,
            )

    def present_fields(self) -> List[str]:
        return [f for f in OBSERVATION_FIELDS if getattr(self, f) is not None]

    def replace(self, **changes: Any) -> "EnvironmentalObservation":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "lat": self.lat,
            "lng": self.lng,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }
        for f in OBSERVATION_FIELDS:
            value = getattr(self, f)
            if value is not None:
                d[f] = value
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Normalisation helpers
# ═══════════════════════════════════════════════════════════════════════════

def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetime (naive values are taken as UTC), ISO-8601 strings
    (``Z`` suffix allowed) and epoch seconds or milliseconds.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise ObservationError("Invalid timestamp", field="timestamp", value=value)
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ObservationError(
                f"Invalid epoch timestamp: {value}", field="timestamp"
            ) from e
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise ObservationError(
                f"Invalid ISO-8601 timestamp: {value!r}", field="timestamp"
            ) from e
    else:
        raise ObservationError("Invalid timestamp", field="timestamp", value=repr(value))

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError as e:
                raise ObservationError(
                    f"{name} must be numeric, got {value!r}", field=name
                ) from e
        else:
            raise ObservationError(
                f"{name} must be numeric, got {type(value).__name__}", field=name
            )
    number = float(value)
    if not math.isfinite(number):
        raise ObservationError(f"{name} must be finite, got {number}", field=name)
    return number


def _check_range(name: str, value: float) -> float:
    low, high = FIELD_RANGES[name]
    if not (low <= value <= high):
        raise ObservationError(
            f"{name}={value} outside physical range [{low}, {high}]",
            field=name,
            value=value,
        )
    return value


def _check_value(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ObservationError(
            f"{name} must be numeric, got {type(value).__name__}", field=name
        )
    if not math.isfinite(value):
        raise ObservationError(f"{name} must be finite, got {value}", field=name)
    _check_range(name, float(value))


def _unit_factor(table: Dict[str, float], unit: Optional[str], name: str) -> float:
    if unit is None:
        return 1.0
    factor = table.get(str(unit).strip().lower().replace(" ", ""))
    if factor is None:
        raise ObservationError(f"Unsupported unit {unit!r} for {name}", field=name)
    return factor


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════

def normalize_observation(
    payload: Mapping[str, Any],
    *,
    source: Optional[str] = None,
) -> EnvironmentalObservation:
    """
    Convert a heterogeneous upstream payload into an EnvironmentalObservation.

    Parameters
    ----------
    payload : mapping
        Keys in camelCase or snake_case, including common aliases
        (``sst``, ``minPressure``, ``maxWindSpeed``, ``precip24h``,
        ``soilMoisture``, ``dhw``, ``pH``, ``do`` …). Optional unit hints:
        ``wind_speed_unit``, ``wind_shear_unit``, ``pressure_unit``.
    source : str, optional
        Provenance tag stored on the observation.

    Returns
    -------
    EnvironmentalObservation

    Raises
    ------
    ObservationError
        If lat/lng/timestamp are missing or any value is non-numeric,
        non-finite or outside its physical range.
    """
    canonical: Dict[str, Any] = {}
    units: Dict[str, Any] = {}

    for raw_key, value in payload.items():
        key = _to_snake(str(raw_key))
        if key.endswith("_unit"):
            units[key] = value
            continue
        name = _ALIASES.get(key)
        if name is None:
            logger.debug("Ignoring unknown observation key %r", raw_key)
            continue
        if value is None:
            continue
        canonical[name] = value

    for required in ("lat", "lng", "timestamp"):
        if required not in canonical:
            raise ObservationError(
                f"Observation is missing required field '{required}'",
                field=required,
            )

    lat = _as_number("lat", canonical.pop("lat"))
    lng = _as_number("lng", canonical.pop("lng"))
    try:
        Coordinate(lat, lng)
    except ValueError as e:
        raise ObservationError(str(e), field="location", lat=lat, lng=lng) from e

    timestamp = parse_timestamp(canonical.pop("timestamp"))

    fields: Dict[str, float] = {}
    for name, value in canonical.items():
        fields[name] = _as_number(name, value)

    if "wind_speed" in fields:
        fields["wind_speed"] *= _unit_factor(
            _WIND_TO_KMH, units.get("wind_speed_unit"), "wind_speed")
    if "wind_shear" in fields:
        fields["wind_shear"] *= _unit_factor(
            _SHEAR_TO_MS, units.get("wind_shear_unit"), "wind_shear")
    if "pressure" in fields:
        fields["pressure"] *= _unit_factor(
            _PRESSURE_TO_HPA, units.get("pressure_unit"), "pressure")
    # Soil moisture reported as a percentage
    if "soil_saturation" in fields and 1.0 < fields["soil_saturation"] <= 100.0:
        fields["soil_saturation"] /= 100.0

    for name, value in fields.items():
        _check_range(name, value)

    return EnvironmentalObservation(
        lat=lat,
        lng=lng,
        timestamp=timestamp,
        source=source or str(payload.get("source", "observed")),
        **fields,
    )


def from_open_meteo(
    payload: Mapping[str, Any],
    *,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
) -> EnvironmentalObservation:
    """
    Normalise an Open-Meteo forecast/marine response.

    Reads ``current`` (temperature, humidity, pressure, wind, sea surface
    temperature) and ``daily.precipitation_sum`` (first day → 24h, first
    three days → 72h).
    """
    current = payload.get("current") or {}
    current_units = payload.get("current_units") or {}
    daily = payload.get("daily") or {}

    record: Dict[str, Any] = {
        "lat": payload.get("latitude", lat),
        "lng": payload.get("longitude", lng),
        "timestamp": current.get("time"),
        "humidity": current.get("relative_humidity_2m"),
        "pressure": current.get("pressure_msl"),
        "wind_speed": current.get("wind_speed_10m"),
        "sea_temp": current.get("sea_surface_temperature"),
    }
    if current.get("wind_speed_10m") is not None:
        record["wind_speed_unit"] = current_units.get("wind_speed_10m", "km/h")

    precip = [p for p in daily.get("precipitation_sum") or [] if p is not None]
    if precip:
        record["rainfall_24h"] = precip[0]
        record["rainfall_72h"] = sum(precip[:3])

    if record["timestamp"] is None:
        record["timestamp"] = datetime.now(timezone.utc)

    return normalize_observation(record, source="open-meteo")
