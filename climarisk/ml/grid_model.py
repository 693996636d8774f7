"""
grid_model.py — Spatial grid interpolation of environmental conditions.

Turns 0..N real observations inside a region into a complete grid of
``EnvironmentalObservation`` cells (default 0.5° spacing, edges inclusive)
that the formation analyzer scores cell by cell.

The interpolator:
    1. Lays out cell centres over the region bounds
    2. Draws a climatological baseline for every cell (seeded RandomState)
    3. Derives per-field biases from the real samples against climatology
       at each sample's own location
    4. Applies the biases, damped by a fixed weight, to every cell
    5. Uses the sample itself for the cell it falls in (nearest point)
    6. Records in each cell's confidence how much of it is substituted

Calibration weights:

    Field        Weight   Clamp
    ──────────   ──────   ─────────
    sea_temp     0.8
    pressure     0.7
    humidity     0.5      50 – 95 %
    wind_shear   0.3

Cell confidence:

    confidence = 1 − 0.6 × (substituted fields / GRID_FIELDS)

so a pure-climatology cell scores 0.4 and a fully observed cell 1.0. A
calibrated field counts as half substituted.

Failure policy: a region never hard-fails because a sample could not be
fetched. With no samples every cell is climatology.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from climarisk.core.config import settings
from climarisk.ingestion.climatology import climatological_baseline, sample_climatology
from climarisk.ingestion.observation import FIELD_RANGES, EnvironmentalObservation
from climarisk.ingestion.observation_source import ObservationSampler
from climarisk.ml.risk_score import clamp
from climarisk.spatial.regions import RegionBounds

logger = logging.getLogger(__name__)


# ===================================================================
# Constants
# ===================================================================

CALIBRATION_WEIGHTS: Dict[str, float] = {
    "sea_temp": 0.8,
    "pressure": 0.7,
    "humidity": 0.5,
    "wind_shear": 0.3,
}
CALIBRATION_CLAMPS: Dict[str, Tuple[float, float]] = {
    "humidity": (50.0, 95.0),
}

# Fields the formation analyzer reads from each cell
GRID_FIELDS: Tuple[str, ...] = (
    "sea_temp", "pressure", "wind_shear", "humidity", "vorticity", "divergence",
)

MAX_SUBSTITUTION_PENALTY = 0.6
CALIBRATED_FIELD_SUBSTITUTION = 0.5


# ===================================================================
# Grid structures
# ===================================================================

@dataclass(frozen=True)
class GridCell:
    """One grid cell and its estimated conditions."""

    row: int
    col: int
    observation: EnvironmentalObservation
    confidence: float
    substituted: Tuple[str, ...] = ()
    sampled: bool = False

    @property
    def lat(self) -> float:
        return self.observation.lat

    @property
    def lng(self) -> float:
        return self.observation.lng

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "lat": round(self.lat, 6),
            "lng": round(self.lng, 6),
            "confidence": round(self.confidence, 3),
            "substituted": list(self.substituted),
            "sampled": self.sampled,
            "observation": self.observation.to_dict(),
        }


@dataclass
class EnvironmentalGrid:
    """A complete grid covering one region."""

    region: RegionBounds
    resolution_deg: float
    rows: int
    cols: int
    cells: List[GridCell]
    generated_at: datetime
    samples_used: int = 0
    biases: Dict[str, float] = field(default_factory=dict)

    @property
    def climatology_only(self) -> bool:
        return self.samples_used == 0

    @property
    def mean_confidence(self) -> float:
        if not self.cells:
            return 0.0
        return float(np.mean([c.confidence for c in self.cells]))

    def field_array(self, name: str) -> np.ndarray:
        """(rows, cols) array of one field; NaN where absent."""
        values = [
            getattr(c.observation, name) if getattr(c.observation, name) is not None else np.nan
            for c in self.cells
        ]
        return np.asarray(values, dtype=float).reshape(self.rows, self.cols)

    def stats(self) -> Dict[str, Dict[str, float]]:
        out: Dict[str, Dict[str, float]] = {}
        for name in GRID_FIELDS:
            arr = self.field_array(name)
            if np.all(np.isnan(arr)):
                continue
            out[name] = {
                "mean": float(np.nanmean(arr)),
                "min": float(np.nanmin(arr)),
                "max": float(np.nanmax(arr)),
            }
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region.to_dict(),
            "resolution_deg": self.resolution_deg,
            "rows": self.rows,
            "cols": self.cols,
            "total_cells": len(self.cells),
            "samples_used": self.samples_used,
            "biases": {k: round(v, 4) for k, v in self.biases.items()},
            "mean_confidence": round(self.mean_confidence, 3),
            "generated_at": self.generated_at.isoformat(),
            "stats": self.stats(),
            "cells": [c.to_dict() for c in self.cells],
        }


# ===================================================================
# Calibration
# ===================================================================

def calibration_biases(samples: Sequence[EnvironmentalObservation]) -> Dict[str, float]:
    """
    Per-field bias of the samples against climatology at their own location.

    Each sample is compared with the deterministic baseline for its
    location and season; biases of several samples are averaged.
    """
    collected: Dict[str, List[float]] = {}
    for sample in samples:
        baseline = climatological_baseline(sample.lat, sample.lng, sample.timestamp)
        for name in CALIBRATION_WEIGHTS:
            value = getattr(sample, name)
            if value is not None:
                collected.setdefault(name, []).append(value - baseline[name])
    return {name: float(np.mean(diffs)) for name, diffs in collected.items()}


def _apply_biases(values: Dict[str, float], biases: Dict[str, float]) -> None:
    for name, bias in biases.items():
        adjusted = values[name] + bias * CALIBRATION_WEIGHTS[name]
        low, high = CALIBRATION_CLAMPS.get(name, FIELD_RANGES[name])
        values[name] = clamp(adjusted, low, high)


def _clip_to_ranges(values: Dict[str, float]) -> None:
    for name, value in values.items():
        low, high = FIELD_RANGES[name]
        values[name] = clamp(float(value), low, high)


def _cell_confidence(substituted_weight: float) -> float:
    fraction = min(1.0, substituted_weight / len(GRID_FIELDS))
    return round(1.0 - MAX_SUBSTITUTION_PENALTY * fraction, 4)


# ===================================================================
# Interpolation
# ===================================================================

def interpolate_grid(
    region: RegionBounds,
    samples: Sequence[EnvironmentalObservation] = (),
    *,
    resolution_deg: Optional[float] = None,
    when: Optional[datetime] = None,
    rng: Optional[np.random.RandomState] = None,
    seed: Optional[int] = None,
) -> EnvironmentalGrid:
    """
    Build a complete grid over ``region`` from zero or more samples.

    Parameters
    ----------
    region : RegionBounds
    samples : sequence of EnvironmentalObservation
        Real observations; those outside the region still calibrate biases.
    resolution_deg : float, optional
        Cell spacing; defaults to settings.GRID_RESOLUTION_DEG.
    when : datetime, optional
        Valid time of the grid (drives season); defaults to now (UTC).
    rng, seed : optional
        Source of randomness for climatological draws. Same seed and same
        samples → identical grid.

    Returns
    -------
    EnvironmentalGrid
        Never empty; every cell has every GRID_FIELDS value.
    """
    resolution = resolution_deg or settings.GRID_RESOLUTION_DEG
    when = when or datetime.now(timezone.utc)
    if rng is None:
        rng = np.random.RandomState(settings.RANDOM_SEED if seed is None else seed)

    points = region.grid_points(resolution)
    lats = sorted({p[0] for p in points})
    lngs = sorted({p[1] for p in points})
    rows, cols = len(lats), len(lngs)

    biases = calibration_biases(samples)
    half = resolution / 2.0

    # Nearest sample per cell, only when it lies inside that cell
    by_cell: Dict[Tuple[int, int], EnvironmentalObservation] = {}
    for sample in samples:
        if not region.contains(sample.lat, sample.lng):
            continue
        r = int(round((sample.lat - region.min_lat) / resolution))
        c = int(round((sample.lng - region.min_lng) / resolution))
        if 0 <= r < rows and 0 <= c < cols:
            if abs(lats[r] - sample.lat) <= half and abs(lngs[c] - sample.lng) <= half:
                by_cell.setdefault((r, c), sample)

    cells: List[GridCell] = []
    for idx, (lat, lng) in enumerate(points):
        r, c = divmod(idx, cols)
        values = sample_climatology(lat, lng, when, rng)
        _clip_to_ranges(values)
        _apply_biases(values, biases)

        sample = by_cell.get((r, c))
        if sample is not None:
            observed = {f: getattr(sample, f) for f in values if getattr(sample, f) is not None}
            values.update(observed)
            substituted = tuple(f for f in GRID_FIELDS if f not in observed)
            weight = float(len(substituted))
            source = "observed"
        else:
            substituted = GRID_FIELDS
            weight = sum(
                CALIBRATED_FIELD_SUBSTITUTION if f in biases else 1.0
                for f in GRID_FIELDS
            )
            source = "calibrated" if biases else "climatology"

        obs = EnvironmentalObservation(
            lat=lat, lng=lng, timestamp=when, source=source, **values
        )
        cells.append(GridCell(
            row=r,
            col=c,
            observation=obs,
            confidence=_cell_confidence(weight),
            substituted=substituted,
            sampled=sample is not None,
        ))

    return EnvironmentalGrid(
        region=region,
        resolution_deg=resolution,
        rows=rows,
        cols=cols,
        cells=cells,
        generated_at=when,
        samples_used=len(samples),
        biases=biases,
    )


def select_sample_points(region: RegionBounds, n: int) -> List[Tuple[float, float]]:
    """
    Up to ``n`` sample locations: region centre first, then quadrant centres.
    """
    center = region.center
    lat_q = (region.max_lat - region.min_lat) / 4.0
    lng_q = (region.max_lng - region.min_lng) / 4.0
    candidates = [
        (center.latitude, center.longitude),
        (center.latitude - lat_q, center.longitude - lng_q),
        (center.latitude - lat_q, center.longitude + lng_q),
        (center.latitude + lat_q, center.longitude - lng_q),
        (center.latitude + lat_q, center.longitude + lng_q),
    ]
    return candidates[:max(0, n)]


async def build_environmental_grid(
    region: RegionBounds,
    sampler: Optional[ObservationSampler],
    *,
    n_samples: Optional[int] = None,
    resolution_deg: Optional[float] = None,
    when: Optional[datetime] = None,
    rng: Optional[np.random.RandomState] = None,
) -> EnvironmentalGrid:
    """
    Fetch real samples concurrently, then interpolate.

    Sample failures and timeouts leave those points out; with no usable
    sample the grid is pure climatology.
    """
    started = time.perf_counter()
    samples: List[EnvironmentalObservation] = []
    n = settings.GRID_SAMPLE_POINTS if n_samples is None else n_samples

    if sampler is not None and n > 0:
        fetched = await sampler.sample_many(select_sample_points(region, n))
        samples = [s for s in fetched if s is not None]
        if not samples:
            logger.warning(
                "No observations available for %s, using climatology",
                region.name, extra={"region": region.name},
            )

    grid = interpolate_grid(
        region, samples, resolution_deg=resolution_deg, when=when, rng=rng
    )
    logger.info(
        "Built %dx%d grid for %s from %d sample(s)",
        grid.rows, grid.cols, region.name, grid.samples_used,
        extra={"region": region.name,
               "duration_ms": round((time.perf_counter() - started) * 1000)},
    )
    return grid
