"""
regions.py — Monitored region bounds and tropical-cyclone basins.

A ``RegionBounds`` is the configuration-surface bounding box
``{minLat, maxLat, minLng, maxLng}``; grids are laid out over it at a
fixed resolution, inclusive of both edges.

Basin lookup (used to name formation candidates):

    Basin                       Latitude      Longitude
    ─────────────────────────   ───────────   ─────────────────────
    South-West Indian Ocean     -40 .. -5     30 .. 90
    South Pacific               -40 .. 0      135 .. 180, -180 .. -120
    North Atlantic              5 .. 50       -100 .. -10
    North Indian Ocean          0 .. 30       40 .. 100
    North Pacific               0 .. 60       100 .. 180, -180 .. -100
    Other                       everything else
"""

from __future__ import annotations

import math
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from climarisk.spatial.radius_utils import Coordinate, haversine


class RegionBounds(BaseModel):
    """A named, validated latitude/longitude bounding box."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(default="Region", min_length=1)
    min_lat: float = Field(..., ge=-90.0, le=90.0, alias="minLat")
    max_lat: float = Field(..., ge=-90.0, le=90.0, alias="maxLat")
    min_lng: float = Field(..., ge=-180.0, le=180.0, alias="minLng")
    max_lng: float = Field(..., ge=-180.0, le=180.0, alias="maxLng")

    @model_validator(mode="after")
    def _check_ordering(self) -> "RegionBounds":
        if self.min_lat >= self.max_lat:
            raise ValueError(
                f"min_lat ({self.min_lat}) must be below max_lat ({self.max_lat})"
            )
        if self.min_lng >= self.max_lng:
            raise ValueError(
                f"min_lng ({self.min_lng}) must be below max_lng ({self.max_lng})"
            )
        return self

    @property
    def center(self) -> Coordinate:
        return Coordinate(
            (self.min_lat + self.max_lat) / 2.0,
            (self.min_lng + self.max_lng) / 2.0,
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def distance_km(self, point: Coordinate) -> float:
        """Distance from ``point`` to the nearest edge of the box (0 inside)."""
        if self.contains(point.latitude, point.longitude):
            return 0.0
        nearest = Coordinate(
            min(max(point.latitude, self.min_lat), self.max_lat),
            min(max(point.longitude, self.min_lng), self.max_lng),
        )
        return haversine(point, nearest)

    def grid_points(self, resolution_deg: float) -> List[Tuple[float, float]]:
        """
        Cell centres from min to max (inclusive) at ``resolution_deg`` spacing.

        Raises
        ------
        ValueError
            If the resolution is not positive.
        """
        if resolution_deg <= 0:
            raise ValueError(f"Grid resolution must be positive, got {resolution_deg}")
        n_lat = int(math.floor((self.max_lat - self.min_lat) / resolution_deg + 1e-9)) + 1
        n_lng = int(math.floor((self.max_lng - self.min_lng) / resolution_deg + 1e-9)) + 1
        return [
            (round(self.min_lat + i * resolution_deg, 6),
             round(self.min_lng + j * resolution_deg, 6))
            for i in range(n_lat)
            for j in range(n_lng)
        ]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLng": self.min_lng,
            "maxLng": self.max_lng,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Cyclone basins
# ═══════════════════════════════════════════════════════════════════════════

SOUTH_WEST_INDIAN = "South-West Indian Ocean"
SOUTH_PACIFIC = "South Pacific"
NORTH_ATLANTIC = "North Atlantic"
NORTH_INDIAN = "North Indian Ocean"
NORTH_PACIFIC = "North Pacific"
OTHER_BASIN = "Other"


def basin_for(lat: float, lng: float) -> str:
    """Name of the cyclone basin containing (lat, lng)."""
    if -40 <= lat <= -5 and 30 <= lng <= 90:
        return SOUTH_WEST_INDIAN
    if -40 <= lat <= 0 and (lng >= 135 or lng <= -120):
        return SOUTH_PACIFIC
    if 5 <= lat <= 50 and -100 <= lng <= -10:
        return NORTH_ATLANTIC
    if 0 <= lat <= 30 and 40 <= lng <= 100:
        return NORTH_INDIAN
    if 0 <= lat <= 60 and (lng >= 100 or lng <= -100):
        return NORTH_PACIFIC
    return OTHER_BASIN
