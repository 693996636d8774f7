"""
spatial — Geographic helpers.

Modules:
    radius_utils  — Coordinate and haversine distance
    regions       — monitored region bounds and cyclone basins
"""
