"""Spherical Web Mercator helpers for the slippy-map tile grid."""

from __future__ import annotations

import math

from shared.constants import (
    EARTH_CIRCUMFERENCE_M,
    MERCATOR_MAX_LAT_DEG,
    TILE_SIZE,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
)


def tiles_per_axis(zoom: int) -> int:
    """Number of tiles along one axis of the grid at *zoom*."""
    return 2**zoom


def clamp_latitude(lat_deg: float) -> float:
    return max(-MERCATOR_MAX_LAT_DEG, min(MERCATOR_MAX_LAT_DEG, lat_deg))


def meters_per_pixel(lat_deg: float, zoom: int, tile_size: int = TILE_SIZE) -> float:
    """Ground resolution at *lat_deg*: circumference * cos(lat) / (tile_size * 2^zoom)."""
    lat_rad = math.radians(clamp_latitude(lat_deg))
    return EARTH_CIRCUMFERENCE_M * math.cos(lat_rad) / (tile_size * tiles_per_axis(zoom))


def latlng_to_pixel_xy(
    lat_deg: float,
    lng_deg: float,
    zoom: int,
    tile_size: int = TILE_SIZE,
) -> tuple[float, float]:
    """Convert WGS84 (lat, lng) to world pixel coordinates at *zoom*."""
    siny = math.sin(math.radians(clamp_latitude(lat_deg)))
    world_size = tile_size * tiles_per_axis(zoom)
    x = (lng_deg + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * world_size
    y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * world_size
    return x, y


def latlng_to_tile_xy(
    lat_deg: float,
    lng_deg: float,
    zoom: int,
    tile_size: int = TILE_SIZE,
) -> tuple[float, float]:
    """Fractional tile coordinates of a point (not clamped to the grid)."""
    px, py = latlng_to_pixel_xy(lat_deg, lng_deg, zoom, tile_size)
    return px / tile_size, py / tile_size
