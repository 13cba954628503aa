"""Geo module - Web Mercator projection utilities."""

from geo.mercator import (
    clamp_latitude,
    latlng_to_pixel_xy,
    latlng_to_tile_xy,
    meters_per_pixel,
    tiles_per_axis,
)

__all__ = [
    'clamp_latitude',
    'latlng_to_pixel_xy',
    'latlng_to_tile_xy',
    'meters_per_pixel',
    'tiles_per_axis',
]
