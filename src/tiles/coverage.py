"""Tile coverage of a circular region or a map viewport."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from domain.models import TileCoordinate
from geo.mercator import latlng_to_pixel_xy, meters_per_pixel, tiles_per_axis
from shared.constants import TILE_SIZE

if TYPE_CHECKING:
    from collections.abc import Iterable

    from domain.models import LatLngBounds

logger = logging.getLogger(__name__)


def tile_radius_for(lat: float, radius_km: float, zoom: int, tile_size: int = TILE_SIZE) -> int:
    """Half-width of the tile square covering *radius_km*, plus one tile of margin."""
    radius_m = max(0.0, radius_km) * 1000.0
    mpp = meters_per_pixel(lat, zoom, tile_size)
    return math.ceil(radius_m / (mpp * tile_size)) + 1


def _clamped_range(lo: float, hi: float, n: int) -> range:
    return range(max(0, lo), min(n - 1, hi) + 1)


def tiles_in_radius(
    lat: float,
    lng: float,
    radius_km: float,
    zoom_levels: Iterable[int],
    *,
    tile_size: int = TILE_SIZE,
) -> set[TileCoordinate]:
    """All tiles of a square box around (lat, lng) covering *radius_km*.

    Coordinates are clamped to the grid, never wrapped, and de-duplicated
    across zoom levels by (zoom, x, y). A zero or negative radius still
    yields the centre tile and its one-tile margin.
    """
    tiles: set[TileCoordinate] = set()
    for zoom in zoom_levels:
        px, py = latlng_to_pixel_xy(lat, lng, zoom, tile_size)
        cx = px / tile_size
        cy = py / tile_size
        r = tile_radius_for(lat, radius_km, zoom, tile_size)
        n = tiles_per_axis(zoom)
        xs = _clamped_range(math.floor(cx - r), math.ceil(cx + r), n)
        ys = _clamped_range(math.floor(cy - r), math.ceil(cy + r), n)
        for x in xs:
            for y in ys:
                tiles.add(TileCoordinate(zoom, x, y))
        logger.debug(
            'Zoom %d: centre tile (%.2f, %.2f), radius %d tiles, %dx%d box',
            zoom,
            cx,
            cy,
            r,
            len(xs),
            len(ys),
        )
    return tiles


def tiles_in_bounds(
    bounds: LatLngBounds,
    zoom: int,
    *,
    tile_size: int = TILE_SIZE,
) -> list[TileCoordinate]:
    """Rectangle of tiles covering the viewport *bounds* at a single *zoom*."""
    sw_x, sw_y = latlng_to_pixel_xy(bounds.south, bounds.west, zoom, tile_size)
    ne_x, ne_y = latlng_to_pixel_xy(bounds.north, bounds.east, zoom, tile_size)
    n = tiles_per_axis(zoom)
    xs = _clamped_range(math.floor(sw_x / tile_size), math.floor(ne_x / tile_size), n)
    # Пиксельная ось y направлена на юг: север даёт меньший индекс
    ys = _clamped_range(math.floor(ne_y / tile_size), math.floor(sw_y / tile_size), n)
    return [TileCoordinate(zoom, x, y) for x in xs for y in ys]
