"""Domain layer - tile models, settings and the base-map catalog."""
from domain.basemaps import (
    BASE_MAPS,
    coerce_layers,
    layers_for_base_map,
    list_base_maps,
    parse_layer,
)
from domain.models import (
    CacheSettings,
    LatLngBounds,
    TileCoordinate,
    TileLayerDescriptor,
)

__all__ = [
    'BASE_MAPS',
    'CacheSettings',
    'LatLngBounds',
    'TileCoordinate',
    'TileLayerDescriptor',
    'coerce_layers',
    'layers_for_base_map',
    'list_base_maps',
    'parse_layer',
]
