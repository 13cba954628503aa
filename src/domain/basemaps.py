"""Catalog of base maps that can be cached for offline use.

A base map is one or more tile layers drawn together; "Esri Satellite + OSM"
is imagery with a street overlay, so caching it caches both layers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from domain.models import TileLayerDescriptor
from tiles.errors import InvalidLayerError

logger = logging.getLogger(__name__)

_OSM = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'
_OPENTOPO = 'https://{s}.tile.opentopomap.org/{z}/{x}/{y}.png'
_ESRI = 'https://server.arcgisonline.com/ArcGIS/rest/services/{service}/MapServer/tile/{{z}}/{{y}}/{{x}}'
_ABC = ('a', 'b', 'c')

BASE_MAPS: dict[str, tuple[TileLayerDescriptor, ...]] = {
    'OpenStreetMap': (
        TileLayerDescriptor(name='OpenStreetMap', url_template=_OSM, subdomains=_ABC),
    ),
    'OpenTopoMap': (
        TileLayerDescriptor(name='OpenTopoMap', url_template=_OPENTOPO, subdomains=_ABC),
    ),
    'Esri Satellite': (
        TileLayerDescriptor(
            name='Esri Satellite', url_template=_ESRI.format(service='World_Imagery')
        ),
    ),
    'Esri Street': (
        TileLayerDescriptor(
            name='Esri Street', url_template=_ESRI.format(service='World_Street_Map')
        ),
    ),
    'Esri Topo': (
        TileLayerDescriptor(
            name='Esri Topo', url_template=_ESRI.format(service='World_Topo_Map')
        ),
    ),
    'Esri Satellite + OSM': (
        TileLayerDescriptor(
            name='Esri Satellite + OSM (imagery)',
            url_template=_ESRI.format(service='World_Imagery'),
        ),
        TileLayerDescriptor(
            name='Esri Satellite + OSM (streets)', url_template=_OSM, subdomains=_ABC
        ),
    ),
}


def list_base_maps() -> list[str]:
    return list(BASE_MAPS)


def layers_for_base_map(name: str) -> tuple[TileLayerDescriptor, ...]:
    """Layers of the base map *name*; raises ``KeyError`` for unknown names."""
    try:
        return BASE_MAPS[name]
    except KeyError:
        msg = f'Unknown base map: {name!r}'
        raise KeyError(msg) from None


def parse_layer(
    raw: TileLayerDescriptor | Mapping[str, Any],
    idx: int = 0,
) -> TileLayerDescriptor:
    """Validate one layer; dicts may use the legacy ``url`` / ``_url`` keys.

    Raises:
        InvalidLayerError: the descriptor has no usable URL template.
    """
    if isinstance(raw, TileLayerDescriptor):
        return raw
    data = dict(raw)
    if 'url_template' not in data:
        template = data.get('url') or data.get('_url')
        if template:
            data['url_template'] = template
    data.setdefault('name', f'layer-{idx}')
    try:
        return TileLayerDescriptor.model_validate(data)
    except ValidationError as e:
        reason = e.errors()[0].get('msg', str(e))
        msg = f'Invalid tile layer {data.get("name")!r}: {reason}'
        raise InvalidLayerError(msg) from e


def coerce_layers(
    raw_layers: Iterable[TileLayerDescriptor | Mapping[str, Any]],
) -> list[TileLayerDescriptor]:
    """Validate layers coming from the map collaborator.

    Layers that fail validation are skipped with a warning.
    """
    layers: list[TileLayerDescriptor] = []
    for idx, raw in enumerate(raw_layers):
        try:
            layers.append(parse_layer(raw, idx))
        except InvalidLayerError as e:
            logger.warning('Skipping tile layer: %s', e)
    return layers
