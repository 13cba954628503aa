"""Tests for domain models."""

import random

import pytest
from pydantic import ValidationError

from domain.models import CacheSettings, LatLngBounds, TileCoordinate, TileLayerDescriptor

OSM_TEMPLATE = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'


class TestTileCoordinate:
    def test_valid(self):
        t = TileCoordinate(3, 7, 0)
        assert t.path == '3/7/0'

    @pytest.mark.parametrize('zoom,x,y', [(3, 8, 0), (3, 0, -1), (0, 1, 0), (-1, 0, 0)])
    def test_outside_grid_rejected(self, zoom, x, y):
        with pytest.raises(ValueError):
            TileCoordinate(zoom, x, y)

    def test_ordering_and_hashing(self):
        tiles = {TileCoordinate(2, 1, 1), TileCoordinate(1, 1, 0), TileCoordinate(2, 1, 1)}
        assert sorted(tiles) == [TileCoordinate(1, 1, 0), TileCoordinate(2, 1, 1)]


class TestLatLngBounds:
    def test_fields(self):
        b = LatLngBounds(south=1, west=2, north=3, east=4)
        assert (b.south, b.west, b.north, b.east) == (1, 2, 3, 4)

    def test_inverted_latitudes_rejected(self):
        with pytest.raises(ValidationError):
            LatLngBounds(south=10, west=0, north=5, east=1)

    def test_latitude_range(self):
        with pytest.raises(ValidationError):
            LatLngBounds(south=-91, west=0, north=0, east=1)


class TestTileLayerDescriptor:
    """Tests for TileLayerDescriptor."""

    def test_missing_placeholder_rejected(self):
        with pytest.raises(ValidationError):
            TileLayerDescriptor(url_template='https://example.com/{z}/{x}.png')

    def test_subdomain_placeholder_requires_subdomains(self):
        with pytest.raises(ValidationError):
            TileLayerDescriptor(url_template=OSM_TEMPLATE)
        with pytest.raises(ValidationError):
            TileLayerDescriptor(url_template=OSM_TEMPLATE, subdomains=())

    def test_request_url_uses_listed_subdomain(self):
        layer = TileLayerDescriptor(url_template=OSM_TEMPLATE, subdomains=('a', 'b', 'c'))
        tile = TileCoordinate(12, 2200, 1343)
        rng = random.Random(0)
        urls = {layer.request_url(tile, rng) for _ in range(50)}
        assert urls <= {
            f'https://{s}.tile.openstreetmap.org/12/2200/1343.png' for s in 'abc'
        }
        assert len(urls) > 1

    def test_storage_key_is_canonical(self):
        layer = TileLayerDescriptor(url_template=OSM_TEMPLATE, subdomains=('a', 'b', 'c'))
        tile = TileCoordinate(12, 2200, 1343)
        assert layer.storage_key(tile) == 'https://tile.openstreetmap.org/12/2200/1343.png'
        assert layer.rotates_subdomains

    def test_plain_template(self):
        layer = TileLayerDescriptor(
            url_template='https://server.example.com/tile/{z}/{y}/{x}'
        )
        tile = TileCoordinate(5, 1, 2)
        assert not layer.rotates_subdomains
        assert layer.request_url(tile) == 'https://server.example.com/tile/5/2/1'
        assert layer.storage_key(tile) == layer.request_url(tile)

    def test_extra_fields_ignored(self):
        layer = TileLayerDescriptor.model_validate(
            {'url_template': 'https://x.example/{z}/{x}/{y}', 'attribution': '(c) someone'}
        )
        assert layer.name == ''


class TestCacheSettings:
    """Tests for CacheSettings validation."""

    def test_defaults(self):
        s = CacheSettings()
        assert s.radius_km == 10.0
        assert s.zoom_levels == [11, 12, 13, 14]
        assert s.base_map == 'OpenStreetMap'
        assert s.size_warning_bytes == 500 * 1024 * 1024
        assert s.max_age_days == 7
        assert s.batch_size == 20
        assert s.batch_pause_s == 0.25
        assert s.fetch_max_attempts == 3

    def test_zoom_levels_sorted_unique(self):
        s = CacheSettings(zoom_levels=[14, 11, 14, 12])
        assert s.zoom_levels == [11, 12, 14]

    def test_zoom_levels_out_of_range(self):
        with pytest.raises(ValidationError):
            CacheSettings(zoom_levels=[11, 23])

    def test_negative_radius_rejected(self):
        with pytest.raises(ValidationError):
            CacheSettings(radius_km=-1)

    def test_offline_band_order(self):
        with pytest.raises(ValidationError):
            CacheSettings(offline_min_zoom=15, offline_max_zoom=11)

    def test_batch_size_positive(self):
        with pytest.raises(ValidationError):
            CacheSettings(batch_size=0)

    def test_validate_assignment(self):
        s = CacheSettings()
        with pytest.raises(ValidationError):
            s.radius_km = -5

    def test_unknown_keys_ignored(self):
        s = CacheSettings.model_validate({'radius_km': 3, 'legacy_option': True})
        assert s.radius_km == 3

    def test_is_servable_offline(self):
        s = CacheSettings()
        assert s.is_servable_offline(11)
        assert s.is_servable_offline(14)
        assert not s.is_servable_offline(10)
        assert not s.is_servable_offline(15)
