"""Tests for TileResolver read path."""

from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from domain.models import CacheSettings
from shared.constants import FetchErrorKind
from tiles.errors import CacheMissError, NetworkFetchError, StorageReadError, ZoomRestrictedError
from tiles.resolver import TileResolver
from tiles.store import TileStore
from tiles.writer import CacheWriter

ROTATED = 'https://b.tile.openstreetmap.org/12/2200/1343.png'
CANONICAL = 'https://tile.openstreetmap.org/12/2200/1343.png'
LEGACY_A = 'https://a.tile.openstreetmap.org/12/2200/1343.png'


@pytest.fixture
def temp_cache_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_cache_dir):
    ts = TileStore(temp_cache_dir)
    yield ts
    ts.close()


def _failing_fetch(kind=FetchErrorKind.TIMEOUT):
    return AsyncMock(side_effect=NetworkFetchError(ROTATED, kind))


class TestOfflineResolve:
    """Offline requests are served from the store only."""

    @pytest.mark.asyncio
    async def test_zoom_outside_band_rejected(self, store):
        fetch = AsyncMock()
        resolver = TileResolver(store, fetch)

        for zoom in (10, 15):
            with pytest.raises(ZoomRestrictedError) as exc:
                await resolver.resolve(ROTATED, False, zoom)
            assert exc.value.zoom == zoom
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_zoom_restriction_before_lookup(self, store):
        await store.put(CANONICAL, b'cached')
        resolver = TileResolver(store, AsyncMock())
        with pytest.raises(ZoomRestrictedError):
            await resolver.resolve(ROTATED, False, 16)

    @pytest.mark.asyncio
    async def test_hit_on_canonical_key(self, store):
        await store.put(CANONICAL, b'cached')
        fetch = AsyncMock()
        resolver = TileResolver(store, fetch)

        assert await resolver.resolve(ROTATED, False, 12) == b'cached'
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_hit_on_legacy_variant(self, store):
        await store.put(LEGACY_A, b'legacy')
        resolver = TileResolver(store, AsyncMock())

        assert await resolver.resolve(ROTATED, False, 12) == b'legacy'

    @pytest.mark.asyncio
    async def test_miss(self, store):
        resolver = TileResolver(store, AsyncMock())
        with pytest.raises(CacheMissError) as exc:
            await resolver.resolve(ROTATED, False, 13)
        assert exc.value.url == CANONICAL

    @pytest.mark.asyncio
    async def test_store_error_is_a_miss(self):
        fake_store = MagicMock()
        fake_store.get = AsyncMock(side_effect=StorageReadError('io'))
        resolver = TileResolver(fake_store, AsyncMock())

        with pytest.raises(CacheMissError):
            await resolver.resolve(ROTATED, False, 12)

    @pytest.mark.asyncio
    async def test_custom_band(self, store):
        await store.put(CANONICAL, b'cached')
        resolver = TileResolver(
            store, AsyncMock(), settings=CacheSettings(offline_min_zoom=12, offline_max_zoom=12)
        )
        assert await resolver.resolve(ROTATED, False, 12) == b'cached'
        with pytest.raises(ZoomRestrictedError):
            await resolver.resolve(ROTATED, False, 11)


class TestOnlineResolve:
    """Online requests go to the network with store fallback."""

    @pytest.mark.asyncio
    async def test_fetch_success_persists_canonical(self, store):
        fetch = AsyncMock(return_value=b'fresh')
        writer = CacheWriter(store)
        resolver = TileResolver(store, fetch, writer)

        assert await resolver.resolve(ROTATED, True, 12) == b'fresh'
        await writer.stop()

        fetch.assert_awaited_once_with(ROTATED)
        assert await store.keys() == [CANONICAL]

    @pytest.mark.asyncio
    async def test_online_ignores_zoom_band(self, store):
        fetch = AsyncMock(return_value=b'fresh')
        resolver = TileResolver(store, fetch)
        assert await resolver.resolve(ROTATED, True, 18) == b'fresh'

    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back_to_store(self, store):
        await store.put(LEGACY_A, b'stale')
        resolver = TileResolver(store, _failing_fetch())

        assert await resolver.resolve(ROTATED, True, 12) == b'stale'

    @pytest.mark.asyncio
    async def test_fetch_failure_and_miss_raises_original(self, store):
        resolver = TileResolver(store, _failing_fetch(FetchErrorKind.HTTP_STATUS))

        with pytest.raises(NetworkFetchError) as exc:
            await resolver.resolve(ROTATED, True, 12)
        assert exc.value.kind is FetchErrorKind.HTTP_STATUS

    @pytest.mark.asyncio
    async def test_failed_write_does_not_fail_request(self):
        fake_store = MagicMock()
        fake_store.put = AsyncMock(return_value=False)
        writer = CacheWriter(fake_store)
        resolver = TileResolver(fake_store, AsyncMock(return_value=b'fresh'), writer)

        assert await resolver.resolve(ROTATED, True, 12) == b'fresh'
        await writer.stop()
        assert writer.stats['failed'] == 1
