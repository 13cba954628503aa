"""Tests for TileStore."""

from __future__ import annotations

import sqlite3
import tempfile
import time
from pathlib import Path

import pytest

from shared.constants import SECONDS_PER_DAY
from tiles.errors import StorageInitError
from tiles.store import TileStore

OSM = 'https://tile.openstreetmap.org/12/2200/1343.png'
OSM_B = 'https://b.tile.openstreetmap.org/12/2200/1343.png'


@pytest.fixture
def temp_cache_dir():
    """Create temporary directory for the store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_cache_dir):
    """Create TileStore instance."""
    ts = TileStore(temp_cache_dir)
    yield ts
    ts.close()


def _raw_insert(store: TileStore, key: str, payload: object, stored_at: float) -> None:
    conn = sqlite3.connect(str(store.db_path))
    conn.execute(
        'INSERT OR REPLACE INTO tiles (key, payload, stored_at) VALUES (?, ?, ?)',
        (key, payload, stored_at),
    )
    conn.commit()
    conn.close()


class TestTileStoreBasics:
    """Tests for single-record operations."""

    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, store):
        assert await store.put(OSM, b'tile-bytes') is True
        assert await store.get(OSM) == b'tile-bytes'

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(OSM) is None

    @pytest.mark.asyncio
    async def test_get_is_exact_key(self, store):
        """get() never falls back to subdomain variants."""
        await store.put(OSM_B, b'legacy')
        assert await store.get(OSM) is None
        assert await store.get(OSM_B) == b'legacy'

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        await store.put(OSM, b'old', stored_at=100.0)
        await store.put(OSM, b'new', stored_at=200.0)
        assert await store.get(OSM) == b'new'
        stats = await store.stats()
        assert stats.tile_count == 1
        assert stats.newest_stored_at == 200.0

    @pytest.mark.asyncio
    async def test_put_stamps_current_time(self, store):
        before = time.time()
        await store.put(OSM, b'x')
        stats = await store.stats()
        assert before <= stats.newest_stored_at <= time.time()

    @pytest.mark.asyncio
    async def test_exists_delete_keys(self, store):
        await store.put(OSM, b'a')
        await store.put(OSM_B, b'b')
        assert await store.exists(OSM)
        assert await store.keys() == sorted([OSM, OSM_B])
        assert await store.delete(OSM) is True
        assert await store.delete(OSM) is False
        assert not await store.exists(OSM)

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self, temp_cache_dir):
        async with TileStore(temp_cache_dir) as ts:
            assert ts.is_open
            await ts.put(OSM, b'x')
        assert not ts.is_open
        assert (temp_cache_dir / 'tiles.sqlite').exists()


class TestTileStoreInit:
    """Tests for lazy (re)initialization."""

    @pytest.mark.asyncio
    async def test_init_failure_is_retried(self, temp_cache_dir):
        """A failed open is not remembered; the next call tries again."""
        blocker = temp_cache_dir / 'blocked'
        blocker.write_bytes(b'not a directory')
        ts = TileStore(blocker)

        with pytest.raises(StorageInitError):
            await ts.init()
        assert not ts.is_open

        # put() reports failure instead of raising
        assert await ts.put(OSM, b'x') is False

        blocker.unlink()
        await ts.init()
        assert ts.is_open
        assert await ts.put(OSM, b'x') is True
        ts.close()

    @pytest.mark.asyncio
    async def test_init_idempotent(self, store):
        await store.init()
        await store.init()
        assert store.is_open


class TestTileStoreBulk:
    """Tests for clear, eviction, size and stats."""

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.put(OSM, b'a')
        await store.put(OSM_B, b'b')
        assert await store.clear() == 2
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_clear_older_than(self, store):
        now = 1_000_000_000.0
        await store.put('k-old', b'12345', stored_at=now - 8 * SECONDS_PER_DAY)
        await store.put('k-edge', b'1', stored_at=now - 6 * SECONDS_PER_DAY)
        await store.put('k-new', b'123', stored_at=now)

        result = await store.clear_older_than(7, now=now)

        assert result.deleted_count == 1
        assert result.deleted_size_bytes == 5
        assert await store.keys() == ['k-edge', 'k-new']

    @pytest.mark.asyncio
    async def test_clear_older_than_zero_deletes_all_past(self, store):
        now = time.time()
        await store.put('a', b'x', stored_at=now - 10)
        result = await store.clear_older_than(0, now=now)
        assert result.deleted_count == 1

    @pytest.mark.asyncio
    async def test_compute_size(self, store):
        await store.put('a', b'x' * 100)
        await store.put('b', b'y' * 50)
        size = await store.compute_size()
        assert size.total_size_bytes == 150
        assert size.tile_count == 2

    @pytest.mark.asyncio
    async def test_compute_size_empty(self, store):
        size = await store.compute_size()
        assert size.total_size_bytes == 0
        assert size.tile_count == 0
        assert size.total_size_mb == 0

    @pytest.mark.asyncio
    async def test_compute_size_skips_invalid_payload(self, store):
        """A record without a blob payload counts as zero bytes and does not abort."""
        await store.put('good', b'abcd')
        _raw_insert(store, 'null-payload', None, time.time())
        _raw_insert(store, 'text-payload', 'not bytes', time.time())

        size = await store.compute_size()

        assert size.total_size_bytes == 4
        assert size.tile_count == 3

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.put('a', b'xx', stored_at=10.0)
        await store.put('b', b'yyy', stored_at=20.0)
        stats = await store.stats()
        assert stats.tile_count == 2
        assert stats.total_size_bytes == 5
        assert stats.oldest_stored_at == 10.0
        assert stats.newest_stored_at == 20.0


class TestTileStoreMigrate:
    """Tests for re-keying legacy subdomain URLs."""

    @pytest.mark.asyncio
    async def test_migrate_rekeys_legacy(self, store):
        await store.put(OSM_B, b'legacy', stored_at=123.0)

        migrated = await store.migrate()

        assert migrated == 1
        assert await store.keys() == [OSM]
        assert await store.get(OSM) == b'legacy'
        assert (await store.stats()).newest_stored_at == 123.0

    @pytest.mark.asyncio
    async def test_migrate_is_idempotent(self, store):
        await store.put(OSM_B, b'legacy')
        await store.migrate()
        assert await store.migrate() == 0
        assert await store.keys() == [OSM]

    @pytest.mark.asyncio
    async def test_migrate_keeps_newer_canonical(self, store):
        await store.put(OSM, b'canonical', stored_at=200.0)
        await store.put(OSM_B, b'legacy', stored_at=100.0)

        await store.migrate()

        assert await store.keys() == [OSM]
        assert await store.get(OSM) == b'canonical'

    @pytest.mark.asyncio
    async def test_migrate_takes_newer_legacy(self, store):
        await store.put(OSM, b'canonical', stored_at=100.0)
        await store.put(OSM_B, b'legacy', stored_at=200.0)

        await store.migrate()

        assert await store.keys() == [OSM]
        assert await store.get(OSM) == b'legacy'

    @pytest.mark.asyncio
    async def test_migrate_leaves_other_providers(self, store):
        esri = 'https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/1/0/0'
        await store.put(esri, b'x')
        assert await store.migrate() == 0
        assert await store.keys() == [esri]
