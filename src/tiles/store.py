"""SQLite-backed tile store keyed by canonical tile URL.

This module provides TileStore, a persistent key-value store of raw tile
bytes with size accounting, age-based eviction and a migration pass that
re-keys legacy subdomain-rotated URLs to their canonical form.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from shared.constants import (
    BYTES_PER_MB,
    SECONDS_PER_DAY,
    TILE_CACHE_DIR,
    TILE_MAX_AGE_DAYS,
    TILE_STORE_FILENAME,
)
from tiles.errors import (
    StorageError,
    StorageInitError,
    StorageReadError,
    StorageWriteError,
)
from tiles.normalizer import canonicalize

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CacheSize:
    total_size_bytes: int
    tile_count: int

    @property
    def total_size_mb(self) -> float:
        return self.total_size_bytes / BYTES_PER_MB


@dataclass
class EvictionResult:
    deleted_count: int
    deleted_size_bytes: int

    @property
    def deleted_size_mb(self) -> float:
        return self.deleted_size_bytes / BYTES_PER_MB


@dataclass
class CacheStats:
    """Statistics about the tile store."""

    tile_count: int
    total_size_bytes: int
    oldest_stored_at: float | None
    newest_stored_at: float | None


class TileStore:
    """Persistent async tile store on a single SQLite file.

    Features:
    - WAL mode so reads do not block behind writes
    - Lazy (re)open: a failed open is retried on the next call
    - Blocking sqlite work runs in worker threads, serialized by a lock;
      concurrent puts to one key resolve last-writer-wins

    Usage:
        store = TileStore(cache_dir)
        await store.put(url, tile_bytes)
        data = await store.get(url)
        store.close()
    """

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        *,
        filename: str = TILE_STORE_FILENAME,
    ) -> None:
        self.cache_dir = Path(cache_dir or TILE_CACHE_DIR)
        self.db_path = self.cache_dir / filename
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------
    def _open(self) -> sqlite3.Connection:
        """Open the database if needed. Caller must hold the lock."""
        if self._conn is not None:
            return self._conn
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            try:
                conn.execute('PRAGMA journal_mode=WAL')
                conn.execute('PRAGMA synchronous=NORMAL')
                self._init_schema(conn)
            except sqlite3.Error:
                conn.close()
                raise
        except (OSError, sqlite3.Error) as e:
            msg = f'Failed to open tile store at {self.db_path}: {e}'
            raise StorageInitError(msg) from e
        self._conn = conn
        logger.info('TileStore opened at %s', self.db_path)
        return conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript('''
            CREATE TABLE IF NOT EXISTS tiles (
                key TEXT PRIMARY KEY,
                payload BLOB,
                stored_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tiles_stored_at ON tiles(stored_at);
        ''')
        conn.commit()

    def _call(
        self,
        fn: Callable[[sqlite3.Connection], T],
        error_cls: type[StorageError],
        what: str,
    ) -> T:
        with self._lock:
            conn = self._open()
            try:
                return fn(conn)
            except sqlite3.Error as e:
                conn.rollback()
                msg = f'{what} failed: {e}'
                raise error_cls(msg) from e

    async def _run(
        self,
        fn: Callable[[sqlite3.Connection], T],
        error_cls: type[StorageError],
        what: str,
    ) -> T:
        return await asyncio.to_thread(self._call, fn, error_cls, what)

    async def init(self) -> None:
        """Open or create the store. Idempotent.

        Raises:
            StorageInitError: backend unavailable. Not remembered; the next
                call tries again.
        """

        def _do() -> None:
            with self._lock:
                self._open()

        await asyncio.to_thread(_do)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------
    async def put(
        self,
        key: str,
        payload: bytes,
        stored_at: float | None = None,
    ) -> bool:
        """Upsert a tile stamped with the current time.

        Returns False when the write failed; the failure is logged, not
        raised, since a tile that could not be persisted is still usable.
        """
        ts = time.time() if stored_at is None else stored_at

        def _do(conn: sqlite3.Connection) -> None:
            conn.execute(
                'INSERT OR REPLACE INTO tiles (key, payload, stored_at) VALUES (?, ?, ?)',
                (key, sqlite3.Binary(payload), ts),
            )
            conn.commit()

        try:
            await self._run(_do, StorageWriteError, f'Storing tile {key}')
        except StorageError as e:
            logger.warning('Failed to store tile %s: %s', key, e)
            return False
        logger.debug('Stored tile: %s', key)
        return True

    async def get(self, key: str) -> bytes | None:
        """Exact-key lookup. No variant fallback happens here.

        Raises:
            StorageReadError: the lookup itself failed.
            StorageInitError: the store could not be opened.
        """

        def _do(conn: sqlite3.Connection) -> bytes | None:
            row = conn.execute(
                'SELECT payload FROM tiles WHERE key = ?', (key,)
            ).fetchone()
            if row is None or row[0] is None:
                return None
            return bytes(row[0])

        return await self._run(_do, StorageReadError, f'Reading tile {key}')

    async def exists(self, key: str) -> bool:
        def _do(conn: sqlite3.Connection) -> bool:
            row = conn.execute('SELECT 1 FROM tiles WHERE key = ?', (key,)).fetchone()
            return row is not None

        return await self._run(_do, StorageReadError, f'Checking tile {key}')

    async def delete(self, key: str) -> bool:
        def _do(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute('DELETE FROM tiles WHERE key = ?', (key,))
            conn.commit()
            return cursor.rowcount > 0

        return await self._run(_do, StorageWriteError, f'Deleting tile {key}')

    async def keys(self) -> list[str]:
        def _do(conn: sqlite3.Connection) -> list[str]:
            return [row[0] for row in conn.execute('SELECT key FROM tiles ORDER BY key')]

        return await self._run(_do, StorageReadError, 'Listing keys')

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------
    async def clear(self) -> int:
        """Delete every record. Returns the number of records removed."""

        def _do(conn: sqlite3.Connection) -> int:
            cursor = conn.execute('DELETE FROM tiles')
            conn.commit()
            return cursor.rowcount

        count = await self._run(_do, StorageWriteError, 'Clearing tile store')
        logger.info('Tile cache cleared: %d tiles deleted', count)
        return count

    async def clear_older_than(
        self,
        max_age_days: float = TILE_MAX_AGE_DAYS,
        *,
        now: float | None = None,
    ) -> EvictionResult:
        """Delete records stored before ``now - max_age_days``."""
        cutoff = (time.time() if now is None else now) - max_age_days * SECONDS_PER_DAY

        def _do(conn: sqlite3.Connection) -> EvictionResult:
            row = conn.execute(
                'SELECT COUNT(*), COALESCE(SUM(COALESCE(length(payload), 0)), 0) '
                'FROM tiles WHERE stored_at < ?',
                (cutoff,),
            ).fetchone()
            cursor = conn.execute('DELETE FROM tiles WHERE stored_at < ?', (cutoff,))
            conn.commit()
            if cursor.rowcount != row[0]:
                logger.debug(
                    'Eviction count drift: scanned %d, deleted %d', row[0], cursor.rowcount
                )
            return EvictionResult(deleted_count=cursor.rowcount, deleted_size_bytes=row[1])

        result = await self._run(_do, StorageWriteError, 'Evicting old tiles')
        logger.info(
            'Cleared %d old tiles, freed %.2f MB',
            result.deleted_count,
            result.deleted_size_mb,
        )
        return result

    async def compute_size(self) -> CacheSize:
        """Full scan summing payload lengths.

        Records whose payload is missing or not a blob count as zero bytes and
        are logged; they never abort the scan.
        """

        def _do(conn: sqlite3.Connection) -> CacheSize:
            total = 0
            count = 0
            cursor = conn.execute('SELECT key, length(payload), typeof(payload) FROM tiles')
            for key, size, kind in cursor:
                count += 1
                if kind != 'blob' or not isinstance(size, int):
                    logger.warning('Invalid payload size for tile: %s (%s)', key, kind)
                    continue
                total += size
            return CacheSize(total_size_bytes=total, tile_count=count)

        size = await self._run(_do, StorageReadError, 'Computing cache size')
        logger.info(
            'Cache size calculation completed: %.2f MB, %d tiles',
            size.total_size_mb,
            size.tile_count,
        )
        return size

    async def stats(self) -> CacheStats:
        def _do(conn: sqlite3.Connection) -> CacheStats:
            row = conn.execute(
                'SELECT COUNT(*), COALESCE(SUM(COALESCE(length(payload), 0)), 0), '
                'MIN(stored_at), MAX(stored_at) FROM tiles'
            ).fetchone()
            return CacheStats(
                tile_count=row[0],
                total_size_bytes=row[1],
                oldest_stored_at=row[2],
                newest_stored_at=row[3],
            )

        return await self._run(_do, StorageReadError, 'Reading cache stats')

    async def migrate(self) -> int:
        """Re-key records stored under non-canonical URLs.

        Payload and ``stored_at`` are preserved. If the canonical key already
        exists, the newer record wins. Safe to run repeatedly.

        Returns:
            Number of legacy records folded into canonical keys.
        """

        def _do(conn: sqlite3.Connection) -> int:
            legacy = [
                (key, canonicalize(key))
                for (key,) in conn.execute('SELECT key FROM tiles')
                if canonicalize(key) != key
            ]
            for old_key, new_key in legacy:
                conn.execute(
                    '''INSERT INTO tiles (key, payload, stored_at)
                       SELECT ?, payload, stored_at FROM tiles WHERE key = ?
                       ON CONFLICT(key) DO UPDATE SET
                           payload = excluded.payload,
                           stored_at = excluded.stored_at
                       WHERE excluded.stored_at > tiles.stored_at''',
                    (new_key, old_key),
                )
                conn.execute('DELETE FROM tiles WHERE key = ?', (old_key,))
            conn.commit()
            return len(legacy)

        migrated = await self._run(_do, StorageWriteError, 'Migrating tile keys')
        logger.info('Migrated %d tiles to normalized URLs', migrated)
        return migrated

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info('TileStore closed')

    async def __aenter__(self) -> TileStore:
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
