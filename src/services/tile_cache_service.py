"""
Facade of the offline tile cache for UI and map collaborators.

Wires the store, fetchers, background writer and resolver together using
CacheSettings, and turns soft failures into one-line user messages.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from domain.basemaps import layers_for_base_map
from domain.models import CacheSettings
from shared.constants import BYTES_PER_MB, TILE_MAX_AGE_DAYS_OVER_LIMIT, RunOutcome
from shared.progress import notify
from tiles.coverage import tiles_in_bounds, tiles_in_radius
from tiles.errors import CacheMissError, StorageError, ZoomRestrictedError
from tiles.executor import CacheRunSummary, run_cache_batches
from tiles.fetcher import make_batch_fetch, make_render_fetch
from tiles.resolver import TileResolver
from tiles.writer import CacheWriter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    import aiohttp

    from domain.models import LatLngBounds, TileLayerDescriptor
    from shared.progress import CancelToken, ProgressSink
    from tiles.fetcher import FetchResult
    from tiles.store import EvictionResult, TileStore

logger = logging.getLogger(__name__)

Layers = 'Iterable[TileLayerDescriptor | Mapping[str, Any]]'


class TileCacheService:
    """Entry points for bulk caching, tile resolution and maintenance.

    Network access goes through *client* (created lazily with
    ``make_http_session`` when neither a client nor fetch callables are
    given). *batch_fetch* and *render_fetch* replace the network entirely,
    which is how tests drive the service.
    """

    def __init__(
        self,
        store: TileStore,
        *,
        settings: CacheSettings | None = None,
        client: aiohttp.ClientSession | None = None,
        batch_fetch: Callable[[str], Awaitable[FetchResult]] | None = None,
        render_fetch: Callable[[str], Awaitable[bytes]] | None = None,
        messages: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or CacheSettings()
        self._client = client
        self._owns_client = False
        self._batch_fetch = batch_fetch
        self._render_fetch = render_fetch
        self._messages = messages
        self.writer = CacheWriter(store)
        self._resolver: TileResolver | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def _session(self) -> aiohttp.ClientSession:
        if self._client is None:
            from infrastructure.http.client import make_http_session

            self._client = make_http_session(timeout=self.settings.fetch_timeout_s)
            self._owns_client = True
        return self._client

    def _get_batch_fetch(self) -> Callable[[str], Awaitable[FetchResult]]:
        if self._batch_fetch is None:
            self._batch_fetch = make_batch_fetch(
                self._session(),
                max_attempts=self.settings.fetch_max_attempts,
                timeout=self.settings.fetch_timeout_s,
                retry_delay=self.settings.fetch_retry_delay_s,
            )
        return self._batch_fetch

    @property
    def resolver(self) -> TileResolver:
        if self._resolver is None:
            render_fetch = self._render_fetch or make_render_fetch(
                self._session(), timeout=self.settings.fetch_timeout_s
            )
            self._resolver = TileResolver(
                self.store,
                render_fetch,
                self.writer,
                settings=self.settings,
            )
        return self._resolver

    def message(self, text: str) -> None:
        """Send a one-line user message to the notification sink."""
        logger.info('User message: %s', text)
        if self._messages is not None:
            try:
                self._messages(text)
            except Exception:
                logger.exception('Message sink failed')

    def _selected_layers(self) -> tuple[TileLayerDescriptor, ...] | None:
        try:
            return layers_for_base_map(self.settings.base_map)
        except KeyError:
            logger.warning('Base map %s not found, skipping caching', self.settings.base_map)
            return None

    def _not_started(self, message: str, sink: ProgressSink | None) -> CacheRunSummary:
        notify(sink, 'on_complete', message)
        return CacheRunSummary(RunOutcome.COMPLETE, message, 0, 0, 0, 0)

    async def _run(
        self,
        tiles: Iterable[Any],
        layers: Layers,
        sink: ProgressSink | None,
        cancel: CancelToken | None,
    ) -> CacheRunSummary:
        s = self.settings
        summary = await run_cache_batches(
            tiles,
            layers,
            store=self.store,
            fetch=self._get_batch_fetch(),
            sink=sink,
            cancel=cancel,
            batch_size=s.batch_size,
            progress_every=s.progress_every,
            batch_pause=s.batch_pause_s,
            size_warning_bytes=s.size_warning_bytes,
        )
        if summary.size_warning:
            self.message(summary.size_warning)
        return summary

    # ------------------------------------------------------------------
    # Bulk caching
    # ------------------------------------------------------------------
    async def cache_region(
        self,
        center: tuple[float, float] | None,
        radius_km: float | None = None,
        zoom_levels: Iterable[int] | None = None,
        layers: Layers | None = None,
        *,
        sink: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> CacheRunSummary:
        """Pre-fetch every tile within *radius_km* of *center*.

        Radius and zoom levels default to the settings, layers to the
        selected base map.
        """
        if center is None:
            return self._not_started('Map or location not ready for caching.', sink)
        if layers is None:
            layers = self._selected_layers()
            if layers is None:
                return self._not_started('Selected base map not available for caching.', sink)
        lat, lng = center
        radius = self.settings.radius_km if radius_km is None else radius_km
        zooms = list(self.settings.zoom_levels if zoom_levels is None else zoom_levels)
        tiles = tiles_in_radius(lat, lng, radius, zooms)
        logger.info(
            'Caching region around (%.5f, %.5f), radius %.1f km, zooms %s: %d tiles',
            lat,
            lng,
            radius,
            zooms,
            len(tiles),
        )
        return await self._run(tiles, layers, sink, cancel)

    async def cache_viewport(
        self,
        bounds: LatLngBounds,
        zoom: int,
        layers: Layers | None = None,
        *,
        is_online: bool = True,
        sink: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> CacheRunSummary | None:
        """Cache the tiles visible in *bounds* at the current map *zoom*.

        Returns None without doing anything while offline or when *zoom* is
        not one of the configured cache zoom levels.
        """
        if not is_online:
            logger.info('Skipping visible tile caching: offline')
            return None
        if zoom not in self.settings.zoom_levels:
            logger.info(
                'Skipping caching: zoom %d not in cache zoom levels %s',
                zoom,
                self.settings.zoom_levels,
            )
            return None
        if layers is None:
            layers = self._selected_layers()
            if layers is None:
                return self._not_started('Selected base map not available for caching.', sink)
        tiles = tiles_in_bounds(bounds, zoom)
        logger.info('Caching %d visible tiles at zoom %d', len(tiles), zoom)
        return await self._run(tiles, layers, sink, cancel)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    async def resolve_tile(self, url: str, is_online: bool, zoom: int) -> bytes:
        """Tile bytes for the renderer; see :class:`TileResolver` for the policy."""
        try:
            return await self.resolver.resolve(url, is_online, zoom)
        except ZoomRestrictedError as e:
            self.message(str(e))
            raise
        except CacheMissError:
            self.message('This area is not cached. Please cache more tiles while online.')
            raise

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    async def get_cache_size_bytes(self) -> int | None:
        """Total payload bytes in the store, or None if it could not be read."""
        try:
            size = await self.store.compute_size()
        except StorageError as e:
            logger.error('Failed to compute tile cache size: %s', e)
            self.message(f'Failed to compute tile cache size: {e}')
            return None
        return size.total_size_bytes

    async def clear_cache(self) -> int | None:
        """Delete every tile. Returns bytes freed, or None if clearing failed."""
        try:
            size = await self.store.compute_size()
            await self.store.clear()
        except StorageError as e:
            logger.error('Failed to clear tile cache: %s', e)
            self.message(f'Failed to clear tile cache: {e}')
            return None
        self.message(f'Tile cache cleared successfully (freed {size.total_size_mb:.2f} MB).')
        return size.total_size_bytes

    async def evict_older_than(self, days: float | None = None) -> EvictionResult | None:
        max_age = self.settings.max_age_days if days is None else days
        try:
            return await self.store.clear_older_than(max_age)
        except StorageError as e:
            logger.error('Failed to clear old tiles: %s', e)
            self.message(f'Failed to clear old tiles: {e}')
            return None

    async def migrate_keys(self) -> int | None:
        try:
            return await self.store.migrate()
        except StorageError as e:
            logger.error('Failed to migrate tile cache keys: %s', e)
            self.message(f'Failed to migrate tile cache keys: {e}')
            return None

    async def startup_maintenance(self) -> None:
        """Open the store, migrate legacy keys and evict old tiles.

        Above the size warning threshold the shorter eviction age is used.
        Failures are reported as a message, never raised.
        """
        try:
            await self.store.init()
            await self.store.migrate()
            size = await self.store.compute_size()
            if size.total_size_bytes > self.settings.size_warning_bytes:
                result = await self.store.clear_older_than(TILE_MAX_AGE_DAYS_OVER_LIMIT)
                self.message(
                    f'Cleared {result.deleted_count} old tiles: '
                    f'{result.deleted_size_bytes / BYTES_PER_MB:.2f} MB freed.'
                )
            else:
                await self.store.clear_older_than(self.settings.max_age_days)
        except StorageError:
            logger.exception('Failed to initialize or manage tile cache')
            self.message('Tile caching setup failed.')
        logger.info('Tile cache logic initialized.')

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def close(self) -> None:
        await self.writer.stop()
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
        self.store.close()

    async def __aenter__(self) -> TileCacheService:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
