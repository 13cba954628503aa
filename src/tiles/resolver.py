"""Read path used by the tile renderer.

Online, tiles come from the network and are persisted in the background;
when the fetch fails, the store is consulted. Offline, only the configured
zoom band is served, straight from the store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from domain.models import CacheSettings
from tiles.errors import CacheMissError, NetworkFetchError, StorageError, ZoomRestrictedError
from tiles.normalizer import canonicalize, url_variants

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tiles.store import TileStore
    from tiles.writer import CacheWriter

logger = logging.getLogger(__name__)


class TileResolver:
    """Decides per tile request whether to serve from network or store.

    Variant keys (legacy subdomain spellings) are probed one after another
    after the canonical key, so a miss is reported only once every key has
    been checked.
    """

    def __init__(
        self,
        store: TileStore,
        fetch_once: Callable[[str], Awaitable[bytes]],
        writer: CacheWriter | None = None,
        *,
        settings: CacheSettings | None = None,
    ) -> None:
        self.store = store
        self.fetch_once = fetch_once
        self.writer = writer
        self.settings = settings or CacheSettings()

    async def resolve(self, url: str, is_online: bool, zoom: int) -> bytes:
        """Return tile bytes for *url*.

        Raises:
            ZoomRestrictedError: offline and *zoom* outside the servable band.
            CacheMissError: offline and the tile is not stored.
            NetworkFetchError: online fetch failed and the store had no copy.
        """
        if not is_online:
            if not self.settings.is_servable_offline(zoom):
                logger.info('Skipping tile request outside cached zoom levels: %s', url)
                s = self.settings
                raise ZoomRestrictedError(zoom, s.offline_min_zoom, s.offline_max_zoom)
            payload = await self.lookup(url)
            if payload is None:
                logger.debug('Tile not in cache: %s', url)
                raise CacheMissError(canonicalize(url))
            return payload

        key = canonicalize(url)
        try:
            payload = await self.fetch_once(url)
        except NetworkFetchError as e:
            logger.warning('Fetch error for tile during rendering: %s (%s)', url, e)
            cached = await self.lookup(url)
            if cached is None:
                raise
            logger.info('Tile loaded from cache (fallback): %s', key)
            return cached

        if self.writer is not None:
            self.writer.put(key, payload)
        return payload

    async def lookup(self, url: str) -> bytes | None:
        """Canonical key first, then legacy variants; store errors count as a miss."""
        for key in (canonicalize(url), *url_variants(url)):
            try:
                payload = await self.store.get(key)
            except StorageError as e:
                logger.warning('Cache error for tile %s: %s', key, e)
                return None
            if payload is not None:
                return payload
        return None
