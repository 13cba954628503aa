"""Error taxonomy for the tile cache.

Storage errors are soft: callers log them and keep going. Network errors
carry the failure kind so diagnostics can tell a timeout from an HTTP status
from a transport problem, even though retries treat them all alike.
"""

from __future__ import annotations

from shared.constants import FetchErrorKind


class TileCacheError(RuntimeError):
    """Base class for all tile cache errors."""


class StorageError(TileCacheError):
    """Tile store backend failure."""


class StorageInitError(StorageError):
    """The store could not be opened or created."""


class StorageReadError(StorageError):
    """A lookup or scan of the store failed."""


class StorageWriteError(StorageError):
    """A tile could not be persisted."""


class NetworkFetchError(TileCacheError):
    def __init__(
        self,
        url: str,
        kind: FetchErrorKind,
        detail: str = '',
        status: int | None = None,
    ) -> None:
        self.url = url
        self.kind = kind
        self.status = status
        self.detail = detail
        if kind is FetchErrorKind.HTTP_STATUS:
            msg = f'HTTP {status} for {url}'
        elif kind is FetchErrorKind.TIMEOUT:
            msg = f'Timeout fetching {url}'
        else:
            msg = f'Transport error fetching {url}: {detail}'
        super().__init__(msg)


class ZoomRestrictedError(TileCacheError):
    """Offline request for a zoom level outside the servable band."""

    def __init__(self, zoom: int, min_zoom: int, max_zoom: int) -> None:
        self.zoom = zoom
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        super().__init__(
            f'Offline: zoom restricted to levels {min_zoom}-{max_zoom} '
            f'for cached tiles (requested {zoom}).'
        )


class CacheMissError(TileCacheError):
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f'Tile not in cache: {url}')


class InvalidLayerError(TileCacheError, ValueError):
    """A tile layer descriptor failed validation."""
