"""Offline tile caching.

This package provides:
- canonicalize / url_variants: CDN subdomain normalization of tile URLs
- TileStore: SQLite-based persistent tile store with age-based eviction
- CacheWriter: background writer for fire-and-forget persistence
- tiles.coverage: tile enumeration for a radius or a viewport
- tiles.fetcher: single-tile HTTP fetch with timeout and retries
- tiles.executor: batched, cancellable bulk caching
- tiles.resolver: network-or-store read path for the renderer
"""

from tiles.errors import (
    CacheMissError,
    NetworkFetchError,
    StorageError,
    StorageInitError,
    StorageReadError,
    StorageWriteError,
    TileCacheError,
    ZoomRestrictedError,
)
from tiles.normalizer import canonicalize, url_variants
from tiles.store import CacheSize, CacheStats, EvictionResult, TileStore
from tiles.writer import CacheWriter, TileWriteRequest

__all__ = [
    'CacheMissError',
    'CacheSize',
    'CacheStats',
    'CacheWriter',
    'EvictionResult',
    'NetworkFetchError',
    'StorageError',
    'StorageInitError',
    'StorageReadError',
    'StorageWriteError',
    'TileCacheError',
    'TileStore',
    'TileWriteRequest',
    'ZoomRestrictedError',
    'canonicalize',
    'url_variants',
]
