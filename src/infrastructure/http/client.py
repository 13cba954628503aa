from __future__ import annotations

import os
import ssl
from pathlib import Path

import aiohttp
import certifi

from shared.constants import (
    APP_NAME,
    FETCH_TIMEOUT_S,
    HTTP_CONNECTION_LIMIT,
    HTTP_USER_AGENT,
    TILE_CACHE_DIR,
)
from shared.portable import get_portable_path, is_portable_mode


def resolve_cache_dir() -> Path:
    """Directory holding the tile store file."""
    # Portable режим: кэш в папке приложения
    if is_portable_mode():
        return get_portable_path('tiles')

    raw_dir = Path(TILE_CACHE_DIR)
    if raw_dir.is_absolute():
        return raw_dir

    local = os.getenv('LOCALAPPDATA')
    if local:
        return (Path(local) / APP_NAME / '.cache' / 'tiles').resolve()
    xdg_cache = os.getenv('XDG_CACHE_HOME')
    if xdg_cache:
        return (Path(xdg_cache) / APP_NAME.lower() / 'tiles').resolve()
    # Fallback: user's home directory
    return (Path.home() / '.cache' / APP_NAME.lower() / 'tiles').resolve()


def make_http_session(
    *,
    timeout: float = FETCH_TIMEOUT_S,
    limit: int = HTTP_CONNECTION_LIMIT,
) -> aiohttp.ClientSession:
    """aiohttp session for tile servers with certifi CA bundle and a User-Agent."""
    # SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context, limit=limit)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers={'User-Agent': HTTP_USER_AGENT},
    )
