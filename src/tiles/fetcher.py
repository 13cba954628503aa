"""Network access for single tiles.

Nothing here knows about caching: these functions only turn a URL into
bytes, with a per-attempt timeout and a fixed retry budget.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp

from shared.constants import (
    FETCH_MAX_ATTEMPTS,
    FETCH_RETRY_DELAY_S,
    FETCH_TIMEOUT_S,
    HTTP_2XX_MAX,
    HTTP_2XX_MIN,
    FetchErrorKind,
)
from tiles.errors import NetworkFetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of :func:`fetch_with_retry`."""

    success: bool
    payload: bytes | None = None
    error: NetworkFetchError | None = None
    attempts: int = 0

    @classmethod
    def ok(cls, payload: bytes, attempts: int = 1) -> FetchResult:
        return cls(success=True, payload=payload, attempts=attempts)

    @classmethod
    def failed(cls, error: NetworkFetchError, attempts: int = 1) -> FetchResult:
        return cls(success=False, error=error, attempts=attempts)


def _release(resp: object) -> None:
    # Освобождение ресурсов ответа (aiohttp.ClientResponse или mock)
    try:
        release = getattr(resp, 'release', None)
        if callable(release):
            release()
    except Exception as e:
        logger.debug('Failed to release HTTP response: %s', e, exc_info=True)


async def fetch_tile(
    client: aiohttp.ClientSession,
    url: str,
    *,
    timeout: float = FETCH_TIMEOUT_S,
) -> bytes:
    """Single GET of *url* bounded by *timeout* seconds.

    Raises:
        NetworkFetchError: with kind TIMEOUT, HTTP_STATUS (non-2xx) or TRANSPORT.
    """
    try:
        resp = await client.get(url, timeout=aiohttp.ClientTimeout(total=timeout))
        try:
            status = resp.status
            if not (HTTP_2XX_MIN <= status < HTTP_2XX_MAX):
                raise NetworkFetchError(url, FetchErrorKind.HTTP_STATUS, status=status)
            return await resp.read()
        finally:
            _release(resp)
    except NetworkFetchError:
        raise
    except asyncio.TimeoutError as e:
        raise NetworkFetchError(url, FetchErrorKind.TIMEOUT, detail=str(e)) from e
    except (aiohttp.ClientError, OSError) as e:
        raise NetworkFetchError(url, FetchErrorKind.TRANSPORT, detail=str(e)) from e


async def fetch_with_retry(
    client: aiohttp.ClientSession,
    url: str,
    max_attempts: int = FETCH_MAX_ATTEMPTS,
    *,
    timeout: float = FETCH_TIMEOUT_S,
    retry_delay: float = FETCH_RETRY_DELAY_S,
    fetch_once: Callable[..., Awaitable[bytes]] = fetch_tile,
) -> FetchResult:
    """Fetch *url* with up to *max_attempts* tries and a fixed pause between them.

    Every failure kind is retried the same way. After the last attempt the
    last observed error is returned; this never raises NetworkFetchError.
    """
    last_error: NetworkFetchError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            payload = await fetch_once(client, url, timeout=timeout)
            return FetchResult.ok(payload, attempts=attempt)
        except NetworkFetchError as e:
            last_error = e
            if e.kind is FetchErrorKind.TIMEOUT:
                logger.warning(
                    'Attempt %d timed out after %.0fs for %s', attempt, timeout, url
                )
            elif e.kind is FetchErrorKind.HTTP_STATUS:
                logger.warning('Attempt %d failed for %s: HTTP %s', attempt, url, e.status)
            else:
                logger.warning('Attempt %d error for %s: %s', attempt, url, e.detail)
        if attempt < max_attempts:
            await asyncio.sleep(retry_delay)
    if last_error is None:
        last_error = NetworkFetchError(url, FetchErrorKind.TRANSPORT, detail='no attempts made')
    return FetchResult.failed(last_error, attempts=max_attempts)


def make_batch_fetch(
    client: aiohttp.ClientSession,
    *,
    max_attempts: int = FETCH_MAX_ATTEMPTS,
    timeout: float = FETCH_TIMEOUT_S,
    retry_delay: float = FETCH_RETRY_DELAY_S,
) -> Callable[[str], Awaitable[FetchResult]]:
    """Bind *client* and retry policy into a ``url -> FetchResult`` callable."""

    async def _fetch(url: str) -> FetchResult:
        return await fetch_with_retry(
            client,
            url,
            max_attempts,
            timeout=timeout,
            retry_delay=retry_delay,
        )

    return _fetch


def make_render_fetch(
    client: aiohttp.ClientSession,
    *,
    timeout: float = FETCH_TIMEOUT_S,
) -> Callable[[str], Awaitable[bytes]]:
    """Single-attempt ``url -> bytes`` callable for the render path."""

    async def _fetch(url: str) -> bytes:
        return await fetch_tile(client, url, timeout=timeout)

    return _fetch
