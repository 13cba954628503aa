"""Batch cache orchestration.

Layers are processed one after another; tiles of a layer are processed in
fixed-size batches, each batch fanned out concurrently and awaited in full
before the next starts. Cancellation is polled before every layer and
every batch, so an in-flight batch always finishes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from domain.basemaps import coerce_layers
from shared.constants import (
    BYTES_PER_MB,
    CACHE_BATCH_PAUSE_S,
    CACHE_BATCH_SIZE,
    CACHE_LOG_MEMORY_EVERY_TILES,
    CACHE_PROGRESS_EVERY_TILES,
    RunOutcome,
)
from shared.diagnostics import log_memory_usage
from shared.progress import (
    EventCancelToken,
    ProgressEvent,
    QueueProgressSink,
    notify,
)
from tiles.errors import StorageError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
    from typing import Any

    from domain.models import TileCoordinate, TileLayerDescriptor
    from shared.progress import CancelToken, ProgressSink
    from tiles.fetcher import FetchResult
    from tiles.store import TileStore

logger = logging.getLogger(__name__)


@dataclass
class CacheRunState:
    """Counters of one run; owned and mutated by the batch loop only."""

    cached_count: int = 0
    failed_count: int = 0
    failed_urls: list[str] = field(default_factory=list)
    processed: int = 0
    cancelled: bool = False

    def record_failure(self, url: str) -> None:
        self.failed_count += 1
        self.failed_urls.append(url)


@dataclass
class CacheRunSummary:
    outcome: RunOutcome
    message: str
    cached_count: int
    failed_count: int
    processed: int
    total: int
    failed_urls: list[str] = field(default_factory=list)
    error: str | None = None
    size_warning: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.outcome is RunOutcome.CANCELLED


def summarize(state: CacheRunState, total: int, error: BaseException | None = None) -> CacheRunSummary:
    """Turn final counters into the one-line summary shown to the user."""
    counts = f'{state.cached_count} tiles cached, {state.failed_count} failed.'
    if state.cancelled:
        outcome = RunOutcome.CANCELLED
        message = f'Caching cancelled. {counts}'
    elif error is not None:
        outcome = RunOutcome.PARTIAL
        message = f'An error occurred during caching. {counts}'
    elif state.failed_count:
        outcome = RunOutcome.PARTIAL
        message = f'Caching complete. {counts}'
    else:
        outcome = RunOutcome.COMPLETE
        message = f'Caching complete. {state.cached_count} tiles cached.'
    return CacheRunSummary(
        outcome=outcome,
        message=message,
        cached_count=state.cached_count,
        failed_count=state.failed_count,
        processed=state.processed,
        total=total,
        failed_urls=list(state.failed_urls),
        error=None if error is None else str(error),
    )


async def cache_tile(
    url: str,
    key: str,
    *,
    store: TileStore,
    fetch: Callable[[str], Awaitable[FetchResult]],
    state: CacheRunState,
) -> None:
    """Store-or-fetch-then-store for one tile: *url* is requested, *key* stored."""
    try:
        cached = await store.exists(key)
    except StorageError as e:
        logger.warning('Cache lookup failed for %s, fetching: %s', key, e)
        cached = False

    if cached:
        state.cached_count += 1
        return

    result = await fetch(url)
    if not result.success or result.payload is None:
        logger.debug('Giving up on %s: %s', url, result.error)
        state.record_failure(url)
        return
    if await store.put(key, result.payload):
        state.cached_count += 1
    else:
        state.record_failure(url)


async def run_cache_batches(
    tiles: Iterable[TileCoordinate],
    layers: Iterable[TileLayerDescriptor | Mapping[str, Any]],
    *,
    store: TileStore,
    fetch: Callable[[str], Awaitable[FetchResult]],
    sink: ProgressSink | None = None,
    cancel: CancelToken | None = None,
    batch_size: int = CACHE_BATCH_SIZE,
    progress_every: int = CACHE_PROGRESS_EVERY_TILES,
    batch_pause: float = CACHE_BATCH_PAUSE_S,
    size_warning_bytes: int | None = None,
    rng: random.Random | None = None,
) -> CacheRunSummary:
    """Cache *tiles* for every layer in *layers*.

    The summary message is delivered exactly once to ``sink.on_complete``
    whatever the outcome, and the summary is also returned. When
    *size_warning_bytes* is set, the store size is checked afterwards and an
    over-limit (or failed) check is reported through ``sink.on_warning``
    and kept in ``summary.size_warning``.
    """
    tile_list = sorted(tiles)
    layer_list = coerce_layers(layers)
    token = cancel or EventCancelToken()
    state = CacheRunState()
    total = len(tile_list) * len(layer_list)
    cancel_notified = False

    def cancel_fn() -> None:
        nonlocal cancel_notified
        token.cancel()
        if not cancel_notified:
            cancel_notified = True
            notify(sink, 'on_cancel')

    if total == 0:
        message = 'No tiles to cache for this basemap.'
        notify(sink, 'on_complete', message)
        return CacheRunSummary(RunOutcome.COMPLETE, message, 0, 0, 0, 0)

    def report(done: int) -> None:
        if sink is not None:
            try:
                sink.on_progress(done, total, cancel_fn)
            except Exception:
                logger.exception('Progress callback failed')

    async def tracked(tile: TileCoordinate, layer: TileLayerDescriptor) -> None:
        url = layer.request_url(tile, rng)
        try:
            await cache_tile(url, layer.storage_key(tile), store=store, fetch=fetch, state=state)
        except Exception:
            logger.exception('Unexpected error caching %s for %s', tile.path, layer.name)
            state.record_failure(url)
        state.processed += 1
        if state.processed % progress_every == 0 or state.processed == total:
            report(state.processed)
        if state.processed % CACHE_LOG_MEMORY_EVERY_TILES == 0:
            log_memory_usage(f'after {state.processed} tiles')

    logger.info(
        'Caching %d tiles x %d layers (%d total), batch size %d',
        len(tile_list),
        len(layer_list),
        total,
        batch_size,
    )
    report(0)
    error: BaseException | None = None
    try:
        for layer in layer_list:
            if token.cancelled:
                break
            for start in range(0, len(tile_list), batch_size):
                if token.cancelled:
                    break
                batch = tile_list[start:start + batch_size]
                await asyncio.gather(*(tracked(tile, layer) for tile in batch))
                if batch_pause > 0:
                    await asyncio.sleep(batch_pause)
    except Exception as e:
        logger.exception('Unexpected error in batch cache run')
        error = e
    finally:
        state.cancelled = token.cancelled
        summary = summarize(state, total, error)
        logger.info('%s', summary.message)
        notify(sink, 'on_complete', summary.message)

    if size_warning_bytes is not None:
        summary.size_warning = await check_cache_size(store, size_warning_bytes, sink)
    return summary


async def check_cache_size(
    store: TileStore,
    size_warning_bytes: int,
    sink: ProgressSink | None = None,
) -> str | None:
    """Warn through *sink* when the store exceeds *size_warning_bytes*."""
    try:
        size = await store.compute_size()
    except StorageError as e:
        logger.warning('Failed to check cache size: %s', e)
        warning = 'Failed to check cache size.'
        notify(sink, 'on_warning', warning)
        return warning
    if size.total_size_bytes <= size_warning_bytes:
        return None
    warning = (
        f'Cache size exceeds {size_warning_bytes / BYTES_PER_MB:.0f} MB '
        f'({size.total_size_mb:.2f} MB). Consider clearing old tiles.'
    )
    logger.warning('%s', warning)
    notify(sink, 'on_warning', warning)
    return warning


async def iter_cache_run(
    tiles: Iterable[TileCoordinate],
    layers: Iterable[TileLayerDescriptor | Mapping[str, Any]],
    **kwargs: Any,
) -> AsyncIterator[ProgressEvent | CacheRunSummary]:
    """Stream a run: ``ProgressEvent`` items, then the ``CacheRunSummary``.

    Accepts the keyword arguments of :func:`run_cache_batches` except
    ``sink``. Closing the iterator early cancels the run.
    """
    sink = QueueProgressSink()
    task = asyncio.ensure_future(run_cache_batches(tiles, layers, sink=sink, **kwargs))
    try:
        while True:
            getter = asyncio.ensure_future(sink.queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue
            getter.cancel()
            break
        while not sink.queue.empty():
            yield sink.queue.get_nowait()
        yield task.result()
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
