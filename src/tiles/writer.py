"""Background writer for fire-and-forget tile persistence.

The render path hands fetched tiles to CacheWriter and returns immediately;
a single asyncio task drains the queue into the TileStore.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tiles.store import TileStore

from shared.constants import CACHE_BATCH_SIZE

logger = logging.getLogger(__name__)

TILE_WRITE_QUEUE_SIZE = 1000


@dataclass
class TileWriteRequest:
    """Request to write a tile to the store."""

    key: str
    payload: bytes


class CacheWriter:
    """Asyncio background writer for the tile store.

    Features:
    - Non-blocking put(); drops (and logs) when the queue is full
    - Write failures are logged only, never raised to the caller
    - Graceful shutdown with drain

    Usage:
        writer = CacheWriter(store)
        writer.put(key, tile_bytes)   # inside a running event loop
        await writer.stop()           # waits for the queue to drain
    """

    def __init__(
        self,
        store: TileStore,
        max_queue_size: int | None = None,
    ) -> None:
        self.store = store
        self.max_queue_size = max_queue_size or TILE_WRITE_QUEUE_SIZE
        self._queue: asyncio.Queue[TileWriteRequest] | None = None
        self._task: asyncio.Task | None = None
        self._stats_written = 0
        self._stats_failed = 0
        self._stats_dropped = 0

    def start(self) -> None:
        """Start the writer task on the running loop."""
        if self.is_running():
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._task = asyncio.get_running_loop().create_task(self._writer_loop())
        logger.info('CacheWriter started')

    async def stop(self) -> None:
        """Drain pending writes and stop the writer task."""
        if self._task is None or self._queue is None:
            return
        await self._queue.join()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info(
            'CacheWriter stopped: %d tiles written, %d failed, %d dropped',
            self._stats_written,
            self._stats_failed,
            self._stats_dropped,
        )

    async def drain(self) -> None:
        """Wait until every queued write has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    def put(self, key: str, payload: bytes) -> bool:
        """Queue a tile for writing; starts the writer on first use.

        Returns:
            True if queued, False if the queue was full.
        """
        if not self.is_running():
            self.start()
        assert self._queue is not None
        try:
            self._queue.put_nowait(TileWriteRequest(key=key, payload=payload))
        except asyncio.QueueFull:
            self._stats_dropped += 1
            logger.warning('Write queue full, dropping tile %s', key)
            return False
        return True

    def queue_size(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> dict:
        """Get writer statistics."""
        return {
            'written': self._stats_written,
            'failed': self._stats_failed,
            'dropped': self._stats_dropped,
            'queue_size': self.queue_size(),
            'running': self.is_running(),
        }

    async def _writer_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            batch = [await queue.get()]
            while len(batch) < CACHE_BATCH_SIZE and not queue.empty():
                batch.append(queue.get_nowait())
            try:
                await self._write_batch(batch)
            finally:
                for _ in batch:
                    queue.task_done()

    async def _write_batch(self, batch: list[TileWriteRequest]) -> None:
        results = await asyncio.gather(
            *(self.store.put(req.key, req.payload) for req in batch),
            return_exceptions=True,
        )
        for req, ok in zip(batch, results):
            if ok is True:
                self._stats_written += 1
            else:
                self._stats_failed += 1
                if isinstance(ok, BaseException):
                    logger.warning('Failed to cache tile during rendering: %s (%s)', req.key, ok)
                else:
                    logger.warning('Failed to cache tile during rendering: %s', req.key)
