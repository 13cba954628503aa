"""Progress reporting and cooperative cancellation.

A long caching run reports through a ``ProgressSink`` and polls a
``CancelToken`` at batch boundaries. Front-ends pick the sink that suits
them: plain callbacks, an asyncio queue consumed as a stream, or the
console bar used by the CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TextIO, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CancelToken(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


class EventCancelToken:
    """CancelToken backed by a ``threading.Event``.

    Safe to cancel from a UI thread while the event loop polls it.
    """

    def __init__(self, event: threading.Event | None = None) -> None:
        self._event = event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()


class ProgressSink(Protocol):
    """Receives progress of a caching run.

    ``on_warning``, ``on_complete`` and ``on_cancel`` are optional; the run
    looks them up with ``getattr``.
    """

    def on_progress(self, done: int, total: int, cancel: Callable[[], None]) -> None: ...


@dataclass(frozen=True)
class ProgressEvent:
    done: int
    total: int

    @property
    def fraction(self) -> float:
        return self.done / self.total if self.total else 1.0


def notify(sink: object | None, name: str, *args: object) -> None:
    """Call optional sink hook *name*; sink errors are logged and dropped."""
    if sink is None:
        return
    cb = getattr(sink, name, None)
    if cb is None:
        return
    try:
        cb(*args)
    except Exception:
        logger.exception('Progress sink %s.%s failed', type(sink).__name__, name)


class CallbackProgressSink:
    """Adapter for the plain ``on_progress / on_complete / on_cancel`` callbacks."""

    def __init__(
        self,
        on_progress: Callable[[int, int, Callable[[], None]], None] | None = None,
        on_complete: Callable[[str], None] | None = None,
        on_cancel: Callable[[], None] | None = None,
        on_warning: Callable[[str], None] | None = None,
    ) -> None:
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_cancel = on_cancel
        self._on_warning = on_warning

    def on_progress(self, done: int, total: int, cancel: Callable[[], None]) -> None:
        if self._on_progress is not None:
            self._on_progress(done, total, cancel)

    def on_complete(self, message: str) -> None:
        if self._on_complete is not None:
            self._on_complete(message)

    def on_cancel(self) -> None:
        if self._on_cancel is not None:
            self._on_cancel()

    def on_warning(self, text: str) -> None:
        if self._on_warning is not None:
            self._on_warning(text)


class QueueProgressSink:
    """ProgressSink that pushes events into an ``asyncio.Queue`` for streaming."""

    def __init__(self, queue: asyncio.Queue | None = None) -> None:
        self.queue: asyncio.Queue = queue or asyncio.Queue()
        self.warnings: list[str] = []
        self.cancel_fn: Callable[[], None] | None = None

    def on_progress(self, done: int, total: int, cancel: Callable[[], None]) -> None:
        self.cancel_fn = cancel
        self.queue.put_nowait(ProgressEvent(done, total))

    def on_warning(self, text: str) -> None:
        self.warnings.append(text)


class ConsoleProgress:
    """Progress bar for the CLI, rendered on a single terminal line.

    Warnings are left to the message channel (``print`` in the CLI).
    """

    def __init__(self, label: str = 'Caching', stream: TextIO | None = None) -> None:
        self.label = label
        self.done = 0
        self.total = 0
        self.start = time.monotonic()
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def _format_eta(self, remaining: float) -> str:
        if remaining == float('inf'):
            return '--:--'
        m, s = divmod(int(remaining), 60)
        h, m = divmod(m, 60)
        if h > 0:
            return f'{h:02d}:{m:02d}:{s:02d}'
        return f'{m:02d}:{s:02d}'

    def render(self) -> str:
        total = max(1, self.total)
        elapsed = max(1e-6, time.monotonic() - self.start)
        rps = self.done / elapsed
        remaining = (self.total - self.done) / rps if rps > 0 else float('inf')
        bar_len = 30
        filled = int(bar_len * min(self.done, total) / total)
        bar = '█' * filled + '░' * (bar_len - filled)
        return (
            f'{self.label}: [{bar}] {self.done}/{self.total} | {rps:4.1f}/s | ETA'
            f' {self._format_eta(remaining)}'
        )

    def on_progress(self, done: int, total: int, cancel: Callable[[], None]) -> None:
        with self._lock:
            self.done = done
            self.total = total
            with contextlib.suppress(OSError, ValueError):
                self._stream.write('\r' + self.render())
                self._stream.flush()

    def on_complete(self, message: str) -> None:
        with contextlib.suppress(OSError, ValueError):
            self._stream.write(f'\n{message}\n')
            self._stream.flush()
