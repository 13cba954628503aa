"""Shared utilities and helpers."""
from shared.diagnostics import get_memory_info, log_memory_usage
from shared.progress import (
    CallbackProgressSink,
    ConsoleProgress,
    EventCancelToken,
    QueueProgressSink,
)

__all__ = [
    'CallbackProgressSink',
    'ConsoleProgress',
    'EventCancelToken',
    'QueueProgressSink',
    'get_memory_info',
    'log_memory_usage',
]
