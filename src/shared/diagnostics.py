"""
Diagnostics helpers: process memory and tile store file usage.

Used for periodic logging during long caching runs and by the CLI.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import psutil

logger = logging.getLogger(__name__)


def get_memory_info() -> dict[str, Any]:
    """Get process and system memory usage."""
    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        system_memory = psutil.virtual_memory()

        return {
            'process_rss_mb': round(memory_info.rss / 1024 / 1024, 2),
            'process_vms_mb': round(memory_info.vms / 1024 / 1024, 2),
            'system_total_mb': round(system_memory.total / 1024 / 1024, 2),
            'system_available_mb': round(
                system_memory.available / 1024 / 1024,
                2,
            ),
            'system_used_percent': system_memory.percent,
        }
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}


def log_memory_usage(context: str = '') -> None:
    """Quick memory usage logging."""
    memory_info = get_memory_info()
    context_label = f' ({context})' if context else ''
    logger.info(
        'Memory usage%s: RSS=%sMB, Available=%sMB',
        context_label,
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
    )


def get_store_file_info(cache_dir: Path) -> dict[str, Any]:
    """On-disk footprint of the SQLite files in *cache_dir* (db, -wal, -shm)."""
    sqlite_files = []
    if cache_dir.exists():
        for sqlite_file in sorted(cache_dir.glob('*.sqlite*')):
            try:
                stat = sqlite_file.stat()
            except OSError as e:
                logger.debug('Failed to stat SQLite file %s: %s', sqlite_file, e)
                continue
            sqlite_files.append(
                {
                    'file': str(sqlite_file),
                    'size_mb': round(stat.st_size / 1024 / 1024, 2),
                    'modified': time.ctime(stat.st_mtime),
                },
            )
    return {
        'cache_dir': str(cache_dir),
        'sqlite_files': sqlite_files,
        'total_files': len(sqlite_files),
        'total_size_mb': round(sum(f['size_mb'] for f in sqlite_files), 2),
    }
