"""Portable режим: все данные рядом с исполняемым файлом.

Режим включается, если имя исполняемого файла содержит PORTABLE_MARKER
(например, offline-tiles_portable.exe). Тогда хранилище тайлов, настройки
и логи лежат в поддиректориях PORTABLE_DIRS, а не в профиле пользователя.
"""

import sys
from pathlib import Path

from shared.constants import PORTABLE_DIRS, PORTABLE_MARKER


def is_portable_mode(exe: str | None = None) -> bool:
    """True, если *exe* (по умолчанию sys.argv[0]) запущен в portable режиме."""
    name = Path(exe or sys.argv[0]).name.lower()
    return PORTABLE_MARKER in name


def get_app_dir(exe: str | None = None) -> Path:
    return Path(exe or sys.argv[0]).resolve().parent


def get_portable_path(kind: str, exe: str | None = None) -> Path:
    """
    Путь к директории данных вида *kind* в portable режиме.

    Args:
        kind: 'tiles', 'settings' или 'logs'
        exe: путь к исполняемому файлу (по умолчанию sys.argv[0])

    Raises:
        KeyError: неизвестный вид данных

    """
    return get_app_dir(exe).joinpath(*PORTABLE_DIRS[kind].split('/'))
