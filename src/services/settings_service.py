from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from domain.models import CacheSettings
from shared.constants import APP_NAME, SETTINGS_FILENAME
from shared.portable import get_portable_path, is_portable_mode

logger = logging.getLogger(__name__)


def default_settings_dir() -> Path:
    """
    Determine the settings directory.

    1) Portable mode: <app dir>/configs.
    2) %APPDATA%/<app>/configs when APPDATA is set (Windows).
    3) $XDG_CONFIG_HOME/<app> or ~/.config/<app>.
    """
    if is_portable_mode():
        return get_portable_path('settings')
    appdata = os.getenv('APPDATA')
    if appdata:
        return Path(appdata) / APP_NAME / 'configs'
    xdg = os.getenv('XDG_CONFIG_HOME')
    base = Path(xdg) if xdg else Path.home() / '.config'
    return base / APP_NAME.lower()


class SettingsService:
    """Loads and stores CacheSettings as a TOML file.

    A missing or unreadable file yields defaults, so a broken settings file
    never blocks caching.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir) if base_dir else default_settings_dir()
        self.path = self.base_dir / SETTINGS_FILENAME

    def load(self) -> CacheSettings:
        if not self.path.exists():
            return CacheSettings()
        try:
            data = tomlkit.parse(self.path.read_text(encoding='utf-8'))
            return CacheSettings.model_validate(data.unwrap())
        except (OSError, TOMLKitError, ValidationError):
            logger.exception('Failed to load cache settings from %s, using defaults', self.path)
            return CacheSettings()

    def save(self, settings: CacheSettings | dict[str, Any]) -> Path:
        """Сохранение настроек в TOML (без атомарности и бэкапов)."""
        if not isinstance(settings, CacheSettings):
            settings = CacheSettings.model_validate(settings)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(tomlkit.dumps(settings.model_dump()), encoding='utf-8')
        logger.info('Cache settings saved to %s', self.path)
        return self.path

    def update(self, **fields: Any) -> CacheSettings:
        """Validate and persist a partial change on top of the stored settings."""
        current = self.load().model_dump()
        current.update(fields)
        settings = CacheSettings.model_validate(current)
        self.save(settings)
        return settings

    def reset(self) -> CacheSettings:
        if self.path.exists():
            self.path.unlink()
        return CacheSettings()
