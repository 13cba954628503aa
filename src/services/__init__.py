"""Services package - tile cache facade and settings persistence."""

from services.settings_service import SettingsService, default_settings_dir
from services.tile_cache_service import TileCacheService

__all__ = [
    'SettingsService',
    'TileCacheService',
    'default_settings_dir',
]
