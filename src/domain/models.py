from __future__ import annotations

import random
import re
from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator, model_validator

from shared.constants import (
    CACHE_BATCH_PAUSE_S,
    CACHE_BATCH_SIZE,
    CACHE_PROGRESS_EVERY_TILES,
    CACHE_SIZE_WARNING_MB,
    DEFAULT_BASE_MAP,
    DEFAULT_CACHE_RADIUS_KM,
    DEFAULT_CACHE_ZOOM_LEVELS,
    FETCH_MAX_ATTEMPTS,
    FETCH_RETRY_DELAY_S,
    FETCH_TIMEOUT_S,
    MAX_ZOOM,
    MIN_ZOOM,
    OFFLINE_MAX_ZOOM,
    OFFLINE_MIN_ZOOM,
    TILE_MAX_AGE_DAYS,
)
from tiles.normalizer import canonicalize

_SUBDOMAIN_HOST_RE = re.compile(r'\{s\}\.')
_REQUIRED_PLACEHOLDERS = ('{z}', '{x}', '{y}')


@dataclass(frozen=True, order=True)
class TileCoordinate:
    """One tile of the slippy-map grid; always inside ``[0, 2^zoom)`` on both axes."""

    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if self.zoom < 0:
            msg = f'Negative zoom: {self.zoom}'
            raise ValueError(msg)
        n = 2**self.zoom
        if not (0 <= self.x < n and 0 <= self.y < n):
            msg = f'Tile {self.zoom}/{self.x}/{self.y} outside grid of {n}x{n}'
            raise ValueError(msg)

    @property
    def path(self) -> str:
        return f'{self.zoom}/{self.x}/{self.y}'


class LatLngBounds(BaseModel):
    """Viewport bounds as reported by the map widget (WGS84 degrees)."""

    model_config = {'frozen': True}

    south: float = Field(ge=-90.0, le=90.0)
    west: float
    north: float = Field(ge=-90.0, le=90.0)
    east: float

    @model_validator(mode='after')
    def _check_order(self) -> LatLngBounds:
        if self.south > self.north:
            msg = f'south ({self.south}) must not exceed north ({self.north})'
            raise ValueError(msg)
        return self


class TileLayerDescriptor(BaseModel):
    """A tile layer as handed over by the map collaborator.

    ``url_template`` carries ``{z}``, ``{x}``, ``{y}`` and optionally ``{s}``
    for a rotating subdomain, in which case ``subdomains`` must be given.
    """

    model_config = {'frozen': True, 'extra': 'ignore'}

    name: str = ''
    url_template: str
    subdomains: tuple[str, ...] | None = None

    @field_validator('url_template')
    @classmethod
    def _check_template(cls, v: str) -> str:
        v = v.strip()
        missing = [p for p in _REQUIRED_PLACEHOLDERS if p not in v]
        if missing:
            msg = f'URL template is missing {", ".join(missing)}: {v!r}'
            raise ValueError(msg)
        return v

    @field_validator('subdomains')
    @classmethod
    def _empty_subdomains_to_none(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        return v or None

    @model_validator(mode='after')
    def _check_subdomains(self) -> TileLayerDescriptor:
        if '{s}' in self.url_template and not self.subdomains:
            msg = f'URL template uses {{s}} but no subdomains given: {self.url_template!r}'
            raise ValueError(msg)
        return self

    @property
    def rotates_subdomains(self) -> bool:
        return '{s}' in self.url_template

    @property
    def canonical_url_template(self) -> str:
        """Template with the subdomain placeholder removed."""
        template = _SUBDOMAIN_HOST_RE.sub('', self.url_template, count=1)
        return template.replace('{s}', '')

    def request_url(self, tile: TileCoordinate, rng: random.Random | None = None) -> str:
        """URL to download *tile* from, with a randomly chosen subdomain."""
        subdomain = ''
        if self.rotates_subdomains and self.subdomains:
            subdomain = (rng or random).choice(self.subdomains)
        return _fill(self.url_template, tile).replace('{s}', subdomain)

    def storage_key(self, tile: TileCoordinate) -> str:
        """Canonical store key for *tile* in this layer."""
        return canonicalize(_fill(self.canonical_url_template, tile))


def _fill(template: str, tile: TileCoordinate) -> str:
    return (
        template.replace('{z}', str(tile.zoom))
        .replace('{x}', str(tile.x))
        .replace('{y}', str(tile.y))
    )


class CacheSettings(BaseModel):
    """User-tunable caching settings, persisted as TOML."""

    model_config = {
        'extra': 'ignore',  # игнорировать устаревшие поля из старых файлов
        'validate_assignment': True,
    }

    # Радиус предварительного кэширования вокруг точки (км)
    radius_km: float = Field(default=DEFAULT_CACHE_RADIUS_KM, ge=0.0)
    # Уровни приближения для кэширования
    zoom_levels: list[int] = Field(default_factory=lambda: list(DEFAULT_CACHE_ZOOM_LEVELS))
    # Выбранная подложка (имя из каталога базовых карт)
    base_map: str = DEFAULT_BASE_MAP

    size_warning_mb: float = Field(default=CACHE_SIZE_WARNING_MB, gt=0.0)
    max_age_days: float = Field(default=TILE_MAX_AGE_DAYS, ge=0.0)

    # Диапазон зума, доступный без сети
    offline_min_zoom: int = Field(default=OFFLINE_MIN_ZOOM, ge=MIN_ZOOM, le=MAX_ZOOM)
    offline_max_zoom: int = Field(default=OFFLINE_MAX_ZOOM, ge=MIN_ZOOM, le=MAX_ZOOM)

    batch_size: int = Field(default=CACHE_BATCH_SIZE, gt=0)
    batch_pause_s: float = Field(default=CACHE_BATCH_PAUSE_S, ge=0.0)
    progress_every: int = Field(default=CACHE_PROGRESS_EVERY_TILES, gt=0)

    fetch_timeout_s: float = Field(default=FETCH_TIMEOUT_S, gt=0.0)
    fetch_max_attempts: int = Field(default=FETCH_MAX_ATTEMPTS, ge=1)
    fetch_retry_delay_s: float = Field(default=FETCH_RETRY_DELAY_S, ge=0.0)

    @field_validator('zoom_levels')
    @classmethod
    def _check_zoom_levels(cls, v: list[int]) -> list[int]:
        bad = [z for z in v if not (MIN_ZOOM <= z <= MAX_ZOOM)]
        if bad:
            msg = f'Zoom levels out of range {MIN_ZOOM}..{MAX_ZOOM}: {bad}'
            raise ValueError(msg)
        return sorted(set(v))

    @model_validator(mode='after')
    def _check_offline_band(self) -> CacheSettings:
        if self.offline_min_zoom > self.offline_max_zoom:
            msg = (
                f'offline_min_zoom ({self.offline_min_zoom}) must not exceed '
                f'offline_max_zoom ({self.offline_max_zoom})'
            )
            raise ValueError(msg)
        return self

    @property
    def size_warning_bytes(self) -> int:
        return int(self.size_warning_mb * 1024 * 1024)

    def is_servable_offline(self, zoom: int) -> bool:
        return self.offline_min_zoom <= zoom <= self.offline_max_zoom
