"""Canonical storage keys for tile URLs.

Several providers rotate the same tile across lettered CDN subdomains
(``a.tile.openstreetmap.org``, ``b.tile...``). All of them map to one bare
host so a tile is stored once no matter which subdomain served it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SubdomainProvider:
    """A tile provider whose host is served from rotating subdomains."""

    canonical_host: str
    rotating_prefixes: tuple[str, ...]
    _pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)
    _canonical_pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        host = re.escape(self.canonical_host)
        prefixes = '|'.join(re.escape(p) for p in self.rotating_prefixes)
        pattern = re.compile(
            rf'^https?://(?:{prefixes})\.{host}(?=[/:?#]|$)', re.IGNORECASE
        )
        canonical = re.compile(rf'^https://{host}(?=[/:?#]|$)', re.IGNORECASE)
        # frozen dataclass
        object.__setattr__(self, '_pattern', pattern)
        object.__setattr__(self, '_canonical_pattern', canonical)

    @property
    def canonical_origin(self) -> str:
        return f'https://{self.canonical_host}'

    def matches(self, url: str) -> bool:
        return self._pattern.match(url) is not None

    def is_canonical(self, url: str) -> bool:
        return self._canonical_pattern.match(url) is not None

    def canonicalize(self, url: str) -> str:
        return self._pattern.sub(self.canonical_origin, url, count=1)

    def variants(self, canonical_url: str) -> list[str]:
        """Rotated-subdomain spellings of an already canonical URL."""
        rest = canonical_url[len(self.canonical_origin):]
        return [
            f'https://{prefix}.{self.canonical_host}{rest}'
            for prefix in self.rotating_prefixes
        ]


SUBDOMAIN_PROVIDERS: tuple[SubdomainProvider, ...] = (
    SubdomainProvider('tile.openstreetmap.org', ('a', 'b', 'c')),
    SubdomainProvider('tile.opentopomap.org', ('a', 'b', 'c')),
    SubdomainProvider('basemaps.cartocdn.com', ('a', 'b', 'c', 'd')),
)


def canonicalize(
    url: str,
    providers: tuple[SubdomainProvider, ...] = SUBDOMAIN_PROVIDERS,
) -> str:
    """Map any rotated-subdomain URL to its provider's bare host.

    Pure and idempotent; URLs of unknown providers are returned unchanged.
    """
    for provider in providers:
        if provider.matches(url):
            return provider.canonicalize(url)
    return url


def url_variants(
    url: str,
    providers: tuple[SubdomainProvider, ...] = SUBDOMAIN_PROVIDERS,
) -> list[str]:
    """Legacy storage keys under which the tile at *url* may still live.

    The canonical key itself is not included. Empty for unknown providers.
    """
    canonical = canonicalize(url, providers)
    for provider in providers:
        if provider.is_canonical(canonical):
            return [v for v in provider.variants(canonical) if v != canonical]
    return []


def is_canonical(
    url: str,
    providers: tuple[SubdomainProvider, ...] = SUBDOMAIN_PROVIDERS,
) -> bool:
    return canonicalize(url, providers) == url
