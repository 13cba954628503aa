"""Command-line entry point for the offline tile cache."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from domain.basemaps import list_base_maps
from domain.models import LatLngBounds
from infrastructure.http.client import resolve_cache_dir
from services.settings_service import SettingsService
from services.tile_cache_service import TileCacheService
from shared.constants import APP_NAME, LOG_FILENAME, RunOutcome
from shared.diagnostics import get_store_file_info, log_memory_usage
from shared.portable import get_portable_path, is_portable_mode
from shared.progress import ConsoleProgress, EventCancelToken
from tiles.errors import TileCacheError
from tiles.store import TileStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def setup_logging(level: int = logging.INFO) -> Path:
    """Configure application logging to stdout and a file in the local state dir.

    Returns:
        Path of the log file.
    """
    if is_portable_mode():
        log_dir = get_portable_path('logs')
    else:
        local = os.getenv('LOCALAPPDATA')
        if local:
            log_dir = Path(local) / APP_NAME / 'log'
        else:
            xdg_state = os.getenv('XDG_STATE_HOME')
            base = Path(xdg_state) if xdg_state else Path.home() / '.local' / 'state'
            log_dir = base / APP_NAME.lower() / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
        force=True,
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='offline-tiles',
        description='Offline map tile cache: pre-fetch, inspect and maintain cached tiles',
    )
    parser.add_argument('--cache-dir', type=Path, default=None, help='Tile store directory')
    parser.add_argument(
        '--settings-dir', type=Path, default=None, help='Directory of cache_settings.toml'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    region = sub.add_parser('region', help='Cache tiles around a point')
    region.add_argument('--lat', type=float, required=True)
    region.add_argument('--lng', type=float, required=True)
    region.add_argument('--radius-km', type=float, default=None)
    region.add_argument('--zoom', type=int, nargs='+', default=None, help='Zoom levels')
    region.add_argument('--base-map', choices=list_base_maps(), default=None)

    viewport = sub.add_parser('viewport', help='Cache tiles of a map viewport')
    viewport.add_argument('--south', type=float, required=True)
    viewport.add_argument('--west', type=float, required=True)
    viewport.add_argument('--north', type=float, required=True)
    viewport.add_argument('--east', type=float, required=True)
    viewport.add_argument('--zoom', type=int, required=True)
    viewport.add_argument('--base-map', choices=list_base_maps(), default=None)

    sub.add_parser('size', help='Show cache size')
    sub.add_parser('clear', help='Delete every cached tile')

    evict = sub.add_parser('evict', help='Delete tiles older than N days')
    evict.add_argument('--days', type=float, default=None)

    sub.add_parser('migrate', help='Re-key tiles stored under subdomain URLs')

    resolve = sub.add_parser('resolve', help='Resolve one tile URL and print its size')
    resolve.add_argument('--url', required=True)
    resolve.add_argument('--zoom', type=int, required=True)
    resolve.add_argument('--offline', action='store_true', help='Serve from the store only')

    return parser


async def run_command(args: argparse.Namespace, service: TileCacheService) -> int:
    cmd = args.command
    if cmd in ('region', 'viewport'):
        if args.base_map:
            service.settings.base_map = args.base_map
        progress = ConsoleProgress(label='Caching')
        cancel = EventCancelToken()
        if cmd == 'region':
            summary = await service.cache_region(
                (args.lat, args.lng),
                radius_km=args.radius_km,
                zoom_levels=args.zoom,
                sink=progress,
                cancel=cancel,
            )
        else:
            bounds = LatLngBounds(
                south=args.south, west=args.west, north=args.north, east=args.east
            )
            summary = await service.cache_viewport(
                bounds, args.zoom, sink=progress, cancel=cancel
            )
            if summary is None:
                levels = service.settings.zoom_levels
                print(f'Zoom {args.zoom} is not one of the cache zoom levels {levels}.')
                return EXIT_FAILURE
        await service.writer.drain()
        log_memory_usage('after caching')
        return EXIT_OK if summary.outcome is RunOutcome.COMPLETE else EXIT_FAILURE

    if cmd == 'size':
        stats = await service.store.stats()
        info = get_store_file_info(service.store.cache_dir)
        print(f'Tiles: {stats.tile_count}')
        print(f'Size: {stats.total_size_bytes / 1024 / 1024:.2f} MB')
        print(f'Files on disk: {info["total_files"]} ({info["total_size_mb"]} MB)')
        return EXIT_OK

    if cmd == 'clear':
        freed = await service.clear_cache()
        return EXIT_OK if freed is not None else EXIT_FAILURE

    if cmd == 'evict':
        result = await service.evict_older_than(args.days)
        if result is None:
            return EXIT_FAILURE
        print(f'Cleared {result.deleted_count} old tiles: {result.deleted_size_mb:.2f} MB freed.')
        return EXIT_OK

    if cmd == 'migrate':
        migrated = await service.migrate_keys()
        if migrated is None:
            return EXIT_FAILURE
        print(f'Migrated {migrated} tiles to normalized URLs.')
        return EXIT_OK

    if cmd == 'resolve':
        payload = await service.resolve_tile(args.url, not args.offline, args.zoom)
        await service.writer.drain()
        print(f'{len(payload)} bytes')
        return EXIT_OK

    logger.error('Unknown command: %s', cmd)
    return EXIT_FAILURE


async def _amain(args: argparse.Namespace) -> int:
    settings = SettingsService(args.settings_dir).load()
    store = TileStore(args.cache_dir or resolve_cache_dir())
    async with TileCacheService(store, settings=settings, messages=print) as service:
        await service.startup_maintenance()
        return await run_command(args, service)


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    log_file = setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info('Starting %s (%s), log file %s', APP_NAME, args.command, log_file)

    try:
        return asyncio.run(_amain(args))
    except KeyboardInterrupt:
        logger.info('Interrupted by user')
        return EXIT_INTERRUPTED
    except TileCacheError as e:
        logger.error('%s', e)
        return EXIT_FAILURE
    except Exception as e:
        logger.error('Command %s failed: %s', args.command, e, exc_info=True)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
