from enum import Enum

# Имя приложения (используется в путях кэша и логов)
APP_NAME = 'OfflineTiles'

# Длина экватора для сферического Web Mercator (метры)
EARTH_CIRCUMFERENCE_M = 40075016.686

# Базовый размер тайла Web Mercator (пикселей)
TILE_SIZE = 256

# Границы мира в градусах для проекции
WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0

# Предельная широта Web Mercator (градусы)
MERCATOR_MAX_LAT_DEG = 85.0511287798

# Допустимый диапазон уровней приближения
MIN_ZOOM = 0
MAX_ZOOM = 22

# --- Загрузка тайлов

# Таймаут одной попытки загрузки тайла (секунды)
FETCH_TIMEOUT_S = 15.0

# Число попыток загрузки тайла при пакетном кэшировании
FETCH_MAX_ATTEMPTS = 3

# Пауза между попытками (секунды), без экспоненты
FETCH_RETRY_DELAY_S = 1.0

# Лимит одновременных соединений aiohttp
HTTP_CONNECTION_LIMIT = 40

# Заголовок User-Agent (tile.openstreetmap.org требует его)
HTTP_USER_AGENT = 'OfflineTiles/1.0 (+tile cache)'

# Успешные коды HTTP: [200, 300)
HTTP_2XX_MIN = 200
HTTP_2XX_MAX = 300

# --- Пакетное кэширование

# Число тайлов, загружаемых одновременно в одном пакете
CACHE_BATCH_SIZE = 20

# Как часто сообщать о прогрессе (каждые N тайлов)
CACHE_PROGRESS_EVERY_TILES = 10

# Пауза после каждого пакета (секунды)
CACHE_BATCH_PAUSE_S = 0.25

# Логировать память каждые N обработанных тайлов
CACHE_LOG_MEMORY_EVERY_TILES = 500

# --- Хранилище тайлов

# Имя файла SQLite внутри каталога кэша
TILE_STORE_FILENAME = 'tiles.sqlite'

# Относительный каталог кэша (используется, если не задан явно)
TILE_CACHE_DIR = '.cache/tiles'

# Возраст тайлов для очистки по умолчанию (дни)
TILE_MAX_AGE_DAYS = 7

# Возраст тайлов для агрессивной очистки при превышении лимита (дни)
TILE_MAX_AGE_DAYS_OVER_LIMIT = 3

# Порог предупреждения о размере кэша (МБ)
CACHE_SIZE_WARNING_MB = 500

BYTES_PER_MB = 1024 * 1024
SECONDS_PER_DAY = 24 * 60 * 60

# --- Офлайн-режим

# Уровни приближения, доступные без сети (включительно)
OFFLINE_MIN_ZOOM = 11
OFFLINE_MAX_ZOOM = 14

# --- Настройки пользователя по умолчанию

DEFAULT_CACHE_RADIUS_KM = 10.0
DEFAULT_CACHE_ZOOM_LEVELS = (11, 12, 13, 14)
DEFAULT_BASE_MAP = 'OpenStreetMap'

SETTINGS_FILENAME = 'cache_settings.toml'

# Имя лог-файла CLI
LOG_FILENAME = 'offline_tiles.log'


class RunOutcome(str, Enum):
    COMPLETE = 'COMPLETE'
    PARTIAL = 'PARTIAL'
    CANCELLED = 'CANCELLED'


class FetchErrorKind(str, Enum):
    TIMEOUT = 'TIMEOUT'
    HTTP_STATUS = 'HTTP_STATUS'
    TRANSPORT = 'TRANSPORT'

# Portable режим: маркер в имени исполняемого файла
PORTABLE_MARKER = '_portable'
# Поддиректории данных относительно исполняемого файла в portable режиме
PORTABLE_DIRS = {
    'tiles': 'cache/tiles',
    'settings': 'configs',
    'logs': 'logs',
}
