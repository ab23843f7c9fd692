"""
Runtime configuration for the tide service.

Every value can be overridden by an environment variable. A `.env` file at the
project root is loaded first so API keys can be kept out of the shell.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent

load_dotenv(PROJECT_ROOT / '.env')


def _get_float_env(key: str, default: float) -> float:
    """Get a float value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get an int value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


# =============================================================================
# Default location
# =============================================================================

# Used when a query cannot be geocoded at all
DEFAULT_LOCATION_NAME = os.environ.get('DEFAULT_LOCATION_NAME', 'Vigo')
DEFAULT_LOCATION_LAT = _get_float_env('DEFAULT_LOCATION_LAT', 42.2406)
DEFAULT_LOCATION_LON = _get_float_env('DEFAULT_LOCATION_LON', -8.7206)


# =============================================================================
# Timeouts (seconds)
# =============================================================================

GEOCODER_TIMEOUT_SECONDS = _get_float_env('GEOCODER_TIMEOUT_SECONDS', 5.0)
PROVIDER_TIMEOUT_SECONDS = _get_float_env('PROVIDER_TIMEOUT_SECONDS', 8.0)
SUN_TIMEOUT_SECONDS = _get_float_env('SUN_TIMEOUT_SECONDS', 5.0)


# =============================================================================
# Station resolution
# =============================================================================

STATIONS_FILE = os.environ.get(
    'STATIONS_FILE', str(Path(__file__).parent / 'data' / 'stations.json')
)

# Nearest-station substitutes farther than this are rejected and the
# forecast falls back to the astronomical approximation
MAX_STATION_DISTANCE_KM = _get_float_env('MAX_STATION_DISTANCE_KM', 100.0)

# Name matches farther than this from the requested point are ignored
MAX_NAME_MATCH_DISTANCE_KM = _get_float_env('MAX_NAME_MATCH_DISTANCE_KM', 300.0)

# A provider answer with fewer events than this counts as a failure
MIN_PROVIDER_EVENTS = _get_int_env('MIN_PROVIDER_EVENTS', 1)


# =============================================================================
# Cache
# =============================================================================

TIDE_CACHE_TTL_HOURS = _get_float_env('TIDE_CACHE_TTL_HOURS', 6.0)

# Directory for the file-backed cache. Unset keeps the cache in memory.
TIDE_CACHE_DIR = os.environ.get('TIDE_CACHE_DIR', '')

# Stations kept by the in-memory cache before the least recently used is evicted
TIDE_CACHE_MAX_ENTRIES = _get_int_env('TIDE_CACHE_MAX_ENTRIES', 256)


# =============================================================================
# External services
# =============================================================================

# Nominatim usage policy requires an identifying User-Agent
GEOCODER_USER_AGENT = os.environ.get('GEOCODER_USER_AGENT', 'TideNow/1.0')

# WorldTides API Key
# Get your API key from https://www.worldtides.info/
WORLDTIDES_API_KEY = os.environ.get('WORLDTIDES_API_KEY', '')

# Storm Glass API Key
# Get your API key from https://stormglass.io/
STORMGLASS_API_KEY = os.environ.get('STORMGLASS_API_KEY', '')

# Security: Maximum response size from external APIs (1 MB)
MAX_RESPONSE_SIZE = _get_int_env('MAX_RESPONSE_SIZE', 1 * 1024 * 1024)

# Where Skyfield keeps downloaded ephemeris files
EPHEMERIS_DIR = os.environ.get('EPHEMERIS_DIR', str(PROJECT_ROOT))


# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
