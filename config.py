# config.py
import os
from dotenv import load_dotenv

from geo import GeoPoint
from ship_config import ZoneThresholds, IDENTITY_STRATEGIES

# Load environment variables from .env file
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def parse_zone_radii(raw: str) -> ZoneThresholds:
    """
    Parse "1000,2000,3000" into zone thresholds named zone1..zoneN.

    Raises ValueError on non-numeric, non-positive or unordered radii.
    """
    parts = [p.strip() for p in raw.split(',') if p.strip()]
    if not parts:
        raise ValueError("ZONE_RADII must list at least one radius")
    try:
        radii = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"ZONE_RADII must be integers in meters, got {raw!r}")
    return ZoneThresholds([(f"zone{i + 1}", r) for i, r in enumerate(radii)])


# Watch point (every distance is measured from here)
BASE_COORDS = GeoPoint(
    lat=_env_float('BASE_LAT', 48.853229),
    lon=_env_float('BASE_LON', 2.225328),
)

# Detection zones in meters - the last one is the notification boundary
ZONES = parse_zone_radii(os.getenv('ZONE_RADII', '1000,2000,3000'))

# Ship check cadence, in milliseconds like the legacy deployment files
CHECK_INTERVAL = _env_int('CHECK_INTERVAL', 30000)
if CHECK_INTERVAL < 1000:
    raise ValueError(f"CHECK_INTERVAL must be at least 1000 ms, got {CHECK_INTERVAL}")

# Delay before the warm-up check that follows startup (seconds)
WARMUP_DELAY = _env_float('WARMUP_DELAY', 5.0)

# A ship that leaves the zone stays known this long (seconds) so that it is
# not notified again if it comes straight back
SHIP_MEMORY_DURATION = _env_int('SHIP_MEMORY_DURATION', 5 * 60)

# Which upstream field identifies a ship: "track" or "mmsi"
IDENTITY_KEY = os.getenv('IDENTITY_KEY', 'track').strip().lower()
if IDENTITY_KEY not in IDENTITY_STRATEGIES:
    raise ValueError(f"IDENTITY_KEY must be one of {sorted(IDENTITY_STRATEGIES)}, got {IDENTITY_KEY!r}")

# EuRIS proxy
EURIS_CONFIG = {
    'api_url': os.getenv('EURIS_API_URL', 'https://bakabi.fr/trackship/api/euris-proxy.php'),
    'timeout': _env_float('EURIS_TIMEOUT', 10.0),
    'retry_attempts': _env_int('EURIS_RETRY_ATTEMPTS', 2),  # worst case stays under one check interval
    'retry_delay': _env_float('EURIS_RETRY_DELAY', 2.0),
}

# Push notifications
NOTIFICATION_CONFIG = {
    'expo_push_url': os.getenv('EXPO_PUSH_URL', 'https://exp.host/--/api/v2/push/send'),
    'max_tokens_per_request': 100,  # Expo limit
    'timeout': _env_float('PUSH_TIMEOUT', 15.0),
    'sound': 'default',
    'priority': 'high',
    'channel_id': 'default',
    'prune_invalid_tokens': _env_bool('PRUNE_INVALID_TOKENS', True),
}

# Firebase service account (native FCM tokens). Optional.
FIREBASE_CONFIG = {
    'project_id': os.getenv('FIREBASE_PROJECT_ID'),
    'private_key': os.getenv('FIREBASE_PRIVATE_KEY'),
    'client_email': os.getenv('FIREBASE_CLIENT_EMAIL'),
}

SERVER_CONFIG = {
    'host': os.getenv('HOST', '0.0.0.0'),
    'port': _env_int('PORT', 3000),
    'cors_origins': [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()],
}

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

TIMEZONE_NAME = os.getenv('TIMEZONE', 'Europe/Paris')
