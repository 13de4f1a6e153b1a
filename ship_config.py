# ship_config.py
"""
Configuration for ship tracking.

Contains:
- AIS data validation constants
- Detection zone thresholds and classification
- Upstream field-name variants
- Ship identity strategies
- Ship name sanitization
"""
from typing import Any, Callable, Iterable, Optional


# AIS data validation constants
# Standard AIS protocol values, shared by every upstream payload we normalize
SPEED_NOT_AVAILABLE = 102.3  # AIS special value for speed not available
HEADING_NOT_AVAILABLE = 511  # AIS special value for heading not available
COG_NOT_AVAILABLE = 360  # AIS special value for course over ground not available
DIRECTION_MAX_VALID = 360  # Heading and COG valid range is 0-359.9 (exclusive upper bound)

# Returned by classify_zone() for distances past the outermost zone
BEYOND_ZONE = "beyond"


class ZoneThresholds:
    """
    Concentric detection zones around the watch point.

    Zones are (name, radius_m) pairs with positive, strictly increasing
    radii. The outermost zone is the notification boundary: ships beyond
    it are not tracked at all.
    """

    def __init__(self, zones: Iterable[tuple[str, int]]):
        zones = [(str(name), radius) for name, radius in zones]
        if not zones:
            raise ValueError("At least one zone is required")

        previous = 0
        for name, radius in zones:
            if radius <= 0:
                raise ValueError(f"Zone {name} radius must be positive, got {radius}")
            if radius <= previous:
                raise ValueError(f"Zone radii must be strictly increasing ({name}: {radius} <= {previous})")
            previous = radius

        self._zones = tuple(zones)

    def __iter__(self):
        return iter(self._zones)

    def __len__(self):
        return len(self._zones)

    def __repr__(self):
        return f"ZoneThresholds({list(self._zones)!r})"

    @property
    def boundary(self) -> int:
        """Radius of the outermost zone (notification boundary), in meters."""
        return self._zones[-1][1]

    def radius_of(self, name: str) -> Optional[int]:
        for zone_name, radius in self._zones:
            if zone_name == name:
                return radius
        return None

    def as_dict(self) -> dict[str, int]:
        return dict(self._zones)


def classify_zone(distance_m: float, zones: ZoneThresholds) -> str:
    """
    Map a distance to the innermost zone that contains it.

    Args:
        distance_m: Distance from the watch point in meters
        zones: Zone thresholds (ascending radius)

    Returns:
        Zone name, or BEYOND_ZONE if outside every zone
    """
    for name, radius in zones:
        if radius >= distance_m:
            return name
    return BEYOND_ZONE


# Upstream field-name variants -> canonical field
# The EuRIS proxy has changed shape over time; first present key wins
FIELD_VARIANTS = {
    "mmsi": ("mmsi", "MMSI"),
    "track_id": ("trackId", "track_id", "sessionId", "session_id", "TRACKID"),
    "name": ("name", "shipname", "SHIPNAME"),
    "lat": ("lat", "latitude", "LATITUDE"),
    "lon": ("lon", "longitude", "LONGITUDE"),
    "course": ("course", "cog", "COG"),
    "speed": ("speed", "sog", "SOG"),
    "heading": ("heading", "HEADING"),
    "ship_type": ("shipType", "ship_type", "SHIP_TYPE"),
    "length": ("length", "A"),
    "width": ("width", "B"),
    "timestamp": ("timestamp", "time"),
}


def first_present(raw: dict, field: str) -> Any:
    """Return the first non-empty value among the variants of a canonical field."""
    for key in FIELD_VARIANTS[field]:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_key(value: Any) -> Optional[str]:
    if value is None:
        return None
    key = str(value).strip()
    return key or None


def track_identity(fields: dict) -> Optional[str]:
    """Prefer the upstream track/session id, fall back to MMSI."""
    return _as_key(fields.get("track_id")) or _as_key(fields.get("mmsi"))


def mmsi_identity(fields: dict) -> Optional[str]:
    """Prefer MMSI, fall back to the track/session id."""
    return _as_key(fields.get("mmsi")) or _as_key(fields.get("track_id"))


# Identity strategies, selected by IDENTITY_KEY.
# NOTE: a session id is only stable for one upstream session, so with "track"
# the same hull can be notified again after an upstream reconnect.
IDENTITY_STRATEGIES: dict[str, Callable[[dict], Optional[str]]] = {
    "track": track_identity,
    "mmsi": mmsi_identity,
}


def sanitize_vessel_name(name: Optional[str]) -> Optional[str]:
    """
    Clean vessel name for JSON/display.

    Removes control characters and normalizes whitespace.

    Args:
        name: Raw vessel name from the upstream feed

    Returns:
        Cleaned name or None if empty/invalid
    """
    if not name:
        return None
    name = str(name)
    # Per AIS, @ terminates the field
    name = name.split('@', 1)[0]
    # Remove non-printable and control characters
    name = ''.join(c for c in name if c.isprintable() and c not in '\t\n\r\v\f')
    # Normalize whitespace and strip
    name = ' '.join(name.split()).strip()
    if name.upper() in ('', 'UNKNOWN', 'N/A', 'NIL'):
        return None
    return name


def valid_direction(value: Any, not_available: float) -> Optional[float]:
    """Return a course/heading in degrees, or None for AIS "not available" values."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if value == not_available or not (0 <= value < DIRECTION_MAX_VALID):
        return None
    return value


def valid_speed(value: Any) -> Optional[float]:
    """Return speed over ground in knots, or None when unavailable."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if value < 0 or value >= SPEED_NOT_AVAILABLE:
        return None
    return value
