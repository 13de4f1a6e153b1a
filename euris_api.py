# euris_api.py
"""
EuRIS vessel position client.

Queries the EuRIS proxy for ships around a point, normalizes the proxy's
shifting field names into ShipRecords, and returns those inside the radius
sorted by distance.

Never raises: transport errors, timeouts and malformed payloads end up as
a failed FetchResult (empty ship list) so one bad poll can't stop the
ship checker.
"""
import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from geo import GeoPoint, calculate_distance
from ship_config import (
    COG_NOT_AVAILABLE,
    HEADING_NOT_AVAILABLE,
    IDENTITY_STRATEGIES,
    first_present,
    sanitize_vessel_name,
    valid_direction,
    valid_speed,
)
from ship_registry import ShipRecord

# Extra radius requested by get_ships_in_zone() before exact filtering
ZONE_QUERY_MARGIN_M = 500


class EurisError(Exception):
    """EuRIS proxy error."""
    pass


@dataclass
class FetchResult:
    """Outcome of one EuRIS query. Failed results always carry no ships."""
    ok: bool
    ships: list = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def success(cls, ships: list) -> "FetchResult":
        return cls(ok=True, ships=ships)

    @classmethod
    def failure(cls, error: str) -> "FetchResult":
        return cls(ok=False, ships=[], error=error)


def extract_ships(payload: Any) -> list[dict]:
    """
    Pull the raw ship list out of a proxy response.

    Accepts {"ships": [...]}, a bare list, or a GeoJSON FeatureCollection.

    Raises:
        EurisError: payload has none of the known shapes
    """
    if not payload:
        return []

    if isinstance(payload, list):
        return [s for s in payload if isinstance(s, dict)]

    if not isinstance(payload, dict):
        raise EurisError(f"Unexpected response type: {type(payload).__name__}")

    if isinstance(payload.get("ships"), list):
        return [s for s in payload["ships"] if isinstance(s, dict)]

    if isinstance(payload.get("features"), list):
        ships = []
        for feature in payload["features"]:
            if not isinstance(feature, dict):
                continue
            ship = dict(feature.get("properties") or {})
            coordinates = (feature.get("geometry") or {}).get("coordinates")
            if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
                # GeoJSON order is [lon, lat]
                ship["lon"] = coordinates[0]
                ship["lat"] = coordinates[1]
            ships.append(ship)
        return ships

    raise EurisError(f"Unexpected response keys: {sorted(payload)[:5]}")


def _as_float(value: Any) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def normalize_ship(raw: dict, center: GeoPoint,
                   identity_fn: Callable[[dict], Optional[str]]) -> Optional[ShipRecord]:
    """
    Convert one raw proxy entry into a ShipRecord.

    Returns None if the entry has no usable position or identity.
    """
    lat = _as_float(first_present(raw, "lat"))
    lon = _as_float(first_present(raw, "lon"))
    if lat is None or lon is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None

    mmsi = first_present(raw, "mmsi")
    track_id = first_present(raw, "track_id")
    identity = identity_fn({"mmsi": mmsi, "track_id": track_id})
    if identity is None:
        return None

    timestamp = first_present(raw, "timestamp")

    return ShipRecord(
        identity=identity,
        name=sanitize_vessel_name(first_present(raw, "name")) or "Unknown",
        lat=lat,
        lon=lon,
        distance=calculate_distance(center.lat, center.lon, lat, lon),
        mmsi=str(mmsi) if mmsi is not None else None,
        track_id=str(track_id) if track_id is not None else None,
        course=valid_direction(first_present(raw, "course"), COG_NOT_AVAILABLE),
        speed=valid_speed(first_present(raw, "speed")),
        heading=valid_direction(first_present(raw, "heading"), HEADING_NOT_AVAILABLE),
        ship_type=first_present(raw, "ship_type"),
        length=_as_float(first_present(raw, "length")),
        width=_as_float(first_present(raw, "width")),
        timestamp=str(timestamp) if timestamp is not None else datetime.now(timezone.utc).isoformat(),
    )


class EurisClient:
    """
    Fetches ships from the EuRIS proxy with per-attempt timeout and retries.

    Tracks consecutive failures for the health endpoint.
    """

    def __init__(self, api_url: str, timeout: float = 10.0, retry_attempts: int = 2,
                 retry_delay: float = 2.0, identity_key: str = "track",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.identity_fn = IDENTITY_STRATEGIES[identity_key]
        self._transport = transport  # injectable for tests
        self.last_fetch: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.failure_count = 0

    async def fetch(self, center: GeoPoint, radius_m: float) -> FetchResult:
        """
        Query ships within radius_m of center.

        Returns:
            FetchResult with ships sorted by ascending distance, or a failure
        """
        now = datetime.now(timezone.utc)
        logger.debug(f"Fetching ships from EuRIS around {center.lat},{center.lon} (radius {radius_m}m)")

        try:
            payload = await self._request(center, radius_m)
            raw_ships = extract_ships(payload)

            ships = []
            for raw in raw_ships:
                ship = normalize_ship(raw, center, self.identity_fn)
                if ship is None:
                    logger.debug(f"EuRIS: dropped entry without position/identity: {str(raw)[:80]}")
                    continue
                if ship.distance <= radius_m:
                    ships.append(ship)
            ships.sort(key=lambda s: s.distance)

        except Exception as e:
            self.failure_count += 1
            self.last_error = str(e)[:100]
            logger.error(f"EuRIS: {self.last_error} (failure #{self.failure_count})")
            return FetchResult.failure(self.last_error)

        finally:
            self.last_fetch = now

        if self.failure_count > 0:
            logger.info(f"EuRIS: Recovered after {self.failure_count} failures")
        self.failure_count = 0
        self.last_error = None

        logger.info(f"EuRIS: {len(raw_ships)} ships received, {len(ships)} within {radius_m}m")
        return FetchResult.success(ships)

    async def fetch_ships(self, lat: float, lon: float, radius_m: float) -> list[ShipRecord]:
        """Ships within radius_m of (lat, lon); empty list on failure."""
        result = await self.fetch(GeoPoint(lat, lon), radius_m)
        return result.ships

    async def get_ships_in_zone(self, lat: float, lon: float, zone_radius_m: float) -> list[ShipRecord]:
        """Query slightly wider than the zone, then filter exactly to it."""
        ships = await self.fetch_ships(lat, lon, zone_radius_m + ZONE_QUERY_MARGIN_M)
        return [s for s in ships if s.distance <= zone_radius_m]

    async def _request(self, center: GeoPoint, radius_m: float) -> Any:
        """GET the proxy with retries. Raises EurisError once attempts run out."""
        params = {"lat": center.lat, "lon": center.lon, "radius": radius_m}
        last_error = "no attempt made"

        for attempt in range(self.retry_attempts):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    response = await client.get(self.api_url, params=params, timeout=self.timeout)
                    response.raise_for_status()
                    return response.json()
            except httpx.TimeoutException:
                last_error = "request timeout"
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
            except (httpx.HTTPError, ValueError) as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < self.retry_attempts - 1:
                logger.debug(f"EuRIS: attempt {attempt + 1} failed ({last_error}), retrying")
                await asyncio.sleep(self.retry_delay)

        raise EurisError(f"EuRIS API {last_error} after {self.retry_attempts} attempts")

    def status(self) -> dict:
        """Fetch health for the /health endpoint."""
        return {
            "ok": self.failure_count == 0,
            "last_fetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "last_error": self.last_error,
            "failure_count": self.failure_count,
        }
