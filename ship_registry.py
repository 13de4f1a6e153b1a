# ship_registry.py
"""
In-memory ship tracking state.

ShipRegistry is the ledger of ships we already notified about. All data is
process-lifetime only, no persistence.
"""
import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass
class ShipRecord:
    """Normalized ship position plus tracking timestamps."""
    identity: str
    name: str
    lat: float
    lon: float
    distance: int
    mmsi: Optional[str] = None
    track_id: Optional[str] = None
    course: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    ship_type: Any = None
    length: Optional[float] = None
    width: Optional[float] = None
    timestamp: Optional[str] = None  # position report time from the provider
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["first_seen"] = self.first_seen.isoformat() if self.first_seen else None
        data["last_seen"] = self.last_seen.isoformat() if self.last_seen else None
        return data


class ShipRegistry:
    """
    Mapping of ship identity -> last known ShipRecord.

    Single writer (the ship check cycle). Records go in and come out as
    copies so nothing outside the registry mutates tracked entries.
    """

    def __init__(self):
        self._ships: dict[str, ShipRecord] = {}

    def __len__(self):
        return len(self._ships)

    def __contains__(self, identity: str) -> bool:
        return identity in self._ships

    def upsert(self, record: ShipRecord, seen_at: datetime) -> bool:
        """
        Insert a newly seen ship or refresh a known one.

        Args:
            record: Ship as reported this cycle
            seen_at: Observation time

        Returns:
            True if the ship was not tracked before
        """
        existing = self._ships.get(record.identity)

        if existing is None:
            self._ships[record.identity] = dataclasses.replace(
                record, first_seen=seen_at, last_seen=seen_at
            )
            return True

        # Known ship - refresh dynamic fields, keep first_seen
        existing.lat = record.lat
        existing.lon = record.lon
        existing.distance = record.distance
        existing.speed = record.speed
        existing.course = record.course
        existing.heading = record.heading
        if record.name:
            existing.name = record.name
        if record.timestamp:
            existing.timestamp = record.timestamp
        existing.last_seen = seen_at
        return False

    def get(self, identity: str) -> Optional[ShipRecord]:
        record = self._ships.get(identity)
        return dataclasses.replace(record) if record else None

    def remove(self, identity: str) -> Optional[ShipRecord]:
        return self._ships.pop(identity, None)

    def all_identities(self) -> set[str]:
        return set(self._ships)

    def snapshot(self) -> list[ShipRecord]:
        """Copies of every tracked ship, closest first."""
        ships = [dataclasses.replace(r) for r in self._ships.values()]
        ships.sort(key=lambda r: r.distance)
        return ships


class CycleStatistics:
    """
    Process-wide ship check counters for diagnostics.

    Updated once per completed cycle, never used for control decisions.
    """

    def __init__(self):
        self.last_run: Optional[datetime] = None
        self.total_checks = 0
        self.last_ships_found = 0
        self.total_notifications_sent = 0  # attempts, not confirmed deliveries

    def record_cycle(self, run_at: datetime, ships_found: int, notifications: int) -> None:
        self.last_run = run_at
        self.total_checks += 1
        self.last_ships_found = ships_found
        self.total_notifications_sent += notifications

    def as_dict(self) -> dict:
        return {
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "total_checks": self.total_checks,
            "last_ships_found": self.last_ships_found,
            "total_notifications_sent": self.total_notifications_sent,
        }
