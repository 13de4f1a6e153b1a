# ship_checker.py
"""
Ship arrival detection for TrackShip.

Polls EuRIS on a fixed interval and notifies registered devices the first
time a ship enters the notification zone. A ship stays known until it has
been out of the feed for longer than the grace period, so a flickering
signal does not trigger a second notification.

All state is in-memory only, no persistence.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from geo import GeoPoint, format_distance
from notifications import NotificationGateway, send_ship_detected_notification
from ship_config import ZoneThresholds, classify_zone
from ship_registry import CycleStatistics, ShipRecord, ShipRegistry
from shared import TIMEZONE

# Job ids inside the scheduler
CHECK_JOB_ID = "ship_check"
WARMUP_JOB_ID = "ship_check_warmup"


class ShipChecker:
    """
    Orchestrates ship checks.

    Manages:
    - Recurring check job plus a one-shot warm-up check after start
    - Arrival detection against the ShipRegistry
    - Eviction of ships absent longer than the grace period
    - One notification per arrival
    """

    def __init__(self, source, gateway: NotificationGateway, watch_point: GeoPoint,
                 zones: ZoneThresholds, registry: Optional[ShipRegistry] = None,
                 statistics: Optional[CycleStatistics] = None,
                 check_interval: float = 30, grace_period: timedelta = timedelta(minutes=5),
                 warmup_delay: float = 5, prune_invalid_recipients: bool = True,
                 scheduler_factory: Optional[Callable[[], AsyncIOScheduler]] = None):
        self.source = source
        self.gateway = gateway
        self.watch_point = watch_point
        self.zones = zones
        self.registry = registry if registry is not None else ShipRegistry()
        self.statistics = statistics if statistics is not None else CycleStatistics()
        self.check_interval = check_interval
        self.grace_period = grace_period
        self.warmup_delay = warmup_delay
        self.prune_invalid_recipients = prune_invalid_recipients
        self.recipients = None  # live set owned by the caller, read every cycle
        self._scheduler_factory = scheduler_factory or (lambda: AsyncIOScheduler(timezone=TIMEZONE))
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._cycle_lock = asyncio.Lock()
        self._in_flight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self, recipients=None) -> None:
        """
        Start periodic checks.

        Args:
            recipients: Live, mutable collection of recipient tokens. Read
                fresh on every cycle, never copied.
        """
        if self._scheduler is not None:
            logger.warning("Ship checker already running")
            return

        if recipients is not None:
            self.recipients = recipients

        scheduler = self._scheduler_factory()
        scheduler.add_job(
            self._scheduled_check, 'interval',
            seconds=self.check_interval, id=CHECK_JOB_ID,
            max_instances=1, coalesce=True, misfire_grace_time=int(self.check_interval)
        )
        # First check shortly after startup instead of waiting a full interval
        scheduler.add_job(
            self._warmup_check, 'date',
            run_date=datetime.now(timezone.utc) + timedelta(seconds=self.warmup_delay),
            id=WARMUP_JOB_ID
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(f"Ship checker started (interval {self.check_interval}s, "
                    f"zone {format_distance(self.zones.boundary)} around "
                    f"{self.watch_point.lat},{self.watch_point.lon})")

    def stop(self) -> None:
        """Stop scheduling checks. A cycle already running finishes normally."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Ship checker stopped")

    async def _warmup_check(self) -> None:
        logger.info("Initial ship check")
        await self._scheduled_check()

    async def _scheduled_check(self) -> None:
        # Scheduler shutdown cancels its job futures; the cycle itself must run to completion
        task = asyncio.ensure_future(self.check_ships())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        await asyncio.shield(task)

    async def check_ships(self, now: Optional[datetime] = None) -> None:
        """
        Run one check cycle: fetch, detect arrivals, evict, notify, record stats.

        Cycles never overlap. Errors are logged and end the cycle early; they
        never propagate to the scheduler.

        Args:
            now: Observation time (defaults to current UTC time after the fetch)
        """
        async with self._cycle_lock:
            try:
                await self._run_cycle(now)
            except Exception:
                logger.exception("Error in ship check cycle")

    async def _run_cycle(self, now: Optional[datetime]) -> None:
        logger.debug("Starting ship check cycle")

        # No one to notify - leave tracking state exactly as it is
        if not self.recipients:
            logger.info("No registered tokens, skipping check")
            return

        result = await self.source.fetch(self.watch_point, self.zones.boundary)
        if not result.ok:
            logger.warning(f"Ship fetch failed ({result.error}), continuing with no ships this cycle")
        ships = result.ships
        if now is None:
            now = datetime.now(timezone.utc)

        logger.info(f"Found {len(ships)} ships within {format_distance(self.zones.boundary)}")

        new_ships, removed = self.detect_arrivals(ships, now)

        notified = 0
        for ship in new_ships:
            try:
                if await self._notify_arrival(ship):
                    notified += 1
            except Exception:
                # Remaining arrivals still get notified
                logger.exception(f"Error notifying arrival of {ship.identity}")
                notified += 1

        self.statistics.record_cycle(now, len(ships), notified)

        logger.info(f"Ship check cycle completed: {len(ships)} ships, {len(new_ships)} new, "
                    f"{len(self.registry)} known, {len(removed)} removed")

    def detect_arrivals(self, ships: list[ShipRecord], now: datetime) -> tuple[list[ShipRecord], list[ShipRecord]]:
        """
        Merge this cycle's ships into the registry.

        Args:
            ships: Ships currently within the notification zone
            now: Observation time

        Returns:
            Tuple of (new arrivals, evicted ships)

        Raises:
            ValueError: a ship has no identity (raised before any state change)
        """
        current_identities = set()
        for ship in ships:
            if not ship.identity:
                raise ValueError(f"Ship record without identity: {ship!r}")
            current_identities.add(ship.identity)

        new_ships = []
        for ship in ships:
            if self.registry.upsert(ship, now):
                new_ships.append(ship)
                logger.info(f"New ship detected: {ship.name} ({ship.identity}) at {format_distance(ship.distance)}")

        removed = []
        for identity in self.registry.all_identities() - current_identities:
            record = self.registry.get(identity)
            if now - record.last_seen > self.grace_period:
                self.registry.remove(identity)
                removed.append(record)
                logger.info(f"Removing ship from memory: {record.name} ({identity})")

        return new_ships, removed

    async def _notify_arrival(self, ship: ShipRecord) -> bool:
        """
        Notify every current recipient. Outcome never changes tracking state.

        Returns:
            True if a dispatch was attempted
        """
        recipients = list(self.recipients or ())
        if not recipients:
            logger.info(f"No recipients left for {ship.identity}, notification skipped")
            return False

        zone = classify_zone(ship.distance, self.zones)
        outcome = await send_ship_detected_notification(self.gateway, recipients, ship, zone)

        if outcome.errors:
            logger.warning(f"Notification for {ship.identity}: {outcome.errors} error(s), not retried")

        # Only sets can be pruned in place
        if self.prune_invalid_recipients and hasattr(self.recipients, "discard"):
            for token in outcome.invalid_recipients:
                if token in self.recipients:
                    self.recipients.discard(token)
                    logger.info(f"Pruned invalid token {token[:20]}... ({len(self.recipients)} remaining)")

        return True

    def get_stats(self) -> dict:
        """Read-only snapshot for diagnostics."""
        ships = self.registry.snapshot()
        return {
            "is_running": self.is_running,
            "known_ships_count": len(ships),
            "known_ships": [{
                "identity": ship.identity,
                "mmsi": ship.mmsi,
                "name": ship.name,
                "distance": ship.distance,
                "zone": classify_zone(ship.distance, self.zones),
                "first_seen": ship.first_seen.isoformat() if ship.first_seen else None,
                "last_seen": ship.last_seen.isoformat() if ship.last_seen else None,
            } for ship in ships],
        }
