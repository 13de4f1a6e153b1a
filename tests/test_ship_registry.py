#!/usr/bin/env python3
"""
TrackShip Ship Registry Tests

Tests the ledger of already-notified ships:
- Insert vs refresh (first_seen must never move)
- Copies in and out
- Cycle statistics counters

Run with: python3 test_ship_registry.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from datetime import datetime, timedelta, timezone

from ship_registry import ShipRecord, ShipRegistry, CycleStatistics

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def ship(identity="T1", distance=850, **kwargs):
    kwargs.setdefault("name", "ALPHA")
    return ShipRecord(identity=identity, lat=48.86, lon=2.22, distance=distance, **kwargs)


class TestUpsert(unittest.TestCase):

    def setUp(self):
        self.registry = ShipRegistry()

    def test_insert_sets_both_timestamps(self):
        self.assertTrue(self.registry.upsert(ship(), T0))

        record = self.registry.get("T1")
        self.assertEqual(record.first_seen, T0)
        self.assertEqual(record.last_seen, T0)
        self.assertEqual(len(self.registry), 1)
        self.assertIn("T1", self.registry)

    def test_refresh_keeps_first_seen(self):
        self.registry.upsert(ship(distance=2500, speed=5.0), T0)
        later = T0 + timedelta(seconds=30)

        self.assertFalse(self.registry.upsert(ship(distance=1800, speed=6.5), later))

        record = self.registry.get("T1")
        self.assertEqual(record.first_seen, T0)
        self.assertEqual(record.last_seen, later)
        self.assertEqual(record.distance, 1800)
        self.assertEqual(record.speed, 6.5)
        self.assertEqual(len(self.registry), 1)

    def test_refresh_keeps_name_when_new_one_empty(self):
        self.registry.upsert(ship(name="ALPHA"), T0)
        self.registry.upsert(ship(name=""), T0 + timedelta(seconds=30))
        self.assertEqual(self.registry.get("T1").name, "ALPHA")

    def test_insert_does_not_mutate_caller_record(self):
        record = ship()
        self.registry.upsert(record, T0)
        self.assertIsNone(record.first_seen)

    def test_get_returns_copy(self):
        self.registry.upsert(ship(), T0)
        copy = self.registry.get("T1")
        copy.distance = 1
        self.assertEqual(self.registry.get("T1").distance, 850)

    def test_get_unknown(self):
        self.assertIsNone(self.registry.get("nope"))

    def test_remove(self):
        self.registry.upsert(ship(), T0)
        removed = self.registry.remove("T1")
        self.assertEqual(removed.identity, "T1")
        self.assertNotIn("T1", self.registry)
        self.assertIsNone(self.registry.remove("T1"))

    def test_snapshot_sorted_by_distance(self):
        self.registry.upsert(ship("far", 2900), T0)
        self.registry.upsert(ship("near", 300), T0)
        self.registry.upsert(ship("mid", 1500), T0)

        self.assertEqual([r.identity for r in self.registry.snapshot()], ["near", "mid", "far"])
        self.assertEqual(self.registry.all_identities(), {"near", "mid", "far"})

    def test_to_dict_serializes_datetimes(self):
        self.registry.upsert(ship(), T0)
        data = self.registry.get("T1").to_dict()
        self.assertEqual(data["first_seen"], T0.isoformat())
        self.assertEqual(data["identity"], "T1")


class TestCycleStatistics(unittest.TestCase):

    def test_initial(self):
        stats = CycleStatistics()
        self.assertEqual(stats.as_dict(), {
            "last_run": None,
            "total_checks": 0,
            "last_ships_found": 0,
            "total_notifications_sent": 0,
        })

    def test_accumulates(self):
        stats = CycleStatistics()
        stats.record_cycle(T0, ships_found=3, notifications=2)
        stats.record_cycle(T0 + timedelta(seconds=30), ships_found=1, notifications=0)

        self.assertEqual(stats.total_checks, 2)
        self.assertEqual(stats.last_ships_found, 1)
        self.assertEqual(stats.total_notifications_sent, 2)
        self.assertEqual(stats.last_run, T0 + timedelta(seconds=30))


if __name__ == '__main__':
    print("Running TrackShip Ship Registry Tests...")
    print("=" * 70)

    unittest.main(verbosity=2)
