from __future__ import annotations

import asyncio
import unittest
from unittest import IsolatedAsyncioTestCase

from scanner_lookup.services.product_lookup.schema import SchemaSnapshotCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingProbe:
    def __init__(self, columns=("ptypeid", "pfullname", "Barcode"), has_function=True) -> None:
        self.columns = frozenset(columns)
        self.has_function = has_function
        self.column_calls = 0
        self.function_calls = 0
        self.fail_next = False

    async def fetch_columns(self):
        self.column_calls += 1
        # Yield so concurrent callers pile up behind the refresh lock.
        await asyncio.sleep(0)
        if self.fail_next:
            self.fail_next = False
            raise ConnectionError("store unavailable")
        return self.columns

    async def has_barcode_function(self):
        self.function_calls += 1
        await asyncio.sleep(0)
        return self.has_function


class SchemaSnapshotCacheTest(IsolatedAsyncioTestCase):
    async def test_snapshot_is_reused_until_expiry(self):
        clock = FakeClock()
        probe = CountingProbe()
        cache = SchemaSnapshotCache(probe, ttl_minutes=10, clock=clock)

        first = await cache.get_snapshot()
        clock.now += 599
        second = await cache.get_snapshot()

        self.assertIs(first, second)
        self.assertEqual(probe.column_calls, 1)

        clock.now += 2
        third = await cache.get_snapshot()
        self.assertIsNot(first, third)
        self.assertEqual(probe.column_calls, 2)
        self.assertEqual(probe.function_calls, 2)

    async def test_ttl_has_one_minute_floor(self):
        clock = FakeClock()
        probe = CountingProbe()
        cache = SchemaSnapshotCache(probe, ttl_minutes=0, clock=clock)

        snapshot = await cache.get_snapshot()

        self.assertEqual(snapshot.expires_at, clock.now + 60)

    async def test_concurrent_misses_refresh_once(self):
        clock = FakeClock()
        probe = CountingProbe()
        cache = SchemaSnapshotCache(probe, ttl_minutes=5, clock=clock)

        snapshots = await asyncio.gather(*(cache.get_snapshot() for _ in range(10)))

        self.assertEqual(probe.column_calls, 1)
        self.assertEqual(probe.function_calls, 1)
        self.assertTrue(all(snapshot is snapshots[0] for snapshot in snapshots))

    async def test_concurrent_misses_after_expiry_refresh_once(self):
        clock = FakeClock()
        probe = CountingProbe()
        cache = SchemaSnapshotCache(probe, ttl_minutes=1, clock=clock)
        await cache.get_snapshot()

        clock.now += 61
        await asyncio.gather(*(cache.get_snapshot() for _ in range(5)))

        self.assertEqual(probe.column_calls, 2)
        self.assertEqual(probe.function_calls, 2)

    async def test_failed_refresh_caches_nothing(self):
        clock = FakeClock()
        probe = CountingProbe()
        probe.fail_next = True
        cache = SchemaSnapshotCache(probe, ttl_minutes=10, clock=clock)

        with self.assertRaises(ConnectionError):
            await cache.get_snapshot()
        self.assertIsNone(cache.current)

        snapshot = await cache.get_snapshot()
        self.assertTrue(snapshot.has_column("BARCODE"))
        self.assertEqual(snapshot.column_name("barcode"), "Barcode")
        self.assertTrue(snapshot.has_barcode_function)

    async def test_invalidate_forces_refresh(self):
        probe = CountingProbe()
        cache = SchemaSnapshotCache(probe, ttl_minutes=10, clock=FakeClock())

        await cache.get_snapshot()
        cache.invalidate()
        await cache.get_snapshot()

        self.assertEqual(probe.column_calls, 2)


if __name__ == "__main__":
    unittest.main()
