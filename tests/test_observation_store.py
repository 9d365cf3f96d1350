# tests/test_observation_store.py

"""Tests for the month-partitioned observation store."""

import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pellet_watch.errors import DataOutOfRangeError
from pellet_watch.filters.normalizer import ProductNormalizer
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import Database
from pellet_watch.storage.observation_store import (
    ObservationStore,
    add_months,
    month_bounds,
    partition_name,
)

_MARCH = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestPartitionHelpers(unittest.TestCase):
    """Naming and month arithmetic."""

    def test_partition_name(self) -> None:
        self.assertEqual(partition_name(2025, 3), "price_observations_2025_03")

    def test_month_bounds_december(self) -> None:
        start, end = month_bounds(2024, 12)
        self.assertEqual(start, datetime(2024, 12, 1, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2025, 1, 1, tzinfo=timezone.utc))

    def test_add_months_wraps_years(self) -> None:
        self.assertEqual(add_months(2025, 11, 3), (2026, 2))
        self.assertEqual(add_months(2025, 1, -1), (2024, 12))


class TestObservationStore(unittest.TestCase):
    """Append, query, partition and archive behaviour."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db = Database(Path(self.tmp_dir) / "test.db")
        self.catalog = CatalogRepository(self.db)
        self.store = ObservationStore(self.db, self.catalog)
        self.store.provision_partitions(_MARCH, months_ahead=1, months_back=2)

        product = ProductNormalizer().normalize("Pellets 15kg bag")
        self.item = self.catalog.get_or_create_item(product, "Pellets 15kg bag")
        self.seller_a = self.catalog.get_or_create_seller("Seller A")
        self.seller_b = self.catalog.get_or_create_seller("Seller B")

    def tearDown(self) -> None:
        self.db.close()

    def _obs(
        self,
        price: float,
        when: datetime,
        seller_id: int | None = None,
    ) -> PriceObservation:
        return PriceObservation(
            catalog_item_id=self.item.id,
            seller_id=seller_id or self.seller_a.id,
            price=price,
            observed_at=when,
        )

    def test_provision_is_idempotent(self) -> None:
        again = self.store.provision_partitions(_MARCH, months_ahead=1, months_back=2)
        self.assertEqual(again, [])
        names = [p.name for p in self.store.list_partitions()]
        self.assertEqual(
            names,
            [
                "price_observations_2025_01",
                "price_observations_2025_02",
                "price_observations_2025_03",
                "price_observations_2025_04",
            ],
        )

    def test_append_assigns_unique_ids_across_partitions(self) -> None:
        a = self.store.append(self._obs(4.5, _MARCH))
        b = self.store.append(self._obs(4.6, _MARCH - timedelta(days=30)))
        self.assertIsNotNone(a.id)
        self.assertIsNotNone(b.id)
        self.assertNotEqual(a.id, b.id)

    def test_same_payload_twice_gives_two_rows(self) -> None:
        obs = self._obs(4.5, _MARCH)
        first = self.store.append(obs)
        second = self.store.append(obs)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(len(self.store.range(self.item.id)), 2)

    def test_append_rejects_non_positive_price(self) -> None:
        for price in (0.0, -1.0, float("nan")):
            with self.subTest(price=price):
                with self.assertRaises(ValueError):
                    self.store.append(self._obs(price, _MARCH))
        self.assertEqual(self.store.count(), 0)

    def test_append_outside_partitions_raises(self) -> None:
        with self.assertRaises(DataOutOfRangeError) as ctx:
            self.store.append(self._obs(4.5, datetime(2030, 1, 5)))
        self.assertEqual(ctx.exception.partition, "price_observations_2030_01")

    def test_unknown_seller_is_integrity_error(self) -> None:
        with self.assertRaises(sqlite3.IntegrityError):
            self.store.append(self._obs(4.5, _MARCH, seller_id=9999))

    def test_rows_are_immutable(self) -> None:
        self.store.append(self._obs(4.5, _MARCH))
        conn = self.db.connection()
        with self.assertRaises(sqlite3.IntegrityError):
            conn.execute("UPDATE price_observations_2025_03 SET price = 1")
        with self.assertRaises(sqlite3.IntegrityError):
            conn.execute("DELETE FROM price_observations_2025_03")

    def test_latest_returns_max_observed_at(self) -> None:
        self.store.append(self._obs(4.0, _MARCH - timedelta(days=40)))
        newest = self.store.append(self._obs(4.8, _MARCH, self.seller_b.id))
        self.store.append(self._obs(4.2, _MARCH - timedelta(days=1)))

        latest = self.store.latest(self.item.id)
        self.assertEqual(latest.id, newest.id)  # type: ignore[union-attr]

        latest_a = self.store.latest(self.item.id, seller_id=self.seller_a.id)
        self.assertEqual(latest_a.price, 4.2)  # type: ignore[union-attr]

        before = self.store.latest(
            self.item.id, before=_MARCH - timedelta(days=2),
        )
        self.assertEqual(before.price, 4.0)  # type: ignore[union-attr]

    def test_latest_before_id_breaks_same_instant_ties(self) -> None:
        first = self.store.append(self._obs(4.0, _MARCH))
        second = self.store.append(self._obs(4.5, _MARCH))

        self.assertIsNone(self.store.latest(self.item.id, before=_MARCH))
        tied = self.store.latest(
            self.item.id, before=_MARCH, before_id=second.id,
        )
        self.assertEqual(tied.id, first.id)  # type: ignore[union-attr]
        self.assertIsNone(
            self.store.latest(self.item.id, before=_MARCH, before_id=first.id)
        )

    def test_latest_empty(self) -> None:
        self.assertIsNone(self.store.latest(self.item.id))

    def test_range_is_ordered_and_half_open(self) -> None:
        times = [_MARCH - timedelta(days=d) for d in (50, 20, 5, 0)]
        for i, when in enumerate(reversed(times)):
            self.store.append(self._obs(4.0 + i, when))

        rows = self.store.range(self.item.id)
        self.assertEqual([r.observed_at for r in rows], times)

        window = self.store.range(self.item.id, start=times[1], end=times[3])
        self.assertEqual([r.observed_at for r in window], times[1:3])

    def test_range_is_restartable(self) -> None:
        for d in range(4):
            self.store.append(self._obs(4.0, _MARCH - timedelta(days=d)))
        first = self.store.range(self.item.id, end=_MARCH - timedelta(days=1))
        rest = self.store.range(
            self.item.id, start=first[-1].observed_at + timedelta(microseconds=1),
        )
        self.assertEqual(len(first) + len(rest), 4)

    def test_naive_datetimes_are_utc(self) -> None:
        stored = self.store.append(self._obs(4.5, datetime(2025, 3, 1, 0, 30)))
        self.assertEqual(stored.observed_at.tzinfo, timezone.utc)

    def test_archive_partition(self) -> None:
        self.store.append(self._obs(4.0, datetime(2025, 1, 15, tzinfo=timezone.utc)))
        self.store.append(self._obs(4.5, _MARCH))

        target = self.store.archive_partition(2025, 1, Path(self.tmp_dir) / "archive")

        self.assertTrue(target.exists())
        with sqlite3.connect(target) as archive:
            count = archive.execute(
                "SELECT COUNT(*) FROM price_observations_2025_01"
            ).fetchone()[0]
        self.assertEqual(count, 1)

        states = {p.name: p.state for p in self.store.list_partitions()}
        self.assertEqual(states["price_observations_2025_01"], "archived")
        self.assertEqual(len(self.store.range(self.item.id)), 1)
        with self.assertRaises(DataOutOfRangeError):
            self.store.append(self._obs(4.0, datetime(2025, 1, 20)))

    def test_archive_unknown_partition_raises(self) -> None:
        with self.assertRaises(ValueError):
            self.store.archive_partition(2031, 1, Path(self.tmp_dir) / "archive")

    def test_stats(self) -> None:
        now = datetime.now(timezone.utc)
        self.store.provision_partitions(now, months_ahead=0, months_back=1)
        self.store.append(self._obs(4.0, now - timedelta(hours=2)))
        self.store.append(self._obs(5.0, now - timedelta(hours=1), self.seller_b.id))
        stats = self.store.stats(days=7)
        self.assertEqual(stats["total_records"], 2)
        self.assertEqual(stats["unique_sellers"], 2)
        self.assertEqual(stats["avg_price"], 4.5)
        self.assertEqual(self.store.last_observed_at(), now - timedelta(hours=1))


if __name__ == "__main__":
    unittest.main()
