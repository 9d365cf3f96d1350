# tests/test_price_comparison.py

"""Tests for price change classification."""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pellet_watch.filters.normalizer import ProductNormalizer
from pellet_watch.models.comparison import ComparisonScope, ComparisonStatus
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.services.price_comparison import (
    PriceComparisonService,
    classify,
    summarize,
)
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import Database
from pellet_watch.storage.observation_store import ObservationStore

_NOW = datetime(2025, 3, 10, tzinfo=timezone.utc)


class TestClassify(unittest.TestCase):
    """The pure classification rule."""

    def test_no_prior_is_new(self) -> None:
        result = classify(105.0, None, _NOW)
        self.assertEqual(result.status, ComparisonStatus.NEW)
        self.assertIsNone(result.change_percent)

    def test_increase_above_threshold(self) -> None:
        result = classify(105.0, 100.0, _NOW, threshold=1.0)
        self.assertEqual(result.status, ComparisonStatus.PRICE_INCREASE)
        self.assertEqual(result.change_percent, 5.0)
        self.assertEqual(result.change_amount, 5.0)

    def test_small_change_is_unchanged(self) -> None:
        result = classify(100.4, 100.0, _NOW, threshold=1.0)
        self.assertEqual(result.status, ComparisonStatus.UNCHANGED)

    def test_exact_threshold_is_unchanged(self) -> None:
        """The change must exceed the threshold."""
        result = classify(101.0, 100.0, _NOW, threshold=1.0)
        self.assertEqual(result.status, ComparisonStatus.UNCHANGED)

    def test_decrease(self) -> None:
        result = classify(210.0, 235.0, _NOW)
        self.assertEqual(result.status, ComparisonStatus.PRICE_DECREASE)
        self.assertAlmostEqual(result.change_percent, -10.64, places=2)  # type: ignore[arg-type]
        self.assertEqual(result.change_amount, -25.0)

    def test_status_values(self) -> None:
        self.assertEqual(ComparisonStatus.PRICE_INCREASE.value, "price_increase")


class TestSummarize(unittest.TestCase):
    """Grouping of classified results."""

    def test_groups_and_counts(self) -> None:
        results = [
            classify(5.0, None, _NOW),
            classify(110.0, 100.0, _NOW),
            classify(103.0, 100.0, _NOW),
            classify(80.0, 100.0, _NOW),
            classify(100.0, 100.0, _NOW),
        ]
        summary = summarize(results)
        self.assertEqual(
            summary.counts(),
            {"total": 5, "new": 1, "updated": 3, "unchanged": 1},
        )
        self.assertEqual(summary.increases[0].change_percent, 10.0)
        self.assertEqual(summary.decreases[0].change_percent, -20.0)


class TestPriceComparisonService(unittest.TestCase):
    """Scope-aware lookups against the store."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db = Database(Path(self.tmp_dir) / "test.db")
        self.catalog = CatalogRepository(self.db)
        self.store = ObservationStore(self.db, self.catalog)
        self.store.provision_partitions(_NOW, months_ahead=0, months_back=1)
        product = ProductNormalizer().normalize("Pellets 15kg")
        self.item = self.catalog.get_or_create_item(product, "Pellets 15kg")
        self.a = self.catalog.get_or_create_seller("A")
        self.b = self.catalog.get_or_create_seller("B")
        self.service = PriceComparisonService(self.store)

    def tearDown(self) -> None:
        self.db.close()

    def _obs(self, seller_id: int, price: float, when: datetime) -> PriceObservation:
        return PriceObservation(self.item.id, seller_id, price, when)

    def test_week_later_decrease_keeps_both_rows(self) -> None:
        self.store.append(self._obs(self.a.id, 235.0, _NOW - timedelta(days=7)))
        new = self._obs(self.a.id, 210.0, _NOW)
        result = self.service.compare(new)
        self.store.append(new)

        self.assertEqual(result.status, ComparisonStatus.PRICE_DECREASE)
        self.assertAlmostEqual(result.change_percent, -10.64, places=2)  # type: ignore[arg-type]
        self.assertEqual(len(self.store.range(self.item.id)), 2)

    def test_seller_scope_ignores_other_sellers(self) -> None:
        self.store.append(self._obs(self.b.id, 100.0, _NOW - timedelta(days=1)))
        result = self.service.compare(self._obs(self.a.id, 120.0, _NOW))
        self.assertEqual(result.status, ComparisonStatus.NEW)

    def test_catalog_item_scope_uses_any_seller(self) -> None:
        self.store.append(self._obs(self.b.id, 100.0, _NOW - timedelta(days=1)))
        result = self.service.compare(
            self._obs(self.a.id, 120.0, _NOW),
            scope=ComparisonScope.CATALOG_ITEM,
        )
        self.assertEqual(result.status, ComparisonStatus.PRICE_INCREASE)
        self.assertEqual(result.old_price, 100.0)

    def test_same_instant_row_counts_as_previous(self) -> None:
        first = self.store.append(self._obs(self.a.id, 100.0, _NOW))
        result = self.service.compare(self._obs(self.a.id, 110.0, _NOW))
        self.assertEqual(result.status, ComparisonStatus.PRICE_INCREASE)
        self.assertEqual(result.old_price, first.price)

    def test_stored_observation_ignores_itself_and_later_ids(self) -> None:
        first = self.store.append(self._obs(self.a.id, 100.0, _NOW))
        second = self.store.append(self._obs(self.a.id, 90.0, _NOW))

        self.assertEqual(self.service.previous(second).id, first.id)  # type: ignore[union-attr]
        self.assertIsNone(self.service.previous(first))

    def test_compare_never_writes(self) -> None:
        self.service.compare(self._obs(self.a.id, 120.0, _NOW))
        self.assertEqual(self.store.count(), 0)


if __name__ == "__main__":
    unittest.main()
