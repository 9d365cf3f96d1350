# tests/test_analytics.py

"""Tests for the read-only analytics engine."""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pellet_watch.filters.normalizer import ProductNormalizer
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.services.analytics import AnalyticsEngine, trend_direction
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import Database
from pellet_watch.storage.observation_store import ObservationStore

_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


class AnalyticsTestCase(unittest.TestCase):
    """Fresh store with one item and two sellers."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db = Database(Path(self.tmp_dir) / "test.db")
        self.catalog = CatalogRepository(self.db)
        self.store = ObservationStore(self.db, self.catalog)
        self.store.provision_partitions(_NOW, months_ahead=0, months_back=14)
        normalizer = ProductNormalizer()
        self.item = self.catalog.get_or_create_item(
            normalizer.normalize("Pellets 15kg bag"), "Pellets 15kg bag", "Acme",
        )
        self.other = self.catalog.get_or_create_item(
            normalizer.normalize("Pellets 975kg big bag"), "Pellets 975kg big bag",
        )
        self.a = self.catalog.get_or_create_seller("Seller A", location="Riga")
        self.b = self.catalog.get_or_create_seller("Seller B")
        self.engine = AnalyticsEngine(self.catalog, self.store)

    def tearDown(self) -> None:
        self.db.close()

    def add(
        self,
        price: float,
        when: datetime,
        seller_id: int | None = None,
        item_id: int | None = None,
        in_stock: bool = True,
    ) -> None:
        self.store.append(PriceObservation(
            catalog_item_id=item_id or self.item.id,
            seller_id=seller_id or self.a.id,
            price=price,
            observed_at=when,
            in_stock=in_stock,
        ))


class TestSeasonalAnalysis(AnalyticsTestCase):

    def test_cheapest_month_first(self) -> None:
        self.add(5.0, _at(2024, 1, 10))
        self.add(5.2, _at(2025, 1, 12))
        self.add(4.0, _at(2024, 6, 5))
        self.add(4.5, _at(2024, 12, 1))

        analysis = self.engine.seasonal_analysis(self.item.id)

        self.assertEqual([m.month for m in analysis.months], [6, 12, 1])
        self.assertEqual(analysis.cheapest_month.month_name, "June")  # type: ignore[union-attr]
        january = analysis.months[-1]
        self.assertEqual(january.sample_count, 2)
        self.assertEqual(january.avg_price, 5.1)
        self.assertEqual(january.stddev, 0.1)
        self.assertEqual(january.min_price, 5.0)
        self.assertEqual(january.max_price, 5.2)

    def test_no_data(self) -> None:
        analysis = self.engine.seasonal_analysis(self.item.id)
        self.assertEqual(analysis.months, [])
        self.assertIsNone(analysis.cheapest_month)


class TestSellerComparison(AnalyticsTestCase):

    def test_ranked_by_average(self) -> None:
        self.add(4.0, _NOW - timedelta(days=3))
        self.add(4.4, _NOW - timedelta(days=1))
        self.add(3.9, _NOW - timedelta(days=2), self.b.id, in_stock=False)
        self.add(1.0, _NOW - timedelta(days=60), self.b.id)

        sellers = self.engine.compare_sellers(self.item.id, days=30, now=_NOW)

        self.assertEqual([s.seller_name for s in sellers], ["Seller B", "Seller A"])
        a = sellers[1]
        self.assertEqual(a.avg_price, 4.2)
        self.assertEqual(a.price_checks, 2)
        self.assertEqual(a.availability_percent, 100.0)
        self.assertEqual(a.volatility, 0.2)
        self.assertEqual(a.location, "Riga")
        self.assertEqual(sellers[0].in_stock_count, 0)


class TestForecast(AnalyticsTestCase):

    def test_falling_prices_mean_wait(self) -> None:
        for day in range(40):
            self.add(10.0 - day * 0.1, _NOW - timedelta(days=40 - day))
        forecast = self.engine.price_forecast(self.item.id)
        self.assertEqual(forecast.trend, "decreasing")
        self.assertEqual(forecast.recommendation, "wait")
        self.assertEqual(len(forecast.history), 40)
        self.assertLess(forecast.short_avg, forecast.long_avg)  # type: ignore[operator]

    def test_rising_prices_mean_buy(self) -> None:
        for day in range(10):
            self.add(4.0 + day * 0.1, _NOW - timedelta(days=10 - day))
        forecast = self.engine.price_forecast(self.item.id, seller_id=self.a.id)
        self.assertEqual(forecast.trend, "increasing")
        self.assertEqual(forecast.recommendation, "buy")

    def test_history_limited(self) -> None:
        for day in range(20):
            self.add(5.0, _NOW - timedelta(days=20 - day))
        forecast = self.engine.price_forecast(self.item.id, limit=12)
        self.assertEqual(len(forecast.history), 12)
        self.assertEqual(forecast.trend, "stable")
        self.assertEqual(forecast.recommendation, "neutral")

    def test_empty_history(self) -> None:
        forecast = self.engine.price_forecast(self.item.id)
        self.assertIsNone(forecast.short_avg)
        self.assertEqual(forecast.recommendation, "neutral")

    def test_trend_direction(self) -> None:
        self.assertEqual(trend_direction(1.0, 2.0), "decreasing")
        self.assertEqual(trend_direction(2.0, 1.0), "increasing")
        self.assertEqual(trend_direction(1.0, 1.0), "stable")


class TestAlerts(AnalyticsTestCase):

    def test_drop_and_rise(self) -> None:
        # drop: -10%
        self.add(4.0, _NOW - timedelta(days=3))
        self.add(3.6, _NOW - timedelta(hours=2))
        # +5%: below the rise threshold
        self.add(4.0, _NOW - timedelta(days=3), self.b.id)
        self.add(4.2, _NOW - timedelta(hours=1), self.b.id)
        # rise: +20%
        self.add(100.0, _NOW - timedelta(days=2), self.b.id, self.other.id)
        self.add(120.0, _NOW - timedelta(hours=3), self.b.id, self.other.id)
        # only a current price
        self.add(50.0, _NOW - timedelta(hours=3), self.a.id, self.other.id)

        report = self.engine.detect_alerts(now=_NOW)

        self.assertEqual(report.total, 2)
        drop = report.drops[0]
        self.assertEqual(drop.seller_name, "Seller A")
        self.assertEqual(drop.change_percent, -10.0)
        self.assertEqual(drop.previous_price, 4.0)
        rise = report.rises[0]
        self.assertEqual(rise.product_name, "Pellets 975kg big bag")
        self.assertEqual(rise.change_percent, 20.0)

    def test_previous_outside_lookback_ignored(self) -> None:
        self.add(10.0, _NOW - timedelta(days=10))
        self.add(5.0, _NOW - timedelta(hours=1))
        self.assertEqual(self.engine.detect_alerts(now=_NOW).total, 0)

    def test_uses_latest_previous_and_current(self) -> None:
        self.add(10.0, _NOW - timedelta(days=5))
        self.add(4.0, _NOW - timedelta(days=2))
        self.add(3.0, _NOW - timedelta(hours=5))
        self.add(4.0, _NOW - timedelta(hours=1))
        self.assertEqual(self.engine.detect_alerts(now=_NOW).total, 0)


class TestSupplementaryReadModels(AnalyticsTestCase):

    def test_price_trends_by_month(self) -> None:
        self.add(4.0, _at(2025, 2, 3))
        self.add(5.0, _at(2025, 2, 20))
        self.add(6.0, _at(2025, 3, 1), self.b.id)

        trends = self.engine.price_trends(self.item.id, period="month", now=_NOW)

        self.assertEqual(len(trends), 2)
        self.assertEqual(trends[0].period, datetime(2025, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(trends[1].avg_price, 4.5)
        self.assertEqual(trends[1].sample_count, 2)

    def test_price_trends_by_week_starts_monday(self) -> None:
        self.add(4.0, _at(2025, 3, 5))  # Wednesday
        trends = self.engine.price_trends(self.item.id, period="week", now=_NOW)
        self.assertEqual(trends[0].period, datetime(2025, 3, 3, tzinfo=timezone.utc))

    def test_price_trends_rejects_unknown_period(self) -> None:
        with self.assertRaises(ValueError):
            self.engine.price_trends(self.item.id, period="year")

    def test_stock_availability(self) -> None:
        self.add(4.0, _NOW - timedelta(days=3))
        self.add(4.0, _NOW - timedelta(days=1), in_stock=False)
        self.add(4.0, _NOW - timedelta(days=2), self.b.id)

        stock = self.engine.stock_availability(self.item.id, now=_NOW)

        self.assertEqual(stock[0].seller_name, "Seller B")
        self.assertEqual(stock[1].availability_percent, 50.0)
        self.assertEqual(stock[1].last_in_stock, _NOW - timedelta(days=3))

    def test_best_deals(self) -> None:
        self.add(4.5, _NOW - timedelta(days=1))
        self.add(4.1, _NOW - timedelta(days=2), self.b.id)
        self.add(3.0, _NOW - timedelta(days=1), self.b.id, in_stock=False)
        self.add(100.0, _NOW - timedelta(days=1), item_id=self.other.id)
        self.add(90.0, _NOW - timedelta(days=20), item_id=self.other.id)

        deals = self.engine.best_deals(now=_NOW)

        self.assertEqual(len(deals), 2)
        self.assertEqual(deals[0].price, 4.1)
        self.assertEqual(deals[0].seller_name, "Seller B")
        self.assertEqual(deals[0].brand, "Acme")
        self.assertEqual(deals[1].price, 100.0)
        self.assertEqual(len(self.engine.best_deals(limit=1, now=_NOW)), 1)

    def test_dashboard_stats(self) -> None:
        self.add(4.0, _NOW - timedelta(days=3))
        self.add(5.0, _NOW - timedelta(hours=2))
        self.add(6.0, _NOW - timedelta(hours=1), self.b.id)

        stats = self.engine.dashboard_stats(now=_NOW)

        self.assertEqual(stats.total_catalog_items, 2)
        self.assertEqual(stats.total_sellers, 2)
        self.assertEqual(stats.total_observations, 3)
        self.assertEqual(stats.last_observed_at, _NOW - timedelta(hours=1))
        self.assertEqual(stats.avg_price_today, 5.5)
        self.assertEqual(stats.currency, "EUR")


if __name__ == "__main__":
    unittest.main()
