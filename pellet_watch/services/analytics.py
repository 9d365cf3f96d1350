# pellet_watch/services/analytics.py

"""Read-only analytics over the price observation history.

Every method reads through :class:`ObservationStore`, so observations
recorded against catalog items that were later merged are counted under
the canonical item.
"""

import calendar
import logging
import statistics
from collections import defaultdict
from datetime import datetime, timedelta

from pellet_watch.config.settings import Settings
from pellet_watch.models.analytics import (
    AlertReport,
    BestDeal,
    DashboardStats,
    MonthlyPriceStats,
    PeriodPriceStats,
    PriceAlert,
    PriceForecast,
    SeasonalAnalysis,
    SellerComparison,
    StockAvailability,
    TrendPoint,
)
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import ensure_utc, utcnow
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.analytics")

PERIODS = ("day", "week", "month")


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def _round(value: float) -> float:
    return round(value, 2)


def _truncate(moment: datetime, period: str) -> datetime:
    """Start of the day, ISO week (Monday) or month containing *moment*."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return start
    if period == "week":
        return start - timedelta(days=start.weekday())
    if period == "month":
        return start.replace(day=1)
    msg = f"Unknown period '{period}', expected one of {', '.join(PERIODS)}"
    raise ValueError(msg)


def trend_direction(short_avg: float, long_avg: float) -> str:
    if short_avg < long_avg:
        return "decreasing"
    if short_avg > long_avg:
        return "increasing"
    return "stable"


_RECOMMENDATIONS: dict[str, tuple[str, str]] = {
    "decreasing": ("wait", "Wait - prices are dropping"),
    "increasing": ("buy", "Buy now - prices are rising"),
    "stable": ("neutral", "Stable - buy when needed"),
}


class AnalyticsEngine:
    """Seasonal, seller, trend and alert analytics."""

    def __init__(
        self,
        catalog: CatalogRepository,
        store: ObservationStore,
    ) -> None:
        self._catalog = catalog
        self._store = store

    # ── Seasonal ─────────────────────────────────────────

    def seasonal_analysis(self, catalog_item_id: int) -> SeasonalAnalysis:
        """Monthly statistics across all years, cheapest month first."""
        by_month: dict[int, list[float]] = defaultdict(list)
        for obs in self._store.range(catalog_item_id):
            by_month[obs.observed_at.month].append(obs.price)

        months = [
            MonthlyPriceStats(
                month=month,
                month_name=calendar.month_name[month],
                avg_price=_round(_mean(prices)),
                min_price=min(prices),
                max_price=max(prices),
                stddev=_round(statistics.pstdev(prices)),
                sample_count=len(prices),
            )
            for month, prices in by_month.items()
        ]
        # Rank on the unrounded mean so near-ties stay ordered
        months.sort(key=lambda m: (_mean(by_month[m.month]), m.month))

        logger.debug(
            "Seasonal analysis for item %d over %d month(s)",
            catalog_item_id,
            len(months),
        )
        return SeasonalAnalysis(catalog_item_id=catalog_item_id, months=months)

    # ── Sellers ──────────────────────────────────────────

    def compare_sellers(
        self,
        catalog_item_id: int,
        days: int = Settings.SELLER_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> list[SellerComparison]:
        """Per-seller statistics over the last *days* days, cheapest first."""
        since = ensure_utc(now or utcnow()) - timedelta(days=days)
        by_seller: dict[int, list[PriceObservation]] = defaultdict(list)
        for obs in self._store.range(catalog_item_id, start=since):
            by_seller[obs.seller_id].append(obs)

        results: list[SellerComparison] = []
        for seller_id, rows in by_seller.items():
            seller = self._catalog.get_seller(seller_id)
            prices = [r.price for r in rows]
            in_stock = sum(1 for r in rows if r.in_stock)
            results.append(SellerComparison(
                seller_id=seller_id,
                seller_name=seller.name if seller else str(seller_id),
                location=seller.location if seller else None,
                website_url=seller.website_url if seller else None,
                avg_price=_round(_mean(prices)),
                min_price=min(prices),
                max_price=max(prices),
                volatility=_round(statistics.pstdev(prices)),
                price_checks=len(rows),
                in_stock_count=in_stock,
                availability_percent=_round(in_stock / len(rows) * 100),
                last_checked=max(r.observed_at for r in rows),
            ))

        results.sort(key=lambda s: (s.avg_price, s.seller_name))
        return results

    # ── Trends & forecast ────────────────────────────────

    def price_forecast(
        self,
        catalog_item_id: int,
        seller_id: int | None = None,
        short_window: int = Settings.SHORT_WINDOW,
        long_window: int = Settings.LONG_WINDOW,
        limit: int = Settings.FORECAST_HISTORY_LIMIT,
    ) -> PriceForecast:
        """Moving-average trend over the *limit* most recent samples.

        The short and long averages cover the most recent
        ``short_window`` and ``long_window`` samples respectively.
        """
        rows = self._store.range(catalog_item_id, seller_id=seller_id)
        recent = rows[-limit:] if limit > 0 else rows

        history: list[TrendPoint] = []
        for i, obs in enumerate(recent):
            short = [r.price for r in recent[max(0, i - short_window + 1):i + 1]]
            long = [r.price for r in recent[max(0, i - long_window + 1):i + 1]]
            history.append(TrendPoint(
                observed_at=obs.observed_at,
                price=obs.price,
                moving_avg_short=_round(_mean(short)),
                moving_avg_long=_round(_mean(long)),
            ))

        if not recent:
            return PriceForecast(
                catalog_item_id=catalog_item_id,
                seller_id=seller_id,
                short_avg=None,
                long_avg=None,
                trend="stable",
                recommendation="neutral",
                message="Not enough price history",
            )

        prices = [r.price for r in recent]
        short_avg = _mean(prices[-short_window:])
        long_avg = _mean(prices[-long_window:])
        trend = trend_direction(short_avg, long_avg)
        recommendation, message = _RECOMMENDATIONS[trend]

        return PriceForecast(
            catalog_item_id=catalog_item_id,
            seller_id=seller_id,
            short_avg=_round(short_avg),
            long_avg=_round(long_avg),
            trend=trend,
            recommendation=recommendation,
            message=message,
            history=history,
        )

    def price_trends(
        self,
        catalog_item_id: int,
        period: str = "day",
        days: int = Settings.TREND_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> list[PeriodPriceStats]:
        """Per-period, per-seller statistics, newest period first."""
        if period not in PERIODS:
            msg = f"Unknown period '{period}', expected one of {', '.join(PERIODS)}"
            raise ValueError(msg)
        since = ensure_utc(now or utcnow()) - timedelta(days=days)
        names = {s.id: s.name for s in self._catalog.list_sellers()}

        buckets: dict[tuple[datetime, str], list[float]] = defaultdict(list)
        for obs in self._store.range(catalog_item_id, start=since):
            key = (
                _truncate(obs.observed_at, period),
                names.get(obs.seller_id, str(obs.seller_id)),
            )
            buckets[key].append(obs.price)

        stats = [
            PeriodPriceStats(
                period=bucket,
                seller_name=seller,
                avg_price=_round(_mean(prices)),
                min_price=min(prices),
                max_price=max(prices),
                sample_count=len(prices),
            )
            for (bucket, seller), prices in buckets.items()
        ]
        stats.sort(key=lambda s: s.seller_name)
        stats.sort(key=lambda s: s.period, reverse=True)
        return stats

    # ── Alerts ───────────────────────────────────────────

    def detect_alerts(
        self,
        drop_threshold: float = Settings.ALERT_DROP_THRESHOLD,
        rise_threshold: float = Settings.ALERT_RISE_THRESHOLD,
        lookback_days: int = Settings.ALERT_LOOKBACK_DAYS,
        now: datetime | None = None,
    ) -> AlertReport:
        """Significant moves per (catalog item, seller).

        *current* is the latest observation within the last day;
        *previous* the latest one between ``lookback_days`` and one day
        ago.
        """
        moment = ensure_utc(now or utcnow())
        day_ago = moment - timedelta(days=1)
        window_start = moment - timedelta(days=lookback_days)

        canonical = self._catalog.canonical_map()
        sellers = {s.id: s for s in self._catalog.list_sellers()}

        current: dict[tuple[int, int], PriceObservation] = {}
        previous: dict[tuple[int, int], PriceObservation] = {}
        for obs in self._store.observations(start=window_start, end=moment):
            item = canonical.get(obs.catalog_item_id)
            pair = (item.id if item else obs.catalog_item_id, obs.seller_id)
            # Rows arrive oldest first: later rows overwrite earlier ones
            if obs.observed_at >= day_ago:
                current[pair] = obs
            else:
                previous[pair] = obs

        report = AlertReport()
        for pair, curr in current.items():
            prev = previous.get(pair)
            if prev is None:
                continue
            change = curr.price - prev.price
            percent = change / prev.price * 100
            if percent < -drop_threshold:
                kind = "drop"
            elif percent > rise_threshold:
                kind = "rise"
            else:
                continue

            item = canonical.get(pair[0])
            seller = sellers.get(pair[1])
            alert = PriceAlert(
                kind=kind,
                catalog_item_id=pair[0],
                product_name=item.name if item else str(pair[0]),
                seller_id=pair[1],
                seller_name=seller.name if seller else str(pair[1]),
                previous_price=prev.price,
                previous_observed_at=prev.observed_at,
                current_price=curr.price,
                current_observed_at=curr.observed_at,
                in_stock=curr.in_stock,
                change_amount=_round(change),
                change_percent=_round(percent),
            )
            (report.drops if kind == "drop" else report.rises).append(alert)

        report.drops.sort(key=lambda a: a.change_percent)
        report.rises.sort(key=lambda a: a.change_percent, reverse=True)
        if report.total:
            logger.info(
                "Detected %d drop(s) and %d rise(s)",
                len(report.drops),
                len(report.rises),
            )
        return report

    # ── Supplementary read models ────────────────────────

    def stock_availability(
        self,
        catalog_item_id: int,
        days: int = Settings.SELLER_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> list[StockAvailability]:
        """Per-seller stock history, most available first."""
        since = ensure_utc(now or utcnow()) - timedelta(days=days)
        by_seller: dict[int, list[PriceObservation]] = defaultdict(list)
        for obs in self._store.range(catalog_item_id, start=since):
            by_seller[obs.seller_id].append(obs)

        results: list[StockAvailability] = []
        for seller_id, rows in by_seller.items():
            seller = self._catalog.get_seller(seller_id)
            stocked = [r for r in rows if r.in_stock]
            results.append(StockAvailability(
                seller_id=seller_id,
                seller_name=seller.name if seller else str(seller_id),
                total_checks=len(rows),
                in_stock_count=len(stocked),
                availability_percent=_round(len(stocked) / len(rows) * 100),
                last_in_stock=(
                    max(r.observed_at for r in stocked) if stocked else None
                ),
                last_checked=max(r.observed_at for r in rows),
            ))
        results.sort(key=lambda s: (-s.availability_percent, s.seller_name))
        return results

    def best_deals(
        self,
        limit: int = 10,
        days: int = Settings.BEST_DEALS_DAYS,
        now: datetime | None = None,
    ) -> list[BestDeal]:
        """Cheapest in-stock offer per catalog item over the last *days*."""
        since = ensure_utc(now or utcnow()) - timedelta(days=days)
        canonical = self._catalog.canonical_map()
        sellers = {s.id: s.name for s in self._catalog.list_sellers()}

        best: dict[int, PriceObservation] = {}
        for obs in self._store.observations(start=since, in_stock=True):
            item = canonical.get(obs.catalog_item_id)
            item_id = item.id if item else obs.catalog_item_id
            held = best.get(item_id)
            # Equal prices: the newer offer wins
            if held is None or obs.price <= held.price:
                best[item_id] = obs

        deals = []
        for item_id, obs in best.items():
            item = canonical.get(item_id)
            deals.append(BestDeal(
                catalog_item_id=item_id,
                product_name=item.name if item else str(item_id),
                brand=item.brand if item else "",
                seller_name=sellers.get(obs.seller_id, str(obs.seller_id)),
                price=obs.price,
                currency=obs.currency,
                source_url=obs.source_url,
                observed_at=obs.observed_at,
            ))
        deals.sort(key=lambda d: (d.price, d.catalog_item_id))
        return deals[:limit]

    def dashboard_stats(self, now: datetime | None = None) -> DashboardStats:
        """Headline counts plus today's average price."""
        moment = ensure_utc(now or utcnow())
        today = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        todays = self._store.observations(start=today)

        avg_today: float | None = None
        currency = Settings.DEFAULT_CURRENCY
        if todays:
            # Averaging across currencies is meaningless; use the commonest
            counts: dict[str, int] = defaultdict(int)
            for obs in todays:
                counts[obs.currency] += 1
            currency = max(counts, key=lambda c: (counts[c], c))
            avg_today = _round(
                _mean([o.price for o in todays if o.currency == currency])
            )

        return DashboardStats(
            total_catalog_items=self._catalog.count_items(),
            total_sellers=self._catalog.count_sellers(),
            total_observations=self._store.count(),
            last_observed_at=self._store.last_observed_at(),
            avg_price_today=avg_today,
            currency=currency,
        )
