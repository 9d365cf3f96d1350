# pellet_watch/models/analytics.py

"""Result objects returned by the analytics engine."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class MonthlyPriceStats:
    """Price statistics for one calendar month across all years."""

    month: int
    month_name: str
    avg_price: float
    min_price: float
    max_price: float
    stddev: float
    sample_count: int


@dataclass
class SeasonalAnalysis:
    """Months ranked cheapest first."""

    catalog_item_id: int
    months: list[MonthlyPriceStats] = field(
        default_factory=lambda: list[MonthlyPriceStats]()
    )

    @property
    def cheapest_month(self) -> MonthlyPriceStats | None:
        """The recommended month to buy in, if any data exists."""
        return self.months[0] if self.months else None


@dataclass
class SellerComparison:
    """Aggregated prices for one seller over a window."""

    seller_id: int
    seller_name: str
    location: str | None
    website_url: str | None
    avg_price: float
    min_price: float
    max_price: float
    volatility: float
    price_checks: int
    in_stock_count: int
    availability_percent: float
    last_checked: datetime


@dataclass
class TrendPoint:
    """One observation with its trailing moving averages."""

    observed_at: datetime
    price: float
    moving_avg_short: float
    moving_avg_long: float


@dataclass
class PriceForecast:
    """Moving-average trend and the buy/wait signal derived from it."""

    catalog_item_id: int
    seller_id: int | None
    short_avg: float | None
    long_avg: float | None
    trend: str                  # increasing | decreasing | stable
    recommendation: str         # buy | wait | neutral
    message: str
    history: list[TrendPoint] = field(
        default_factory=lambda: list[TrendPoint]()
    )


@dataclass
class PriceAlert:
    """A significant price move for one (catalog item, seller) pair."""

    kind: str                   # drop | rise
    catalog_item_id: int
    product_name: str
    seller_id: int
    seller_name: str
    previous_price: float
    previous_observed_at: datetime
    current_price: float
    current_observed_at: datetime
    in_stock: bool
    change_amount: float
    change_percent: float


@dataclass
class AlertReport:
    """Drop and rise alerts, each sorted by size of the move."""

    drops: list[PriceAlert] = field(
        default_factory=lambda: list[PriceAlert]()
    )
    rises: list[PriceAlert] = field(
        default_factory=lambda: list[PriceAlert]()
    )

    @property
    def total(self) -> int:
        return len(self.drops) + len(self.rises)


@dataclass
class PeriodPriceStats:
    """Aggregated prices for one period bucket and seller."""

    period: datetime
    seller_name: str
    avg_price: float
    min_price: float
    max_price: float
    sample_count: int


@dataclass
class StockAvailability:
    """In-stock history for one seller."""

    seller_id: int
    seller_name: str
    total_checks: int
    in_stock_count: int
    availability_percent: float
    last_in_stock: datetime | None
    last_checked: datetime


@dataclass
class BestDeal:
    """Cheapest recent in-stock offer for a catalog item."""

    catalog_item_id: int
    product_name: str
    brand: str
    seller_name: str
    price: float
    currency: str
    source_url: str
    observed_at: datetime


@dataclass
class DashboardStats:
    """Headline counts for the whole store."""

    total_catalog_items: int
    total_sellers: int
    total_observations: int
    last_observed_at: datetime | None
    avg_price_today: float | None
    currency: str
