# pellet_watch/services/insight_service.py

"""Builds insight payloads and keeps the insight cache fresh.

Text generation is done by the caller (typically an LLM client): the
service hands it the compact payload and caches whatever it returns.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from pellet_watch.config.settings import Settings
from pellet_watch.models.insight import CachedInsight, InsightScope
from pellet_watch.services.analytics import AnalyticsEngine
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import utcnow
from pellet_watch.storage.insight_cache import InsightCache
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.insights")

InsightGenerator = Callable[[dict[str, Any]], str]


class InsightService:
    """Read-through access to cached insights."""

    def __init__(
        self,
        catalog: CatalogRepository,
        store: ObservationStore,
        cache: InsightCache,
        analytics: AnalyticsEngine | None = None,
        payload_limit: int = Settings.INSIGHT_PAYLOAD_LIMIT,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._cache = cache
        self._analytics = analytics or AnalyticsEngine(catalog, store)
        self._payload_limit = payload_limit

    def build_payload(self, scope: InsightScope) -> dict[str, Any]:
        """Compact, JSON-ready summary of the data behind an insight."""
        since = utcnow() - timedelta(days=scope.days)
        rows = self._store.observations(
            catalog_item_id=scope.catalog_item_id, start=since,
        )
        sellers = {s.id: s.name for s in self._catalog.list_sellers()}
        recent = rows[-self._payload_limit:] if self._payload_limit > 0 else rows

        payload: dict[str, Any] = {
            "scope": scope.key,
            "data_period": scope.data_period,
            "sample_count": len(rows),
            "observations": [
                {
                    "price": o.price,
                    "currency": o.currency,
                    "seller": sellers.get(o.seller_id, str(o.seller_id)),
                    "in_stock": o.in_stock,
                    "observed_at": o.observed_at.isoformat(),
                }
                for o in reversed(recent)
            ],
        }

        if scope.catalog_item_id is not None:
            item = self._catalog.get_item(scope.catalog_item_id)
            payload["product"] = item.name if item else None
            forecast = self._analytics.price_forecast(scope.catalog_item_id)
            payload["forecast"] = {
                "short_avg": forecast.short_avg,
                "long_avg": forecast.long_avg,
                "trend": forecast.trend,
                "recommendation": forecast.recommendation,
            }
            cheapest = self._analytics.seasonal_analysis(
                scope.catalog_item_id,
            ).cheapest_month
            payload["cheapest_month"] = (
                {
                    "month": cheapest.month_name,
                    "avg_price": cheapest.avg_price,
                    "sample_count": cheapest.sample_count,
                }
                if cheapest
                else None
            )

        return payload

    def current(self, scope: InsightScope) -> CachedInsight | None:
        """Plain cache read; never generates."""
        return self._cache.read(scope)

    def refresh(
        self, scope: InsightScope, generate: InsightGenerator,
    ) -> CachedInsight | None:
        """Generate a new insight for *scope* and cache it.

        If the cache write fails, the last known active insight (possibly
        expired) is returned instead.  Errors raised by *generate*
        propagate to the caller.
        """
        payload = self.build_payload(scope)
        summary = generate(payload)
        try:
            return self._cache.write(
                scope,
                payload,
                summary,
                sample_count=payload["sample_count"],
            )
        except sqlite3.Error:
            logger.error(
                "Could not cache insight for %s, serving last known",
                scope.key,
                exc_info=True,
            )
            return self._cache.read(scope, include_expired=True)
