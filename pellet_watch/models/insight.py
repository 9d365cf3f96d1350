# pellet_watch/models/insight.py

"""Cached natural-language insight models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pellet_watch.config.settings import Settings


@dataclass(frozen=True)
class InsightScope:
    """Identity under which an insight is cached.

    ``catalog_item_id`` is ``None`` for market-wide ("global") insights.
    """

    catalog_item_id: int | None = None
    days: int = Settings.INSIGHT_DEFAULT_DAYS

    @property
    def key(self) -> str:
        """Stable string form used as the cache key."""
        if self.catalog_item_id is None:
            return f"global:{self.days}d"
        return f"item:{self.catalog_item_id}:{self.days}d"

    @property
    def data_period(self) -> str:
        """Human readable label for the analysed window."""
        return f"Last {self.days} days"


@dataclass
class CachedInsight:
    """A generated insight row."""

    id: int
    scope_key: str
    payload: Any
    summary: str
    data_period: str
    sample_count: int
    generated_at: datetime
    expires_at: datetime | None = None
    active: bool = True
