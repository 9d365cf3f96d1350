# pellet_watch/models/price_observation.py

"""Immutable price observation model for the price history store."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PriceObservation:
    """A single scraped price for a catalog item at one seller.

    ``id`` is ``None`` until the observation has been appended.
    """

    catalog_item_id: int
    seller_id: int
    price: float
    observed_at: datetime
    currency: str = "EUR"
    in_stock: bool = True
    quantity: float | None = None
    unit: str | None = None
    source_url: str = ""
    id: int | None = None
