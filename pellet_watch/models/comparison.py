# pellet_watch/models/comparison.py

"""Transient classification result produced by the comparison engine."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ComparisonStatus(str, Enum):
    """How a new observation relates to the previous one."""

    NEW = "new"
    PRICE_INCREASE = "price_increase"
    PRICE_DECREASE = "price_decrease"
    UNCHANGED = "unchanged"


class ComparisonScope(str, Enum):
    """Which prior observation a new one is compared against."""

    SELLER = "seller"              # same catalog item, same seller
    CATALOG_ITEM = "catalog_item"  # same catalog item, any seller


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of comparing a new price with the most recent prior one."""

    status: ComparisonStatus
    new_price: float
    observed_at: datetime
    old_price: float | None = None
    change_amount: float | None = None
    change_percent: float | None = None
    previous_observed_at: datetime | None = None
