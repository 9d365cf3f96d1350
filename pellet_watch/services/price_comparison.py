# pellet_watch/services/price_comparison.py

"""Classifies new price observations against the most recent prior one."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pellet_watch.config.settings import Settings
from pellet_watch.models.comparison import (
    ComparisonResult,
    ComparisonScope,
    ComparisonStatus,
)
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.comparison")

# Resolution of stored observed_at values
_TICK = timedelta(microseconds=1)


def classify(
    new_price: float,
    old_price: float | None,
    observed_at: datetime,
    threshold: float = Settings.PRICE_CHANGE_THRESHOLD,
    previous_observed_at: datetime | None = None,
) -> ComparisonResult:
    """Classify *new_price* against *old_price*.

    ``threshold`` is a percentage: a change must exceed it in either
    direction to count as an increase or decrease.
    """
    if old_price is None:
        return ComparisonResult(
            status=ComparisonStatus.NEW,
            new_price=new_price,
            observed_at=observed_at,
        )

    change = new_price - old_price
    percent = change / old_price * 100

    if percent > threshold:
        status = ComparisonStatus.PRICE_INCREASE
    elif percent < -threshold:
        status = ComparisonStatus.PRICE_DECREASE
    else:
        status = ComparisonStatus.UNCHANGED

    return ComparisonResult(
        status=status,
        new_price=new_price,
        observed_at=observed_at,
        old_price=old_price,
        change_amount=round(change, 2),
        change_percent=round(percent, 2),
        previous_observed_at=previous_observed_at,
    )


@dataclass
class ComparisonSummary:
    """Classified results grouped by status."""

    new: list[ComparisonResult] = field(
        default_factory=lambda: list[ComparisonResult]()
    )
    increases: list[ComparisonResult] = field(
        default_factory=lambda: list[ComparisonResult]()
    )
    decreases: list[ComparisonResult] = field(
        default_factory=lambda: list[ComparisonResult]()
    )
    unchanged: list[ComparisonResult] = field(
        default_factory=lambda: list[ComparisonResult]()
    )

    @property
    def total(self) -> int:
        return (
            len(self.new)
            + len(self.increases)
            + len(self.decreases)
            + len(self.unchanged)
        )

    @property
    def updated(self) -> int:
        return len(self.increases) + len(self.decreases)

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "new": len(self.new),
            "updated": self.updated,
            "unchanged": len(self.unchanged),
        }


def summarize(results: list[ComparisonResult]) -> ComparisonSummary:
    """Group results into new / increases / decreases / unchanged.

    Increases are listed largest move first, decreases steepest first.
    """
    summary = ComparisonSummary()
    for r in results:
        if r.status is ComparisonStatus.NEW:
            summary.new.append(r)
        elif r.status is ComparisonStatus.PRICE_INCREASE:
            summary.increases.append(r)
        elif r.status is ComparisonStatus.PRICE_DECREASE:
            summary.decreases.append(r)
        else:
            summary.unchanged.append(r)
    summary.increases.sort(key=lambda r: r.change_percent or 0, reverse=True)
    summary.decreases.sort(key=lambda r: r.change_percent or 0)
    return summary


class PriceComparisonService:
    """Looks up the prior observation in scope and classifies against it.

    Read-only: never writes to the store.
    """

    def __init__(
        self,
        store: ObservationStore,
        threshold: float = Settings.PRICE_CHANGE_THRESHOLD,
        scope: ComparisonScope = ComparisonScope.SELLER,
    ) -> None:
        self._store = store
        self.threshold = threshold
        self.scope = scope

    def previous(
        self,
        observation: PriceObservation,
        scope: ComparisonScope | None = None,
    ) -> PriceObservation | None:
        """Most recent stored observation before *observation*.

        Rows observed at the same instant count as earlier: all of them
        for an observation not yet stored, those with a lower id for a
        stored one.
        """
        scope = scope or self.scope
        seller_id = (
            observation.seller_id
            if scope is ComparisonScope.SELLER
            else None
        )
        if observation.id is None:
            return self._store.latest(
                observation.catalog_item_id,
                seller_id=seller_id,
                before=observation.observed_at + _TICK,
            )
        return self._store.latest(
            observation.catalog_item_id,
            seller_id=seller_id,
            before=observation.observed_at,
            before_id=observation.id,
        )

    def compare(
        self,
        observation: PriceObservation,
        scope: ComparisonScope | None = None,
        threshold: float | None = None,
        previous: PriceObservation | None = None,
    ) -> ComparisonResult:
        """Classify *observation*.

        Pass ``previous`` when it was looked up before the observation
        was appended; otherwise it is fetched from the store.
        """
        prior = previous if previous is not None else self.previous(
            observation, scope,
        )
        result = classify(
            observation.price,
            prior.price if prior else None,
            observation.observed_at,
            self.threshold if threshold is None else threshold,
            prior.observed_at if prior else None,
        )
        logger.debug(
            "Item %d seller %d: %s (%.2f -> %.2f)",
            observation.catalog_item_id,
            observation.seller_id,
            result.status.value,
            prior.price if prior else 0.0,
            observation.price,
        )
        return result
