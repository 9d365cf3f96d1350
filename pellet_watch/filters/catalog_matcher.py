# pellet_watch/filters/catalog_matcher.py

"""Resolve a normalised product to an existing catalog item."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from difflib import SequenceMatcher

from pellet_watch.config.settings import Settings
from pellet_watch.models.catalog import CatalogItem

logger = logging.getLogger("pellet_watch.matcher")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of catalog matching.

    ``method`` is ``exact``, ``fuzzy`` or ``create``; on ``create`` the
    caller must create a new catalog item.
    """

    method: str
    item: CatalogItem | None = None
    score: float = 0.0

    @property
    def should_create(self) -> bool:
        return self.item is None


def _normalise_name(name: str) -> str:
    """Lowercase and collapse whitespace for comparison."""
    return " ".join(re.sub(r"[_\-]", " ", name.lower()).split())


def name_similarity(left: str, right: str) -> float:
    """Similarity ratio in ``[0, 1]`` between two product names."""
    a = _normalise_name(left)
    b = _normalise_name(right)
    if not a and not b:
        return 1.0
    return SequenceMatcher(None, a, b).ratio()


class CatalogMatcher:
    """Exact-key then fuzzy-name matching against a bounded candidate set."""

    def __init__(
        self, threshold: float = Settings.SIMILARITY_THRESHOLD,
    ) -> None:
        if not 0.0 < threshold <= 1.0:
            msg = f"Similarity threshold must be in (0, 1], got {threshold}"
            raise ValueError(msg)
        self.threshold = threshold

    def match(
        self,
        normalized_key: str,
        product_name: str,
        candidates: list[CatalogItem],
        exact_key: bool = True,
    ) -> MatchDecision:
        """Pick the catalog item for a product, or signal creation.

        1. Exact ``normalized_key`` match (skipped when ``exact_key`` is
           false, e.g. for keys in the unknown-quantity bucket).
        2. Best fuzzy name score at or above the threshold.  Ties go to
           the most recently updated item.
        """
        live = [c for c in candidates if c.merged_into_id is None]

        if exact_key:
            exact = [c for c in live if c.normalized_key == normalized_key]
            if exact:
                best = max(exact, key=_recency)
                logger.debug(
                    "Exact key match %s -> item %d",
                    normalized_key,
                    best.id,
                )
                return MatchDecision(method="exact", item=best, score=1.0)

        best_item: CatalogItem | None = None
        best_score = 0.0
        for candidate in live:
            score = name_similarity(product_name, candidate.name)
            if score < self.threshold:
                continue
            if (
                best_item is None
                or score > best_score
                or (
                    score == best_score
                    and _recency(candidate) > _recency(best_item)
                )
            ):
                best_item = candidate
                best_score = score

        if best_item is not None:
            logger.info(
                "Fuzzy match '%s' -> '%s' (item %d, score=%.3f)",
                product_name,
                best_item.name,
                best_item.id,
                best_score,
            )
            return MatchDecision(
                method="fuzzy", item=best_item, score=best_score,
            )

        return MatchDecision(method="create")


def _recency(item: CatalogItem) -> tuple[datetime, int]:
    """Sort key: most recently updated first, then highest id."""
    return (item.updated_at or item.created_at or _EPOCH, item.id)
