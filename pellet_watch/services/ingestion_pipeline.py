# pellet_watch/services/ingestion_pipeline.py

"""Ingests scraped items: validate, normalise, match, store, classify."""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pellet_watch.config.settings import Settings
from pellet_watch.errors import (
    BatchStoreError,
    CatalogConflictError,
    DataOutOfRangeError,
    ItemValidationError,
)
from pellet_watch.filters.catalog_matcher import CatalogMatcher, MatchDecision
from pellet_watch.filters.item_validator import ItemValidator
from pellet_watch.filters.normalizer import NormalizedProduct, ProductNormalizer
from pellet_watch.models.catalog import CatalogItem, Seller
from pellet_watch.models.comparison import ComparisonResult, ComparisonScope
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.models.raw_item import RawItem
from pellet_watch.services.price_comparison import (
    ComparisonSummary,
    PriceComparisonService,
    classify,
    summarize,
)
from pellet_watch.storage.catalog_repository import (
    CatalogRepository,
    is_unknown_quantity_key,
)
from pellet_watch.storage.database import Database, ensure_utc, utcnow
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.pipeline")

# Operational errors: recorded per item, then surfaced after the batch
_STORE_ERRORS = (DataOutOfRangeError, sqlite3.IntegrityError)


@dataclass
class IngestionRecord:
    """Everything produced while ingesting one item."""

    raw: RawItem
    normalized: NormalizedProduct
    seller: Seller | None = None
    item: CatalogItem | None = None
    match: MatchDecision | None = None
    observation: PriceObservation | None = None
    comparison: ComparisonResult | None = None


@dataclass
class BatchResult:
    """Outcome of one batch; failures never abort the rest of it."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    dry_run: bool = False
    records: list[IngestionRecord] = field(
        default_factory=lambda: list[IngestionRecord]()
    )
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )
    # Entries that were not objects are kept as given
    rejected: list[tuple[Any, list[str]]] = field(
        default_factory=lambda: list[tuple[Any, list[str]]]()
    )
    store_errors: list[Exception] = field(
        default_factory=lambda: list[Exception]()
    )
    comparison: ComparisonSummary = field(default_factory=ComparisonSummary)


def as_raw_item(entry: Any) -> RawItem:
    """Accept a :class:`RawItem` or a JSON object; reject anything else."""
    if isinstance(entry, RawItem):
        return entry
    if isinstance(entry, dict):
        return RawItem.from_dict(entry)
    raise ItemValidationError(["item must be an object"])


def seller_website(source_url: str) -> str | None:
    """``scheme://host`` of a listing URL."""
    if not source_url:
        return None
    parsed = urlparse(source_url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


class IngestionPipeline:
    """Turns raw scraped items into stored, classified observations."""

    def __init__(
        self,
        db: Database,
        catalog: CatalogRepository | None = None,
        store: ObservationStore | None = None,
        normalizer: ProductNormalizer | None = None,
        matcher: CatalogMatcher | None = None,
        validator: ItemValidator | None = None,
        threshold: float = Settings.PRICE_CHANGE_THRESHOLD,
        scope: ComparisonScope = ComparisonScope.SELLER,
    ) -> None:
        self.db = db
        self.catalog = catalog or CatalogRepository(db)
        self.store = store or ObservationStore(db, self.catalog)
        self.normalizer = normalizer or ProductNormalizer()
        self.matcher = matcher or CatalogMatcher()
        self.validator = validator or ItemValidator()
        self.comparison = PriceComparisonService(
            self.store, threshold=threshold, scope=scope,
        )

    # ── Private helpers ──────────────────────────────────

    def _prepare(self, raw: RawItem) -> tuple[RawItem, NormalizedProduct]:
        """Clean, validate and normalise; raise on invalid input."""
        cleaned = self.validator.clean(raw)
        errors = self.validator.validate(cleaned)
        if errors:
            raise ItemValidationError(errors)
        normalized = self.normalizer.normalize(
            cleaned.product_name,
            cleaned.raw_specifications,
            cleaned.description,
        )
        return cleaned, normalized

    def _resolve_item(
        self, item: RawItem, normalized: NormalizedProduct,
    ) -> tuple[CatalogItem, MatchDecision]:
        exact_key = not is_unknown_quantity_key(normalized.normalized_key)
        candidates = {
            c.id: c for c in self.catalog.recent_candidates()
        }
        if exact_key:
            for c in self.catalog.find_by_key(normalized.normalized_key):
                candidates.setdefault(c.id, c)

        decision = self.matcher.match(
            normalized.normalized_key,
            item.product_name,
            list(candidates.values()),
            exact_key=exact_key,
        )
        if decision.item is not None:
            return decision.item, decision

        created = self.catalog.get_or_create_item(
            normalized, item.product_name, item.brand,
        )
        return created, decision

    # ── Single item ──────────────────────────────────────

    def ingest_item(
        self,
        raw: RawItem | dict[str, Any],
        observed_at: datetime | None = None,
        scope: ComparisonScope | None = None,
        threshold: float | None = None,
    ) -> IngestionRecord:
        """Ingest one item and classify its price.

        The prior observation is looked up before the new one is
        appended; the append happens whatever the classification.
        """
        raw = as_raw_item(raw)
        item, normalized = self._prepare(raw)

        seller = self.catalog.get_or_create_seller(
            item.seller_name, website_url=seller_website(item.source_url),
        )
        catalog_item, decision = self._resolve_item(item, normalized)

        observation = PriceObservation(
            catalog_item_id=catalog_item.id,
            seller_id=seller.id,
            price=float(item.price),
            observed_at=ensure_utc(observed_at or utcnow()),
            currency=item.currency,
            in_stock=bool(item.in_stock),
            quantity=normalized.attributes.quantity,
            unit=normalized.attributes.unit,
            source_url=item.source_url,
        )

        previous = self.comparison.previous(observation, scope)
        stored = self.store.append(observation)
        result = classify(
            stored.price,
            previous.price if previous else None,
            stored.observed_at,
            self.comparison.threshold if threshold is None else threshold,
            previous.observed_at if previous else None,
        )

        return IngestionRecord(
            raw=raw,
            normalized=normalized,
            seller=seller,
            item=catalog_item,
            match=decision,
            observation=stored,
            comparison=result,
        )

    # ── Batches ──────────────────────────────────────────

    def ingest_batch(
        self,
        items: list[Any],
        observed_at: datetime | None = None,
        dry_run: bool = False,
        isolate_store_errors: bool = False,
        scope: ComparisonScope | None = None,
        threshold: float | None = None,
    ) -> BatchResult:
        """Ingest a batch, isolating per-item failures.

        Store errors (:class:`DataOutOfRangeError`, integrity errors) do
        not stop the batch either, but once it finishes the first one is
        raised as :class:`BatchStoreError` carrying the result, unless
        ``isolate_store_errors`` is set.
        """
        result = BatchResult(total=len(items), dry_run=dry_run)
        comparisons: list[ComparisonResult] = []

        for index, entry in enumerate(items):
            raw: Any = entry
            label = f"#{index}"
            try:
                raw = as_raw_item(entry)
                label = f"#{index} '{raw.product_name}' from '{raw.seller_name}'"
                if dry_run:
                    _, normalized = self._prepare(raw)
                    result.records.append(
                        IngestionRecord(raw=raw, normalized=normalized)
                    )
                else:
                    record = self.ingest_item(
                        raw, observed_at, scope=scope, threshold=threshold,
                    )
                    result.records.append(record)
                    if record.comparison is not None:
                        comparisons.append(record.comparison)
                result.succeeded += 1
            except ItemValidationError as exc:
                logger.warning("Rejected item %s: %s", label, exc)
                result.rejected.append((raw, exc.errors))
                result.errors.append(f"{label}: {exc}")
                result.failed += 1
            except _STORE_ERRORS as exc:
                logger.error(
                    "Store error for item %s: %s", label, exc, exc_info=True,
                )
                result.store_errors.append(exc)
                result.errors.append(f"{label}: {exc}")
                result.failed += 1
            except (CatalogConflictError, sqlite3.Error, ValueError) as exc:
                logger.error(
                    "Failed to ingest item %s: %s", label, exc, exc_info=True,
                )
                result.errors.append(f"{label}: {exc}")
                result.failed += 1

        result.comparison = summarize(comparisons)
        logger.info(
            "Batch done: %d/%d ingested, %d failed%s",
            result.succeeded,
            result.total,
            result.failed,
            " (dry run)" if dry_run else "",
        )

        if result.store_errors and not isolate_store_errors:
            first = result.store_errors[0]
            msg = (
                f"{len(result.store_errors)} store error(s) during batch; "
                f"first: {first}"
            )
            raise BatchStoreError(msg, result) from first
        return result

    async def ingest_batches(
        self,
        batches: list[list[RawItem]] | list[list[dict[str, Any]]],
        observed_at: datetime | None = None,
        isolate_store_errors: bool = False,
    ) -> list[BatchResult]:
        """Ingest independent batches concurrently in worker threads.

        Every batch runs to completion.  If any batch raised, the first
        exception is re-raised afterwards.
        """
        tasks = [
            asyncio.to_thread(
                self.ingest_batch,
                batch,
                observed_at,
                False,
                isolate_store_errors,
            )
            for batch in batches
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[BatchResult] = []
        first_error: BaseException | None = None
        for outcome in outcomes:
            if isinstance(outcome, BatchResult):
                results.append(outcome)
                continue
            if isinstance(outcome, BatchStoreError):
                results.append(outcome.result)
            logger.error(
                "Batch failed: %s", outcome, exc_info=outcome,
            )
            if first_error is None:
                first_error = outcome

        if first_error is not None:
            raise first_error
        return results
