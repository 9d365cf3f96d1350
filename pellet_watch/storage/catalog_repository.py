# pellet_watch/storage/catalog_repository.py

"""Sellers and catalog items: race-safe get-or-create and maintenance."""

import logging
import sqlite3
from collections.abc import Callable
from typing import TypeVar

from pellet_watch.config.settings import Settings
from pellet_watch.errors import CatalogConflictError
from pellet_watch.filters.normalizer import NormalizedProduct, UNKNOWN
from pellet_watch.models.catalog import CatalogItem, ProductAttributes, Seller
from pellet_watch.storage.database import (
    Database,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = logging.getLogger("pellet_watch.catalog")

T = TypeVar("T")


def is_unknown_quantity_key(normalized_key: str) -> bool:
    """True for keys in the unknown-quantity bucket."""
    return f"_{UNKNOWN}_" in normalized_key


def _row_to_seller(row: sqlite3.Row) -> Seller:
    return Seller(
        id=row["id"],
        name=row["name"],
        website_url=row["website_url"],
        location=row["location"],
        created_at=from_db_timestamp(row["created_at"]),
    )


def _row_to_item(row: sqlite3.Row) -> CatalogItem:
    return CatalogItem(
        id=row["id"],
        name=row["name"],
        brand=row["brand"],
        category=row["category"],
        attributes=ProductAttributes.from_json(row["attributes"]),
        normalized_key=row["normalized_key"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        merged_into_id=row["merged_into_id"],
    )


def _is_retryable(exc: sqlite3.Error) -> bool:
    """Uniqueness races and lock timeouts are worth another attempt."""
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    if isinstance(exc, sqlite3.OperationalError):
        return "locked" in str(exc).lower() or "busy" in str(exc).lower()
    return False


class CatalogRepository:
    """Store access for :class:`Seller` and :class:`CatalogItem` rows.

    Creation never does check-then-insert: rows are inserted with
    ``ON CONFLICT DO NOTHING`` under a uniqueness constraint and then
    re-read, so concurrent ingestions converge on the same row.
    """

    def __init__(
        self,
        db: Database,
        retries: int = Settings.GET_OR_CREATE_RETRIES,
    ) -> None:
        self._db = db
        self._retries = max(1, retries)

    # ── Get-or-create ────────────────────────────────────

    def _with_retry(self, label: str, op: Callable[[], T | None]) -> T:
        """Run *op* until it returns a row or retries run out."""
        last_exc: sqlite3.Error | None = None
        for attempt in range(1, self._retries + 1):
            try:
                result = op()
            except sqlite3.Error as exc:
                if not _is_retryable(exc):
                    raise
                last_exc = exc
                logger.warning(
                    "Conflict creating %s (attempt %d/%d): %s",
                    label,
                    attempt,
                    self._retries,
                    exc,
                )
                continue
            if result is not None:
                return result
            logger.warning(
                "Row for %s vanished after insert (attempt %d/%d)",
                label,
                attempt,
                self._retries,
            )
        msg = f"Could not get or create {label} after {self._retries} attempts"
        raise CatalogConflictError(msg) from last_exc

    def get_or_create_seller(
        self,
        name: str,
        website_url: str | None = None,
        location: str | None = None,
    ) -> Seller:
        """Return the seller called *name*, creating it on first sighting."""

        def op() -> Seller | None:
            with self._db.transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO sellers "
                    "(name, website_url, location, created_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(name) DO NOTHING",
                    (name, website_url, location, to_db_timestamp(utcnow())),
                )
                if cur.rowcount:
                    logger.info("Created seller '%s'", name)
                row = conn.execute(
                    "SELECT * FROM sellers WHERE name = ?", (name,),
                ).fetchone()
            return _row_to_seller(row) if row else None

        return self._with_retry(f"seller '{name}'", op)

    def get_or_create_item(
        self,
        product: NormalizedProduct,
        name: str,
        brand: str = "",
    ) -> CatalogItem:
        """Return the item for (key, name), creating it if absent."""

        def op() -> CatalogItem | None:
            now = to_db_timestamp(utcnow())
            with self._db.transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO catalog_items "
                    "(name, brand, category, attributes, normalized_key, "
                    " created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(normalized_key, name) DO NOTHING",
                    (
                        name,
                        brand,
                        product.category,
                        product.attributes.to_json(),
                        product.normalized_key,
                        now,
                        now,
                    ),
                )
                if cur.rowcount:
                    logger.info(
                        "Created catalog item '%s' (%s)",
                        name,
                        product.normalized_key,
                    )
                row = conn.execute(
                    "SELECT * FROM catalog_items "
                    "WHERE normalized_key = ? AND name = ?",
                    (product.normalized_key, name),
                ).fetchone()
            return _row_to_item(row) if row else None

        return self._with_retry(f"catalog item '{name}'", op)

    # ── Lookups ──────────────────────────────────────────

    def get_seller(self, seller_id: int) -> Seller | None:
        row = self._db.connection().execute(
            "SELECT * FROM sellers WHERE id = ?", (seller_id,),
        ).fetchone()
        return _row_to_seller(row) if row else None

    def list_sellers(self) -> list[Seller]:
        rows = self._db.connection().execute(
            "SELECT * FROM sellers ORDER BY name",
        ).fetchall()
        return [_row_to_seller(r) for r in rows]

    def get_item(self, item_id: int) -> CatalogItem | None:
        row = self._db.connection().execute(
            "SELECT * FROM catalog_items WHERE id = ?", (item_id,),
        ).fetchone()
        return _row_to_item(row) if row else None

    def find_by_key(self, normalized_key: str) -> list[CatalogItem]:
        """Live (unmerged) items with this key, most recent first."""
        rows = self._db.connection().execute(
            "SELECT * FROM catalog_items "
            "WHERE normalized_key = ? AND merged_into_id IS NULL "
            "ORDER BY updated_at DESC, id DESC",
            (normalized_key,),
        ).fetchall()
        return [_row_to_item(r) for r in rows]

    def recent_candidates(
        self, limit: int = Settings.MATCH_CANDIDATE_LIMIT,
    ) -> list[CatalogItem]:
        """The bounded candidate set for fuzzy matching."""
        rows = self._db.connection().execute(
            "SELECT * FROM catalog_items "
            "WHERE merged_into_id IS NULL "
            "ORDER BY updated_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_item(r) for r in rows]

    def count_items(self) -> int:
        row = self._db.connection().execute(
            "SELECT COUNT(*) FROM catalog_items WHERE merged_into_id IS NULL",
        ).fetchone()
        return int(row[0])

    def count_sellers(self) -> int:
        row = self._db.connection().execute(
            "SELECT COUNT(*) FROM sellers",
        ).fetchone()
        return int(row[0])

    def canonical_id(self, item_id: int) -> int:
        """Follow ``merged_into_id`` to the canonical item."""
        row = self._db.connection().execute(
            "SELECT merged_into_id FROM catalog_items WHERE id = ?",
            (item_id,),
        ).fetchone()
        if row is None or row[0] is None:
            return item_id
        return int(row[0])

    def canonical_map(self) -> dict[int, CatalogItem]:
        """Map every item id (merged or not) to its canonical item."""
        rows = self._db.connection().execute(
            "SELECT * FROM catalog_items",
        ).fetchall()
        items = {int(r["id"]): _row_to_item(r) for r in rows}
        return {
            item_id: items.get(item.merged_into_id or item_id, item)
            for item_id, item in items.items()
        }

    def scope_ids(self, item_id: int) -> list[int]:
        """The canonical id plus every item merged into it."""
        canonical = self.canonical_id(item_id)
        rows = self._db.connection().execute(
            "SELECT id FROM catalog_items WHERE merged_into_id = ? ORDER BY id",
            (canonical,),
        ).fetchall()
        return [canonical, *(int(r[0]) for r in rows)]

    # ── Maintenance ──────────────────────────────────────

    def merge_duplicates(self) -> int:
        """Fold live items sharing a known normalized key into the oldest.

        Observations are left untouched; queries on the canonical item
        pick up rows recorded against the merged ones.  Returns the
        number of items merged.
        """
        merged = 0
        now = to_db_timestamp(utcnow())
        with self._db.transaction(immediate=True) as conn:
            keys = [
                r[0]
                for r in conn.execute(
                    "SELECT normalized_key FROM catalog_items "
                    "WHERE merged_into_id IS NULL "
                    "GROUP BY normalized_key HAVING COUNT(*) > 1",
                ).fetchall()
                if not is_unknown_quantity_key(r[0])
            ]
            for key in keys:
                ids = [
                    int(r[0])
                    for r in conn.execute(
                        "SELECT id FROM catalog_items "
                        "WHERE normalized_key = ? AND merged_into_id IS NULL "
                        "ORDER BY created_at, id",
                        (key,),
                    ).fetchall()
                ]
                canonical, duplicates = ids[0], ids[1:]
                for dup in duplicates:
                    conn.execute(
                        "UPDATE catalog_items "
                        "SET merged_into_id = ?, updated_at = ? "
                        "WHERE id = ? OR merged_into_id = ?",
                        (canonical, now, dup, dup),
                    )
                    merged += 1
                logger.info(
                    "Merged %d duplicate(s) of %s into item %d",
                    len(duplicates),
                    key,
                    canonical,
                )
        return merged
