# pellet_watch/storage/observation_store.py

"""Append-only, month-partitioned price observation store.

Every calendar month lives in its own table
(``price_observations_YYYY_MM``) registered in ``observation_partitions``.
Partitions are provisioned ahead of the write path; appending into a
month without an online partition raises :class:`DataOutOfRangeError`.
Rows are never updated or deleted: triggers reject both, and archiving
moves a whole partition to a separate SQLite file.
"""

import logging
import math
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pellet_watch.config.settings import Settings
from pellet_watch.errors import DataOutOfRangeError
from pellet_watch.models.price_observation import PriceObservation
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import (
    Database,
    ensure_utc,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = logging.getLogger("pellet_watch.observations")

ONLINE = "online"
ARCHIVED = "archived"

# Smallest step of the stored timestamp format
_TICK = timedelta(microseconds=1)

_PARTITION_DDL = """\
CREATE TABLE IF NOT EXISTS {name} (
    id              INTEGER PRIMARY KEY,
    catalog_item_id INTEGER NOT NULL REFERENCES catalog_items(id),
    seller_id       INTEGER NOT NULL REFERENCES sellers(id),
    price           REAL    NOT NULL CHECK (price > 0),
    currency        TEXT    NOT NULL DEFAULT 'EUR',
    in_stock        INTEGER NOT NULL DEFAULT 1,
    quantity        REAL,
    unit            TEXT,
    source_url      TEXT    NOT NULL DEFAULT '',
    observed_at     TEXT    NOT NULL
                    CHECK (observed_at >= '{start}' AND observed_at < '{end}')
);

CREATE INDEX IF NOT EXISTS idx_{name}_item_seller_date
    ON {name}(catalog_item_id, seller_id, observed_at);

CREATE INDEX IF NOT EXISTS idx_{name}_date
    ON {name}(observed_at);

CREATE TRIGGER IF NOT EXISTS trg_{name}_no_update
    BEFORE UPDATE ON {name}
BEGIN
    SELECT RAISE(ABORT, 'price observations are immutable');
END;

CREATE TRIGGER IF NOT EXISTS trg_{name}_no_delete
    BEFORE DELETE ON {name}
BEGIN
    SELECT RAISE(ABORT, 'price observations are immutable');
END;
"""

_COLUMNS = (
    "id, catalog_item_id, seller_id, price, currency, in_stock, "
    "quantity, unit, source_url, observed_at"
)


def partition_name(year: int, month: int) -> str:
    return f"price_observations_{year:04d}_{month:02d}"


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """``[start, end)`` of a calendar month in UTC."""
    start = ensure_utc(datetime(year, month, 1))
    if month == 12:
        end = ensure_utc(datetime(year + 1, 1, 1))
    else:
        end = ensure_utc(datetime(year, month + 1, 1))
    return start, end


def add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


@dataclass
class PartitionInfo:
    """Registry entry for one month partition."""

    name: str
    range_start: datetime
    range_end: datetime
    state: str
    row_count: int | None = None
    archive_path: str | None = None


def _row_to_observation(row: sqlite3.Row) -> PriceObservation:
    return PriceObservation(
        id=row["id"],
        catalog_item_id=row["catalog_item_id"],
        seller_id=row["seller_id"],
        price=row["price"],
        currency=row["currency"],
        in_stock=bool(row["in_stock"]),
        quantity=row["quantity"],
        unit=row["unit"],
        source_url=row["source_url"],
        observed_at=from_db_timestamp(row["observed_at"]),
    )


class ObservationStore:
    """Insert-only time-series storage of :class:`PriceObservation` rows."""

    def __init__(
        self,
        db: Database,
        catalog: CatalogRepository | None = None,
    ) -> None:
        self._db = db
        self._catalog = catalog

    # ── Partitions ───────────────────────────────────────

    def create_partition(self, year: int, month: int) -> bool:
        """Create the partition for one month.  Returns ``False`` if it exists."""
        name = partition_name(year, month)
        start, end = month_bounds(year, month)
        conn = self._db.connection()
        existing = conn.execute(
            "SELECT state FROM observation_partitions WHERE name = ?",
            (name,),
        ).fetchone()
        if existing is not None:
            return False

        # executescript commits implicitly, so DDL runs outside transaction()
        conn.executescript(
            _PARTITION_DDL.format(
                name=name,
                start=to_db_timestamp(start),
                end=to_db_timestamp(end),
            )
        )
        cur = conn.execute(
            "INSERT INTO observation_partitions "
            "(name, range_start, range_end, state, created_at) "
            "VALUES (?, ?, ?, ?, ?) ON CONFLICT(name) DO NOTHING",
            (
                name,
                to_db_timestamp(start),
                to_db_timestamp(end),
                ONLINE,
                to_db_timestamp(utcnow()),
            ),
        )
        if cur.rowcount:
            logger.info("Provisioned partition %s", name)
        return bool(cur.rowcount)

    def provision_partitions(
        self,
        start: datetime | None = None,
        months_ahead: int = Settings.PARTITION_MONTHS_AHEAD,
        months_back: int = 0,
    ) -> list[str]:
        """Provision partitions around *start* (default: now).

        Returns the names of the partitions that were newly created.
        """
        anchor = ensure_utc(start or utcnow())
        created: list[str] = []
        for delta in range(-months_back, months_ahead + 1):
            year, month = add_months(anchor.year, anchor.month, delta)
            if self.create_partition(year, month):
                created.append(partition_name(year, month))
        return created

    def list_partitions(self, with_counts: bool = True) -> list[PartitionInfo]:
        """All registered partitions, oldest first."""
        conn = self._db.connection()
        rows = conn.execute(
            "SELECT name, range_start, range_end, state, archive_path "
            "FROM observation_partitions ORDER BY range_start",
        ).fetchall()
        result: list[PartitionInfo] = []
        for r in rows:
            count: int | None = None
            if with_counts and r["state"] == ONLINE:
                count = int(
                    conn.execute(f"SELECT COUNT(*) FROM {r['name']}").fetchone()[0]
                )
            result.append(PartitionInfo(
                name=r["name"],
                range_start=from_db_timestamp(r["range_start"]),
                range_end=from_db_timestamp(r["range_end"]),
                state=r["state"],
                row_count=count,
                archive_path=r["archive_path"],
            ))
        return result

    def _online_partitions(
        self,
        conn: sqlite3.Connection,
        start: datetime | None = None,
        end: datetime | None = None,
        newest_first: bool = False,
    ) -> list[str]:
        """Online partitions overlapping ``[start, end)``."""
        clauses = ["state = ?"]
        params: list[Any] = [ONLINE]
        if start is not None:
            clauses.append("range_end > ?")
            params.append(to_db_timestamp(start))
        if end is not None:
            clauses.append("range_start < ?")
            params.append(to_db_timestamp(end))
        order = "DESC" if newest_first else "ASC"
        rows = conn.execute(
            "SELECT name FROM observation_partitions "
            f"WHERE {' AND '.join(clauses)} ORDER BY range_start {order}",
            params,
        ).fetchall()
        return [r[0] for r in rows]

    def archive_partition(
        self,
        year: int,
        month: int,
        archive_dir: Path | None = None,
    ) -> Path:
        """Move a month's rows into ``<archive_dir>/<partition>.db``.

        The partition leaves online query scope and later appends into
        that month raise :class:`DataOutOfRangeError`.
        """
        name = partition_name(year, month)
        target_dir = archive_dir or Settings.ARCHIVE_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{name}.db"

        conn = self._db.connection()
        # ATTACH is not allowed inside a transaction
        conn.execute("ATTACH DATABASE ? AS archive", (str(target),))
        try:
            with self._db.transaction(immediate=True):
                row = conn.execute(
                    "SELECT state FROM observation_partitions WHERE name = ?",
                    (name,),
                ).fetchone()
                if row is None or row[0] != ONLINE:
                    msg = f"Partition {name} is not online"
                    raise ValueError(msg)
                conn.execute(f"DROP TABLE IF EXISTS archive.{name}")
                conn.execute(
                    f"CREATE TABLE archive.{name} AS SELECT * FROM main.{name}"
                )
                moved = int(
                    conn.execute(
                        f"SELECT COUNT(*) FROM archive.{name}"
                    ).fetchone()[0]
                )
                conn.execute(f"DROP TABLE main.{name}")
                conn.execute(
                    "UPDATE observation_partitions "
                    "SET state = ?, archive_path = ? WHERE name = ?",
                    (ARCHIVED, str(target), name),
                )
        finally:
            conn.execute("DETACH DATABASE archive")

        logger.info(
            "Archived partition %s (%d rows) to %s", name, moved, target,
        )
        return target

    # ── Writing ──────────────────────────────────────────

    def append(self, observation: PriceObservation) -> PriceObservation:
        """Insert one observation atomically and return it with its id.

        Raises :class:`ValueError` for a non-positive price and
        :class:`DataOutOfRangeError` when the month has no online
        partition.  Foreign-key violations propagate as
        :class:`sqlite3.IntegrityError`.
        """
        if not math.isfinite(observation.price) or observation.price <= 0:
            msg = f"Observation price must be > 0, got {observation.price}"
            raise ValueError(msg)

        observed_at = ensure_utc(observation.observed_at)
        name = partition_name(observed_at.year, observed_at.month)

        with self._db.transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT state FROM observation_partitions WHERE name = ?",
                (name,),
            ).fetchone()
            if row is None or row[0] != ONLINE:
                raise DataOutOfRangeError(observed_at, name)

            obs_id = conn.execute(
                "INSERT INTO observation_ids DEFAULT VALUES"
            ).lastrowid
            conn.execute(
                f"INSERT INTO {name} ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    obs_id,
                    observation.catalog_item_id,
                    observation.seller_id,
                    observation.price,
                    observation.currency,
                    int(observation.in_stock),
                    observation.quantity,
                    observation.unit,
                    observation.source_url,
                    to_db_timestamp(observed_at),
                ),
            )

        logger.debug(
            "Appended observation %d (item=%d seller=%d price=%.2f) to %s",
            obs_id,
            observation.catalog_item_id,
            observation.seller_id,
            observation.price,
            name,
        )
        return replace(observation, id=obs_id, observed_at=observed_at)

    # ── Querying ─────────────────────────────────────────

    def _item_ids(self, catalog_item_id: int) -> list[int]:
        if self._catalog is None:
            return [catalog_item_id]
        return self._catalog.scope_ids(catalog_item_id)

    @staticmethod
    def _where(
        item_ids: list[int] | None,
        seller_id: int | None,
        start: datetime | None,
        end: datetime | None,
        in_stock: bool | None,
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if item_ids is not None:
            marks = ", ".join("?" for _ in item_ids)
            clauses.append(f"catalog_item_id IN ({marks})")
            params.extend(item_ids)
        if seller_id is not None:
            clauses.append("seller_id = ?")
            params.append(seller_id)
        if start is not None:
            clauses.append("observed_at >= ?")
            params.append(to_db_timestamp(start))
        if end is not None:
            clauses.append("observed_at < ?")
            params.append(to_db_timestamp(end))
        if in_stock is not None:
            clauses.append("in_stock = ?")
            params.append(int(in_stock))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def latest(
        self,
        catalog_item_id: int,
        seller_id: int | None = None,
        before: datetime | None = None,
        before_id: int | None = None,
    ) -> PriceObservation | None:
        """The observation with the greatest observed-at in scope.

        ``seller_id=None`` searches across all sellers.  ``before``
        restricts the search to observations strictly earlier than it;
        with ``before_id`` rows observed exactly at ``before`` count too
        when their id is lower, so same-instant rows order by insertion.
        """
        item_ids = self._item_ids(catalog_item_id)
        if before is not None and before_id is not None:
            where, params = self._where(item_ids, seller_id, None, None, None)
            stamp = to_db_timestamp(before)
            cursor = "(observed_at < ? OR (observed_at = ? AND id < ?))"
            where = f"{where} AND {cursor}" if where else f"WHERE {cursor}"
            params.extend([stamp, stamp, before_id])
            partition_end: datetime | None = before + _TICK
        else:
            where, params = self._where(item_ids, seller_id, None, before, None)
            partition_end = before
        with self._db.transaction() as conn:
            for name in self._online_partitions(
                conn, end=partition_end, newest_first=True,
            ):
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM {name} {where} "
                    "ORDER BY observed_at DESC, id DESC LIMIT 1",
                    params,
                ).fetchone()
                if row is not None:
                    return _row_to_observation(row)
        return None

    def observations(
        self,
        catalog_item_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        seller_id: int | None = None,
        in_stock: bool | None = None,
    ) -> list[PriceObservation]:
        """Observations in ``[start, end)``, oldest first.

        Reads run inside one transaction so every partition is seen at
        the same snapshot.
        """
        item_ids = (
            self._item_ids(catalog_item_id)
            if catalog_item_id is not None
            else None
        )
        where, params = self._where(item_ids, seller_id, start, end, in_stock)
        result: list[PriceObservation] = []
        with self._db.transaction() as conn:
            for name in self._online_partitions(conn, start, end):
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM {name} {where} "
                    "ORDER BY observed_at ASC, id ASC",
                    params,
                ).fetchall()
                result.extend(_row_to_observation(r) for r in rows)
        return result

    def range(
        self,
        catalog_item_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        seller_id: int | None = None,
    ) -> list[PriceObservation]:
        """Ordered observations of one catalog item in ``[start, end)``.

        Finite and restartable: continue by re-querying with
        ``start`` set just past the last row returned.
        """
        return self.observations(
            catalog_item_id=catalog_item_id,
            start=start,
            end=end,
            seller_id=seller_id,
        )

    def count(self) -> int:
        """Number of observations across online partitions."""
        with self._db.transaction() as conn:
            return sum(
                int(conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()[0])
                for name in self._online_partitions(conn)
            )

    def last_observed_at(self) -> datetime | None:
        """Newest observed-at across online partitions."""
        with self._db.transaction() as conn:
            for name in self._online_partitions(conn, newest_first=True):
                row = conn.execute(
                    f"SELECT MAX(observed_at) FROM {name}"
                ).fetchone()
                if row[0] is not None:
                    return from_db_timestamp(row[0])
        return None

    def stats(self, days: int = 7) -> dict[str, object]:
        """Ingestion activity over the last *days* days."""
        since = utcnow() - timedelta(days=days)
        rows = self.observations(start=since)
        if not rows:
            return {
                "total_records": 0,
                "unique_products": 0,
                "unique_sellers": 0,
                "first_observed": None,
                "last_observed": None,
                "avg_price": None,
            }
        return {
            "total_records": len(rows),
            "unique_products": len({r.catalog_item_id for r in rows}),
            "unique_sellers": len({r.seller_id for r in rows}),
            "first_observed": rows[0].observed_at,
            "last_observed": rows[-1].observed_at,
            "avg_price": round(sum(r.price for r in rows) / len(rows), 2),
        }
