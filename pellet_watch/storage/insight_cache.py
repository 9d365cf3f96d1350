# pellet_watch/storage/insight_cache.py

"""Persistent cache of generated price insights.

At most one row per scope is active at any time.  Writes deactivate the
previous row and insert the replacement inside a single ``BEGIN
IMMEDIATE`` transaction, and the partial unique index
``uq_cached_insights_active`` rejects a second active row outright.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta

from pellet_watch.config.settings import Settings
from pellet_watch.models.insight import CachedInsight, InsightScope
from pellet_watch.storage.database import (
    Database,
    ensure_utc,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = logging.getLogger("pellet_watch.insights")


def _row_to_insight(row: sqlite3.Row) -> CachedInsight:
    return CachedInsight(
        id=row["id"],
        scope_key=row["scope_key"],
        payload=json.loads(row["payload"]),
        summary=row["summary"],
        data_period=row["data_period"],
        sample_count=row["sample_count"],
        generated_at=from_db_timestamp(row["generated_at"]),
        expires_at=(
            from_db_timestamp(row["expires_at"])
            if row["expires_at"]
            else None
        ),
        active=bool(row["active"]),
    )


class InsightCache:
    """Read/write access to ``cached_insights``.

    Reading never triggers generation: a miss simply returns ``None``.
    """

    def __init__(
        self,
        db: Database,
        ttl_hours: float = Settings.INSIGHT_TTL_HOURS,
    ) -> None:
        self._db = db
        self._ttl = timedelta(hours=ttl_hours)

    def read(
        self,
        scope: InsightScope,
        now: datetime | None = None,
        include_expired: bool = False,
    ) -> CachedInsight | None:
        """Return the active insight for *scope*, or ``None``.

        Rows past their expiry are not served unless
        ``include_expired`` is set.
        """
        moment = to_db_timestamp(now or utcnow())
        sql = (
            "SELECT * FROM cached_insights "
            "WHERE scope_key = ? AND active = 1"
        )
        params: list[object] = [scope.key]
        if not include_expired:
            sql += " AND (expires_at IS NULL OR expires_at > ?)"
            params.append(moment)
        row = self._db.connection().execute(sql, params).fetchone()
        if row is None:
            logger.debug("Insight cache miss for %s", scope.key)
            return None
        logger.debug("Insight cache hit for %s (id=%d)", scope.key, row["id"])
        return _row_to_insight(row)

    def write(
        self,
        scope: InsightScope,
        payload: object,
        summary: str,
        sample_count: int = 0,
        generated_at: datetime | None = None,
        expires_at: datetime | None = None,
    ) -> CachedInsight:
        """Replace the active insight for *scope*.

        ``expires_at`` defaults to ``generated_at`` plus the configured
        TTL.
        """
        generated = ensure_utc(generated_at or utcnow())
        expires = ensure_utc(expires_at) if expires_at else generated + self._ttl

        with self._db.transaction(immediate=True) as conn:
            deactivated = conn.execute(
                "UPDATE cached_insights SET active = 0 "
                "WHERE scope_key = ? AND active = 1",
                (scope.key,),
            ).rowcount
            insight_id = conn.execute(
                "INSERT INTO cached_insights "
                "(scope_key, payload, summary, data_period, sample_count, "
                " generated_at, expires_at, active) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, 1)",
                (
                    scope.key,
                    json.dumps(payload, ensure_ascii=False, default=str),
                    summary,
                    scope.data_period,
                    sample_count,
                    to_db_timestamp(generated),
                    to_db_timestamp(expires),
                ),
            ).lastrowid

        logger.info(
            "Cached insight %d for %s (replaced %d, expires %s)",
            insight_id,
            scope.key,
            deactivated,
            expires.isoformat(),
        )
        return CachedInsight(
            id=insight_id,
            scope_key=scope.key,
            payload=payload,
            summary=summary,
            data_period=scope.data_period,
            sample_count=sample_count,
            generated_at=generated,
            expires_at=expires,
            active=True,
        )

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Deactivate every active row past its expiry.

        Returns the number of rows deactivated.
        """
        moment = to_db_timestamp(now or utcnow())
        with self._db.transaction(immediate=True) as conn:
            count = conn.execute(
                "UPDATE cached_insights SET active = 0 "
                "WHERE active = 1 AND expires_at IS NOT NULL "
                "AND expires_at <= ?",
                (moment,),
            ).rowcount
        if count:
            logger.info("Swept %d expired insight(s)", count)
        return count

    def list_active(self, limit: int = 50) -> list[CachedInsight]:
        """Active rows, newest first."""
        rows = self._db.connection().execute(
            "SELECT * FROM cached_insights WHERE active = 1 "
            "ORDER BY generated_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_insight(r) for r in rows]
