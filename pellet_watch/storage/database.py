# pellet_watch/storage/database.py

"""SQLite store handle shared by every pipeline component.

One :class:`Database` is created at process start and passed to the
repositories, the observation store and the insight cache.  Each thread
gets its own connection so concurrent batches do not share cursor state;
SQLite's own locking plus uniqueness constraints arbitrate between them.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from pellet_watch.config.settings import Settings

logger = logging.getLogger("pellet_watch.database")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS sellers (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL UNIQUE,
    website_url TEXT,
    location    TEXT,
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS catalog_items (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    name           TEXT    NOT NULL,
    brand          TEXT    NOT NULL DEFAULT '',
    category       TEXT    NOT NULL,
    attributes     TEXT    NOT NULL,
    normalized_key TEXT    NOT NULL,
    merged_into_id INTEGER REFERENCES catalog_items(id),
    created_at     TEXT    NOT NULL,
    updated_at     TEXT    NOT NULL,
    UNIQUE (normalized_key, name)
);

CREATE INDEX IF NOT EXISTS idx_catalog_items_key
    ON catalog_items(normalized_key);

CREATE INDEX IF NOT EXISTS idx_catalog_items_updated
    ON catalog_items(updated_at DESC);

CREATE TABLE IF NOT EXISTS observation_partitions (
    name         TEXT PRIMARY KEY,
    range_start  TEXT NOT NULL,
    range_end    TEXT NOT NULL,
    state        TEXT NOT NULL DEFAULT 'online'
                 CHECK (state IN ('online', 'archived')),
    archive_path TEXT,
    created_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS observation_ids (
    id INTEGER PRIMARY KEY AUTOINCREMENT
);

CREATE TABLE IF NOT EXISTS cached_insights (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    scope_key     TEXT    NOT NULL,
    payload       TEXT    NOT NULL,
    summary       TEXT    NOT NULL DEFAULT '',
    data_period   TEXT    NOT NULL,
    sample_count  INTEGER NOT NULL DEFAULT 0,
    generated_at  TEXT    NOT NULL,
    expires_at    TEXT,
    active        INTEGER NOT NULL DEFAULT 1
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_cached_insights_active
    ON cached_insights(scope_key) WHERE active = 1;

CREATE INDEX IF NOT EXISTS idx_cached_insights_expires
    ON cached_insights(expires_at) WHERE expires_at IS NOT NULL;
"""


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so lexical order equals time order."""
    return ensure_utc(value).strftime(_TS_FORMAT)


def from_db_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, _TS_FORMAT).replace(tzinfo=timezone.utc)


class Database:
    """Per-thread SQLite connections over one database file."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.path: Path = db_path or Settings.DB_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

        conn = self.connection()
        conn.executescript(_SCHEMA)
        logger.debug("Database opened at %s", self.path)

    def connection(self) -> sqlite3.Connection:
        """Return the calling thread's connection, opening it if needed."""
        if self._closed:
            msg = f"Database {self.path} is closed"
            raise sqlite3.ProgrammingError(msg)
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            # Autocommit mode: transactions are explicit via transaction()
            conn = sqlite3.connect(
                str(self.path),
                isolation_level=None,
                check_same_thread=False,
                timeout=Settings.BUSY_TIMEOUT_MS / 1000,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={Settings.BUSY_TIMEOUT_MS}")
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
            logger.debug(
                "Opened connection for thread %s",
                threading.current_thread().name,
            )
        return conn

    @contextmanager
    def transaction(
        self, immediate: bool = False,
    ) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; roll back on any exception.

        ``immediate`` takes the write lock up front, serialising
        concurrent writers for read-then-write sequences.
        """
        conn = self.connection()
        if conn.in_transaction:
            # Nested use joins the outer transaction
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def close(self) -> None:
        """Close every connection opened through this handle."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._closed = True
        self._local = threading.local()
        logger.debug("Database at %s closed", self.path)
