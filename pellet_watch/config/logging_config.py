# pellet_watch/config/logging_config.py

"""Per-run timestamped logging configuration for pellet_watch.

Every CLI invocation (``pellet-watch ingest``, ``provision``, ...) gets
its own log file inside ``logs/`` named after the launch timestamp, e.g.
``logs/run_20260214_153045.log``.  All ``pellet_watch.*`` loggers
(pipeline, catalog, store, analytics, insights) write into it at DEBUG.

The console handler is meant for operators running ingestion from cron:
it defaults to WARNING, so rejected batch items (WARNING) and store
failures (ERROR, with traceback) are visible while per-item progress
stays in the file.  ``PW_LOG_LEVEL`` or ``--verbose`` lowers it.

Only the newest :attr:`Settings.LOG_RETENTION_RUNS` run logs are kept.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from pellet_watch.config.settings import Settings

# Reusable format strings --------------------------------------------------

# Batches run in worker threads, so the thread name is part of every line
_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOG_GLOB = "run_*.log"


def _resolve_level(level: int | str | None) -> int:
    """Map a level name or number to a logging level, WARNING on junk."""
    if level is None:
        level = Settings.LOG_CONSOLE_LEVEL
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def prune_old_logs(logs_dir: Path, keep: int) -> list[Path]:
    """Delete all but the *keep* newest run logs; returns what was removed."""
    if keep <= 0:
        return []
    # Names embed the timestamp, so lexical order is launch order
    runs = sorted(logs_dir.glob(_LOG_GLOB))
    stale = runs[:-keep]
    for path in stale:
        path.unlink(missing_ok=True)
    return stale


def setup_logging(
    logs_dir: Path | None = None,
    console_level: int | str | None = None,
) -> Path:
    """Initialise the root ``pellet_watch`` logger for the current run.

    Args:
        logs_dir: Directory for run logs (default ``Settings.LOGS_DIR``).
        console_level: Level for the stderr handler; defaults to
            ``Settings.LOG_CONSOLE_LEVEL``.

    Returns:
        The :class:`~pathlib.Path` to the log file created for this run.
    """
    target_dir: Path = logs_dir or Settings.LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = target_dir / f"run_{timestamp}.log"

    # --- Root project logger -----------------------------------------------
    root_logger = logging.getLogger("pellet_watch")
    root_logger.setLevel(logging.DEBUG)

    # Repeated calls (tests, CLI re-entry) keep the first handlers
    if root_logger.handlers:
        return log_file

    # --- File handler (DEBUG+): the full per-run record --------------------
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )

    # --- Console handler: rejects and store errors by default --------------
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_resolve_level(console_level))
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    removed = prune_old_logs(target_dir, Settings.LOG_RETENTION_RUNS)
    root_logger.info(
        "Logging initialised, log file: %s (%d old run log(s) pruned)",
        log_file,
        len(removed),
    )

    return log_file
