# pellet_watch/config/settings.py

"""Central configuration for the pellet_watch price pipeline."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    """Read a float override from the environment."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Settings:
    """Central configuration for the pellet_watch price pipeline."""

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    DB_PATH: Path = Path(
        os.getenv("PW_DB_PATH", str(DATA_DIR / "pellet_watch.db"))
    )
    ARCHIVE_DIR: Path = Path(
        os.getenv("PW_ARCHIVE_DIR", str(DATA_DIR / "archive"))
    )
    EXPORT_DIR: Path = DATA_DIR / "exports"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Logging ---
    LOG_CONSOLE_LEVEL: str = os.getenv("PW_LOG_LEVEL", "WARNING").upper()
    LOG_RETENTION_RUNS: int = 30        # Run logs kept in LOGS_DIR

    # --- Storage ---
    BUSY_TIMEOUT_MS: int = 5000         # SQLite lock wait per statement
    PARTITION_MONTHS_AHEAD: int = 3     # Months provisioned past today
    GET_OR_CREATE_RETRIES: int = 3      # Retries on uniqueness conflicts

    # --- Normalisation ---
    DEFAULT_CATEGORY: str = "wood_pellets"
    DEFAULT_CURRENCY: str = "EUR"
    SUPPORTED_CURRENCIES: list[str] = ["EUR", "USD", "GBP"]

    # --- Catalog matching ---
    # Carried over untuned from the legacy matcher.
    SIMILARITY_THRESHOLD: float = _env_float(
        "PW_SIMILARITY_THRESHOLD", 0.85
    )
    MATCH_CANDIDATE_LIMIT: int = 100    # Most recently updated items

    # --- Comparison ---
    PRICE_CHANGE_THRESHOLD: float = _env_float(
        "PW_PRICE_CHANGE_THRESHOLD", 1.0
    )                                   # Percent

    # --- Analytics ---
    ALERT_DROP_THRESHOLD: float = 5.0   # Percent
    ALERT_RISE_THRESHOLD: float = 10.0  # Percent
    ALERT_LOOKBACK_DAYS: int = 7
    SELLER_WINDOW_DAYS: int = 30
    TREND_WINDOW_DAYS: int = 90
    SHORT_WINDOW: int = 7               # Samples
    LONG_WINDOW: int = 30               # Samples
    FORECAST_HISTORY_LIMIT: int = 90    # Samples
    BEST_DEALS_DAYS: int = 7

    # --- Insights ---
    INSIGHT_TTL_HOURS: float = _env_float("PW_INSIGHT_TTL_HOURS", 24.0)
    INSIGHT_DEFAULT_DAYS: int = 30
    INSIGHT_PAYLOAD_LIMIT: int = 50     # Observations sent to the model
