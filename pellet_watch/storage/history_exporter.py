# pellet_watch/storage/history_exporter.py

"""Exports a catalog item's price history to CSV."""

import csv
import io
import logging
from datetime import datetime
from pathlib import Path

from pellet_watch.config.settings import Settings
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.export")

HEADER: list[str] = [
    "Product Name",
    "Brand",
    "Seller",
    "Price",
    "Currency",
    "In Stock",
    "Quantity",
    "Unit",
    "Observed At",
    "Source URL",
]


class HistoryExporter:
    """Writes price history rows, newest first."""

    def __init__(
        self,
        catalog: CatalogRepository,
        store: ObservationStore,
        export_dir: Path | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self.export_dir: Path = export_dir or Settings.EXPORT_DIR

    def _rows(self, catalog_item_id: int) -> list[list[object]]:
        item = self._catalog.get_item(catalog_item_id)
        if item is None:
            msg = f"Unknown catalog item {catalog_item_id}"
            raise LookupError(msg)

        sellers = {s.id: s.name for s in self._catalog.list_sellers()}
        observations = sorted(
            self._store.range(catalog_item_id),
            key=lambda o: (o.observed_at, o.id or 0),
            reverse=True,
        )
        return [
            [
                item.name,
                item.brand,
                sellers.get(o.seller_id, ""),
                o.price,
                o.currency,
                "yes" if o.in_stock else "no",
                o.quantity if o.quantity is not None else "",
                o.unit or "",
                o.observed_at.isoformat(),
                o.source_url,
            ]
            for o in observations
        ]

    def format_csv(self, catalog_item_id: int) -> str:
        """Return the history of *catalog_item_id* as CSV text."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(HEADER)
        writer.writerows(self._rows(catalog_item_id))
        return buf.getvalue()

    def export_csv(
        self, catalog_item_id: int, path: Path | None = None,
    ) -> Path:
        """Write the history to *path* (default: a timestamped file)."""
        if path is None:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = (
                self.export_dir
                / f"price_history_{catalog_item_id}_{timestamp}.csv"
            )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

        rows = self._rows(catalog_item_id)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADER)
            writer.writerows(rows)

        logger.info(
            "Exported %d observations for item %d to %s",
            len(rows),
            catalog_item_id,
            path,
        )
        return path
