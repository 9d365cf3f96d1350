# pellet_watch/cli/runner.py

"""Headless CLI commands over the price pipeline."""

import json
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from pellet_watch.errors import BatchStoreError
from pellet_watch.models.comparison import ComparisonScope
from pellet_watch.services.analytics import AnalyticsEngine
from pellet_watch.services.ingestion_pipeline import (
    BatchResult,
    IngestionPipeline,
)
from pellet_watch.storage.catalog_repository import CatalogRepository
from pellet_watch.storage.database import Database
from pellet_watch.storage.history_exporter import HistoryExporter
from pellet_watch.storage.insight_cache import InsightCache
from pellet_watch.storage.observation_store import ObservationStore

logger = logging.getLogger("pellet_watch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def _load_items(path: Path) -> list[Any]:
    """Read a JSON array of items, or an object with an ``items`` key.

    Entries are returned as found; the pipeline rejects non-objects.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        msg = f"{path}: expected a JSON array of items"
        raise ValueError(msg)
    return data


def _batch_to_dict(result: BatchResult) -> dict[str, object]:
    """Serialise a batch result for JSON output."""
    return {
        "total": result.total,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "dry_run": result.dry_run,
        "comparison": result.comparison.counts(),
        "errors": result.errors,
        "items": [
            {
                "product_name": r.raw.product_name,
                "normalized_key": r.normalized.normalized_key,
                "catalog_item_id": r.item.id if r.item else None,
                "match": r.match.method if r.match else None,
                "price": r.observation.price if r.observation else None,
                "status": r.comparison.status.value if r.comparison else None,
                "change_percent": (
                    r.comparison.change_percent if r.comparison else None
                ),
            }
            for r in result.records
        ],
    }


def _dump_json(data: object) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")


def run_ingest(
    path: str,
    dry_run: bool = False,
    scope: str = "seller",
    threshold: float | None = None,
) -> int:
    """Ingest a JSON file of scraped items."""
    try:
        items = _load_items(Path(path))
    except (OSError, ValueError) as exc:
        _err.print(f"[red]Cannot read {path}: {exc}[/red]")
        return 1

    comparison_scope = (
        ComparisonScope.CATALOG_ITEM if scope == "item" else ComparisonScope.SELLER
    )
    db = Database()
    try:
        pipeline = IngestionPipeline(db, scope=comparison_scope)
        _err.print(
            f"[bold]Ingesting {len(items)} item(s)[/bold] "
            f"[dim]scope={comparison_scope.value}"
            f"{' dry-run' if dry_run else ''}[/dim]"
        )
        try:
            result = pipeline.ingest_batch(
                items, dry_run=dry_run, threshold=threshold,
            )
        except BatchStoreError as exc:
            _err.print(f"[red]{exc}[/red]")
            _err.print(
                "[dim]Run `pellet-watch provision` to create partitions "
                "for the months being written.[/dim]"
            )
            _dump_json(_batch_to_dict(exc.result))
            return 1
    finally:
        db.close()

    counts = result.comparison.counts()
    _err.print(
        f"[green]✓ {result.succeeded}/{result.total} ingested[/green] "
        f"[dim]new={counts['new']} updated={counts['updated']} "
        f"unchanged={counts['unchanged']} failed={result.failed}[/dim]"
    )
    _dump_json(_batch_to_dict(result))
    return 0 if result.failed == 0 else 1


def run_provision(months: int) -> int:
    """Provision partitions for this month and *months* ahead."""
    db = Database()
    try:
        created = ObservationStore(db).provision_partitions(months_ahead=months)
    finally:
        db.close()
    if created:
        _err.print(f"[green]✓ Created {', '.join(created)}[/green]")
    else:
        _err.print("[dim]All partitions already exist.[/dim]")
    return 0


def run_partitions() -> int:
    """List partitions and their state."""
    db = Database()
    try:
        partitions = ObservationStore(db).list_partitions()
    finally:
        db.close()

    table = Table(title="Observation Partitions", title_style="bold cyan")
    table.add_column("Partition", style="bold")
    table.add_column("From")
    table.add_column("To")
    table.add_column("State", justify="center")
    table.add_column("Rows", justify="right")
    for p in partitions:
        state = (
            "[green]online[/green]"
            if p.state == "online"
            else f"[yellow]{p.state}[/yellow]"
        )
        table.add_row(
            p.name,
            p.range_start.date().isoformat(),
            p.range_end.date().isoformat(),
            state,
            f"{p.row_count:,}" if p.row_count is not None else "—",
        )
    Console().print(table)
    return 0


def _analytics(db: Database) -> AnalyticsEngine:
    catalog = CatalogRepository(db)
    return AnalyticsEngine(catalog, ObservationStore(db, catalog))


def run_seasonal(item_id: int) -> int:
    """Monthly price table, cheapest month first."""
    db = Database()
    try:
        analysis = _analytics(db).seasonal_analysis(item_id)
    finally:
        db.close()

    if not analysis.months:
        _err.print(f"[yellow]No observations for item {item_id}.[/yellow]")
        return 1

    table = Table(title=f"Seasonal Prices — item {item_id}", title_style="bold cyan")
    table.add_column("Month", style="bold")
    table.add_column("Avg", justify="right", style="green")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Std Dev", justify="right", style="dim")
    table.add_column("Samples", justify="right")
    for m in analysis.months:
        table.add_row(
            m.month_name,
            f"{m.avg_price:,.2f}",
            f"{m.min_price:,.2f}",
            f"{m.max_price:,.2f}",
            f"{m.stddev:,.2f}",
            str(m.sample_count),
        )
    Console().print(table)
    return 0


def run_sellers(item_id: int, days: int) -> int:
    """Seller comparison table, cheapest first."""
    db = Database()
    try:
        sellers = _analytics(db).compare_sellers(item_id, days=days)
    finally:
        db.close()

    if not sellers:
        _err.print(
            f"[yellow]No observations for item {item_id} "
            f"in the last {days} days.[/yellow]"
        )
        return 1

    table = Table(
        title=f"Sellers — item {item_id}, last {days} days",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Seller", style="magenta")
    table.add_column("Avg", justify="right", style="green")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Volatility", justify="right", style="dim")
    table.add_column("Checks", justify="right")
    table.add_column("In Stock", justify="right")
    for idx, s in enumerate(sellers, 1):
        table.add_row(
            str(idx),
            s.seller_name,
            f"{s.avg_price:,.2f}",
            f"{s.min_price:,.2f}",
            f"{s.max_price:,.2f}",
            f"{s.volatility:,.2f}",
            str(s.price_checks),
            f"{s.availability_percent:.0f}%",
        )
    Console().print(table)
    return 0


def run_forecast(item_id: int, seller_id: int | None) -> int:
    """Moving-average forecast as JSON."""
    db = Database()
    try:
        forecast = _analytics(db).price_forecast(item_id, seller_id=seller_id)
    finally:
        db.close()

    style = {"buy": "green", "wait": "yellow"}.get(forecast.recommendation, "dim")
    _err.print(f"[{style}]{forecast.message}[/{style}]")
    _dump_json({
        "catalog_item_id": forecast.catalog_item_id,
        "seller_id": forecast.seller_id,
        "short_avg": forecast.short_avg,
        "long_avg": forecast.long_avg,
        "trend": forecast.trend,
        "recommendation": forecast.recommendation,
        "samples": len(forecast.history),
    })
    return 0


def run_alerts(drop: float, rise: float) -> int:
    """Price drop and rise alerts."""
    db = Database()
    try:
        report = _analytics(db).detect_alerts(
            drop_threshold=drop, rise_threshold=rise,
        )
    finally:
        db.close()

    if not report.total:
        _err.print("[dim]No significant price moves.[/dim]")
        return 0

    table = Table(title="Price Alerts", show_lines=True, title_style="bold cyan")
    table.add_column("Kind", justify="center")
    table.add_column("Product", max_width=50)
    table.add_column("Seller", style="magenta")
    table.add_column("Was", justify="right")
    table.add_column("Now", justify="right")
    table.add_column("Change", justify="right")
    for a in [*report.drops, *report.rises]:
        kind = "[green]drop[/green]" if a.kind == "drop" else "[red]rise[/red]"
        table.add_row(
            kind,
            a.product_name[:50],
            a.seller_name,
            f"{a.previous_price:,.2f}",
            f"{a.current_price:,.2f}",
            f"{a.change_percent:+.2f}%",
        )
    Console().print(table)
    return 0


def run_sweep_insights() -> int:
    """Deactivate expired cached insights."""
    db = Database()
    try:
        count = InsightCache(db).sweep_expired()
    finally:
        db.close()
    _err.print(f"[green]✓ Deactivated {count} expired insight(s)[/green]")
    return 0


def run_merge_duplicates() -> int:
    """Fold duplicate catalog items into their oldest twin."""
    db = Database()
    try:
        merged = CatalogRepository(db).merge_duplicates()
    finally:
        db.close()
    _err.print(f"[green]✓ Merged {merged} duplicate item(s)[/green]")
    return 0


def run_export(item_id: int, output: str | None) -> int:
    """Export an item's price history to CSV."""
    db = Database()
    try:
        catalog = CatalogRepository(db)
        exporter = HistoryExporter(catalog, ObservationStore(db, catalog))
        try:
            path = exporter.export_csv(
                item_id, Path(output) if output else None,
            )
        except LookupError as exc:
            _err.print(f"[red]{exc}[/red]")
            return 1
    finally:
        db.close()
    _err.print(f"[dim]Exported → {path}[/dim]")
    return 0
