# main.py

"""Entry point for the pellet_watch price pipeline CLI."""

import argparse
import logging
import sys

from pellet_watch.config.logging_config import setup_logging
from pellet_watch.config.settings import Settings

logger = logging.getLogger("pellet_watch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="pellet-watch",
        description="Wood-pellet price intelligence pipeline.",
        epilog=f"Database: {Settings.DB_PATH}",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Show INFO messages on the console.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest a JSON file of scraped items.")
    ingest.add_argument("file", help="JSON array of scraped items.")
    ingest.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Validate and normalise only; write nothing.",
    )
    ingest.add_argument(
        "--scope",
        choices=["seller", "item"],
        default="seller",
        help="Compare against the same seller (default) or any seller.",
    )
    ingest.add_argument(
        "--threshold",
        type=float,
        default=None,
        help=f"Price change threshold in percent "
             f"(default: {Settings.PRICE_CHANGE_THRESHOLD}).",
    )

    provision = sub.add_parser(
        "provision", help="Create month partitions ahead of ingestion.",
    )
    provision.add_argument(
        "--months",
        type=int,
        default=Settings.PARTITION_MONTHS_AHEAD,
        help="Months ahead of the current one "
             f"(default: {Settings.PARTITION_MONTHS_AHEAD}).",
    )

    sub.add_parser("partitions", help="List observation partitions.")

    seasonal = sub.add_parser("seasonal", help="Cheapest months for an item.")
    seasonal.add_argument("item_id", type=int)

    sellers = sub.add_parser("sellers", help="Compare sellers for an item.")
    sellers.add_argument("item_id", type=int)
    sellers.add_argument(
        "--days", type=int, default=Settings.SELLER_WINDOW_DAYS,
    )

    forecast = sub.add_parser("forecast", help="Moving-average forecast.")
    forecast.add_argument("item_id", type=int)
    forecast.add_argument("--seller", type=int, default=None, dest="seller_id")

    alerts = sub.add_parser("alerts", help="Significant price moves.")
    alerts.add_argument(
        "--drop", type=float, default=Settings.ALERT_DROP_THRESHOLD,
    )
    alerts.add_argument(
        "--rise", type=float, default=Settings.ALERT_RISE_THRESHOLD,
    )

    sub.add_parser("sweep-insights", help="Deactivate expired insights.")
    sub.add_parser("merge-duplicates", help="Merge duplicate catalog items.")

    export = sub.add_parser("export", help="Export an item's history to CSV.")
    export.add_argument("item_id", type=int)
    export.add_argument("-o", "--output", default=None)

    return parser


def _dispatch(args: argparse.Namespace) -> int:
    """Run the selected subcommand and return its exit code."""
    from pellet_watch.cli import runner

    if args.command == "ingest":
        return runner.run_ingest(
            args.file, args.dry_run, args.scope, args.threshold,
        )
    if args.command == "provision":
        return runner.run_provision(args.months)
    if args.command == "partitions":
        return runner.run_partitions()
    if args.command == "seasonal":
        return runner.run_seasonal(args.item_id)
    if args.command == "sellers":
        return runner.run_sellers(args.item_id, args.days)
    if args.command == "forecast":
        return runner.run_forecast(args.item_id, args.seller_id)
    if args.command == "alerts":
        return runner.run_alerts(args.drop, args.rise)
    if args.command == "sweep-insights":
        return runner.run_sweep_insights()
    if args.command == "merge-duplicates":
        return runner.run_merge_duplicates()
    return runner.run_export(args.item_id, args.output)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run one subcommand and exit with its code."""
    args = _build_parser().parse_args(argv)
    log_file = setup_logging(
        console_level=logging.INFO if args.verbose else None,
    )
    logger.info("pellet_watch starting, log file: %s", log_file)

    try:
        exit_code = _dispatch(args)
    except Exception:
        logger.critical("Fatal error running '%s'", args.command, exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
