"""CLI entrypoint for the AstroWatcher agent."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from astrowatcher.db import Database, resolve_sqlite_path
from astrowatcher.errors import AstroWatcherError
from astrowatcher.export import export_xlsx, write_csv
from astrowatcher.models import SortKey
from astrowatcher.orchestrator import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    RunMode,
)
from astrowatcher.proxies import ProxyDirectory
from astrowatcher.runner import AstroWatcherRunner, build_runner

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AstroWatcher listing scraper")
    parser.add_argument("--init", action="store_true", help="initialize storage and exit")
    parser.add_argument(
        "--probe",
        action="store_true",
        help="probe the proxy catalog and persist the working proxy",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="execute one scraping cycle",
    )
    parser.add_argument(
        "--reprobe",
        action="store_true",
        help="ignore any saved proxy selection and probe again",
    )
    parser.add_argument(
        "--sequential",
        action="store_const",
        const=RunMode.SEQUENTIAL.value,
        dest="mode",
        default=os.getenv("ASTRO_MODE", RunMode.CONCURRENT.value),
        help="fetch pages one at a time instead of in concurrent batches",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=int(os.getenv("ASTRO_MAX_PAGES", DEFAULT_MAX_PAGES)),
        help="maximum number of pages to fetch (overrides ASTRO_MAX_PAGES)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=int(os.getenv("ASTRO_CONCURRENCY", DEFAULT_CONCURRENCY)),
        help="pages per concurrent batch (overrides ASTRO_CONCURRENCY)",
    )
    parser.add_argument(
        "--proxy-file",
        type=Path,
        default=os.getenv("ASTRO_PROXY_FILE"),
        help="text file of proxy templates, one per line",
    )

    filters = parser.add_argument_group("filtering")
    filters.add_argument("--search", default="", help="free-text search term")
    filters.add_argument("--ad-type", default="", help="exact ad type")
    filters.add_argument("--status", default="", help="exact status")
    filters.add_argument("--min-price", default=None, help="minimum price")
    filters.add_argument("--max-price", default=None, help="maximum price")
    filters.add_argument("--location", default="", help="location substring")
    filters.add_argument("--has-photo", action="store_true", help="only listings with a photo")
    filters.add_argument("--featured-only", action="store_true", help="only featured listings")
    filters.add_argument(
        "--sort",
        choices=[key.value for key in SortKey],
        default=SortKey.DATE_DESC.value,
        help="sort order of the filtered view",
    )

    parser.add_argument("--export-csv", type=Path, help="write the filtered view as CSV")
    parser.add_argument("--export-xlsx", type=Path, help="write the filtered view as XLSX")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def apply_view_options(runner: AstroWatcherRunner, args: argparse.Namespace) -> None:
    runner.listing_filter.set_filters(
        search=args.search,
        ad_type=args.ad_type,
        status=args.status,
        min_price=args.min_price,
        max_price=args.max_price,
        location=args.location,
        has_photo=args.has_photo,
        featured_only=args.featured_only,
    )
    runner.listing_filter.set_sort_key(args.sort)


def report_view(runner: AstroWatcherRunner) -> None:
    view = runner.listing_filter.view
    stats = runner.listing_filter.get_stats()
    logger.info(
        "Showing %d of %d listings (%d featured, %d with photos)",
        len(view),
        stats.total,
        stats.featured,
        stats.with_photos,
    )
    for record in view:
        logger.info(
            "%s | %s | %s | %s | %s | %s | %s",
            record.ad_number,
            record.ad_type or "N/A",
            record.status or "N/A",
            record.price_text or "N/A",
            record.date_text or "N/A",
            record.location or "N/A",
            record.listing_url or "N/A",
        )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    database_url = os.getenv("DATABASE_URL", "sqlite:///astro_watcher.db")
    db_path = resolve_sqlite_path(database_url)
    database = Database(path=db_path)
    directory = (
        ProxyDirectory.from_file(args.proxy_file)
        if args.proxy_file
        else ProxyDirectory.default()
    )
    runner = build_runner(database=database, directory=directory)

    if args.init:
        runner.init()
        return 0

    wants_export = bool(args.export_csv or args.export_xlsx)
    if not (args.probe or args.run or wants_export):
        parser.print_help()
        return 1

    runner.init()

    if args.probe or args.run:
        selection = runner.ensure_proxy(force=args.reprobe)
        if selection is None:
            logger.warning("No working proxy confirmed; relying on direct and fallback fetches")
            if args.probe and not args.run:
                return 1
        if args.probe and not args.run:
            return 0

    if args.run:
        try:
            summary = runner.run(
                mode=args.mode,
                max_pages=args.max_pages,
                concurrency=args.concurrency,
            )
        except AstroWatcherError as exc:
            logger.error("Failed to load listings: %s", exc)
            return 1
        logger.info(
            "Loaded %d listings from %d pages (%d page error(s))",
            len(summary.records),
            summary.pages_processed,
            len(summary.errors),
        )
    elif not runner.load_cached():
        logger.error("No fresh cached listings; run with --run first")
        return 1

    apply_view_options(runner, args)
    report_view(runner)

    view = runner.listing_filter.view
    if args.export_csv:
        write_csv(view, args.export_csv)
    if args.export_xlsx:
        try:
            export_xlsx(view, args.export_xlsx)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to export listings to %s", args.export_xlsx)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
