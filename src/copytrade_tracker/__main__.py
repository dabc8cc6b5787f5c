"""Command-line entry point.

Usage:
    python -m copytrade_tracker serve
    python -m copytrade_tracker init-db
    python -m copytrade_tracker process-file batch.json
    python -m copytrade_tracker report-profits
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from copytrade_tracker import __version__
from copytrade_tracker.config import Settings, get_settings
from copytrade_tracker.pipeline import Tracker
from copytrade_tracker.storage.database import DatabaseManager

logger = logging.getLogger("copytrade_tracker")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="copytrade_tracker",
        description="Track copy-trade wallets: positions, alerts and profit reports",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log alerts instead of sending them (overrides DRY_RUN)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the webhook server")
    sub.add_parser("init-db", help="Create database tables (use Alembic in production)")

    process = sub.add_parser("process-file", help="Process a JSON array of records from a file")
    process.add_argument("path", type=Path, help="File holding a JSON array of enhanced transactions")

    sub.add_parser("report-profits", help="Post and pin the profit report in every wallet channel")
    return parser


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _process_file(settings: Settings, records: list[Any], *, dry_run: bool) -> dict[str, Any]:
    async with Tracker(settings, dry_run=dry_run) as tracker:
        result = await tracker.processor.process_batch(records)
    return result.to_dict()


async def _report_profits(settings: Settings, *, dry_run: bool) -> int:
    async with Tracker(settings, dry_run=dry_run) as tracker:
        return await tracker.reporter.run()


def _serve(settings: Settings) -> None:
    import uvicorn

    from copytrade_tracker.api import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    configure_logging(settings)

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        parser.error(str(e))

    logger.info("copytrade-tracker %s: %s", __version__, args.command)
    logger.debug("Settings: %s", settings.redacted_summary())

    if args.command == "serve":
        _serve(settings)
        return 0

    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        logger.info("Database schema created")
        return 0

    if args.command == "process-file":
        try:
            records = json.loads(args.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Cannot read %s: %s", args.path, e)
            return 1
        if not isinstance(records, list):
            logger.error("%s does not hold a JSON array", args.path)
            return 1
        counters = asyncio.run(_process_file(settings, records, dry_run=settings.dry_run))
        print(json.dumps(counters, indent=2))
        return 0

    posted = asyncio.run(_report_profits(settings, dry_run=settings.dry_run))
    logger.info("Posted %d profit reports", posted)
    return 0


if __name__ == "__main__":
    sys.exit(main())
