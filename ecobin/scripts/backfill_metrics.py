"""
Recompute daily_bin_metrics for a range of UTC days.

Usage:
    python -m ecobin.scripts.backfill_metrics --start 2024-05-01 --end 2024-05-31

Each day is replaced in its own transaction, so the script can be re-run or
interrupted safely.
"""

import argparse
import asyncio
import sys
from datetime import date

import structlog

from ecobin.config import settings
from ecobin.db.engine import close_db, get_session_factory, init_db
from ecobin.logging_config import configure_logging
from ecobin.services.metrics_aggregator import aggregate_range
from ecobin.timeutil import previous_utc_day

logger = structlog.get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill daily bin metrics")
    parser.add_argument("--start", type=date.fromisoformat, required=True, help="First day (YYYY-MM-DD)")
    parser.add_argument(
        "--end",
        type=date.fromisoformat,
        default=None,
        help="Last day, inclusive (default: yesterday UTC)",
    )
    args = parser.parse_args(argv)
    if args.end is None:
        args.end = previous_utc_day()
    if args.end < args.start:
        parser.error("--end must not be before --start")
    return args


async def run(start: date, end: date) -> None:
    await init_db()
    try:
        results = await aggregate_range(get_session_factory(), start, end)
    finally:
        await close_db()
    for r in results:
        print(f"  {r}")
    logger.info("backfill_completed", days=len(results), start=start.isoformat(), end=end.isoformat())


def main(argv=None) -> int:
    configure_logging(settings.log_level, settings.log_format)
    args = parse_args(argv)
    asyncio.run(run(args.start, args.end))
    return 0


if __name__ == "__main__":
    sys.exit(main())
