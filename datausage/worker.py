"""
Periodic refresh of every user's data usage.

The username space is walked in half-open lexical ranges, one batch per range,
each with its own coordinator. A failed range is logged and picked up again on
the next refresh.
"""

from __future__ import annotations

import argparse
import logging
import string
import time
from typing import Callable, Optional

from datausage.config import get_settings
from datausage.coordination import TransactionCoordinator
from datausage.dependencies import get_coordinator
from datausage.exceptions import DataUsageError

logger = logging.getLogger(__name__)

RANGE_BOUNDARIES = string.digits + string.ascii_lowercase

Range = tuple[str, Optional[str]]


def batch_ranges(boundaries: str = RANGE_BOUNDARIES) -> list[Range]:
    """Split usernames into ranges; the first starts at "" and the last is open."""
    ranges: list[Range] = []
    start = ""
    for boundary in boundaries:
        ranges.append((start, boundary))
        start = boundary
    ranges.append((start, None))
    return ranges


def refresh_all(
    coordinator_factory: Callable[[], TransactionCoordinator] = get_coordinator,
    ranges: Optional[list[Range]] = None,
) -> int:
    """
    Run one batch per range. Returns the number of usage readings published.
    """
    published = 0
    failed = 0
    for start, end in ranges if ranges is not None else batch_ranges():
        try:
            results = coordinator_factory().update_user_data_usage_batch(start, end)
        except DataUsageError:
            failed += 1
            logger.exception("Failed to refresh usage for range [%r, %r)", start, end)
            continue
        published += len(results)
        logger.debug("Refreshed %d users in range [%r, %r)", len(results), start, end)
    logger.info("Refresh finished: %d readings published, %d ranges failed", published, failed)
    return published


def run_loop(interval_seconds: Optional[float] = None) -> None:
    """
    Refresh forever, sleeping between runs. Intended to be run under systemd/supervisor.
    """
    if interval_seconds is None:
        interval_seconds = get_settings().refresh_interval.total_seconds()
    while True:
        started = time.monotonic()
        refresh_all()
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, interval_seconds - elapsed))


def main() -> int:
    parser = argparse.ArgumentParser(description="Periodic data usage refresh")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh and exit",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Override the configured refresh interval",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.once:
        refresh_all()
        return 0
    run_loop(args.interval_seconds)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
