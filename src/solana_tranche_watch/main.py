"""Entrypoint for the wallet tranche watcher."""

from __future__ import annotations

import argparse
import asyncio
import time
from pathlib import Path
from typing import Optional

from .config.settings import get_app_config
from .monitoring import bootstrap_observability, flush_metrics
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .orchestrator import TrancheOrchestrator, build_orchestrator

logger = get_logger(__name__)


def seconds_until_next_tick(now: float, interval_seconds: float, *, align: bool = True) -> float:
    """Delay before the next cycle.

    With ``align`` the cycle lands on multiples of the interval since the
    epoch, so an hourly interval fires at the top of every hour.
    """
    interval = max(interval_seconds, 0.0)
    if not align or interval == 0:
        return interval
    remainder = now % interval
    return interval - remainder if remainder else interval


async def run_cycle(orchestrator: TrancheOrchestrator, *, metrics_textfile: Optional[Path] = None) -> None:
    try:
        report = await asyncio.to_thread(orchestrator.run_once)
    finally:
        flush_metrics(metrics_textfile)
    if report is None:
        return
    logger.info(
        "Cycle finished: %d held, %d priced, %d unpriced, %d transitions",
        len(report.held),
        len(report.priced),
        len(report.unpriced),
        len(report.events),
        extra={"snapshot_saved": report.snapshot_saved, "failed_batches": report.failed_batches},
    )


async def run_loop(
    orchestrator: TrancheOrchestrator,
    interval_seconds: float,
    *,
    run_on_start: bool = True,
    align: bool = True,
    max_cycles: Optional[int] = None,
    metrics_textfile: Optional[Path] = None,
) -> int:
    """Run cycles forever (or ``max_cycles`` times) and return how many ran."""
    cycle = 0
    first = True
    while max_cycles is None or cycle < max_cycles:
        if not (first and run_on_start):
            await asyncio.sleep(seconds_until_next_tick(time.time(), interval_seconds, align=align))
        first = False
        cycle += 1
        try:
            await run_cycle(orchestrator, metrics_textfile=metrics_textfile)
        except Exception as exc:  # noqa: BLE001
            METRICS.increment("orchestrator.cycle_failures")
            logger.exception("Loop iteration %d failed: %s", cycle, exc, extra={"cycle": cycle})
    return cycle


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Watch a Solana wallet's tokens for market-cap tranche changes")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit instead of looping.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Log notifications instead of sending them to Telegram.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (default: scheduler.interval_seconds, 3600)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    args = parser.parse_args(argv)

    config = get_app_config()
    bootstrap_observability(config)
    orchestrator = build_orchestrator(config, dry_run=args.dry_run)
    if args.once:
        asyncio.run(run_cycle(orchestrator, metrics_textfile=config.monitoring.metrics_textfile))
        return
    interval = args.interval if args.interval is not None else config.scheduler.interval_seconds
    asyncio.run(
        run_loop(
            orchestrator,
            interval,
            run_on_start=config.scheduler.run_on_start,
            align=config.scheduler.align_to_interval,
            max_cycles=args.max_cycles,
            metrics_textfile=config.monitoring.metrics_textfile,
        )
    )


if __name__ == "__main__":
    main()
