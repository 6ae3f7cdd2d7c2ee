#!/usr/bin/env python3
"""
uploadcue-sim: Interactive simulator for the upload queue.

Usage:
    uploadcue-sim --count 30 --error-rate 0.3
    uploadcue-sim --count 50 --offline-rate 0.5 --passes 40
    uploadcue-sim --db queue.db --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from datetime import datetime

from uploadcue_sim.display import (
    SimulationState,
    SimulatorDisplay,
    print_final_summary,
    print_simple_stats,
)
from uploadcue_sim.runner import SimConfig, SimulationRunner


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the simulator."""
    uploadcue_logger = logging.getLogger("uploadcue")
    if verbose:
        uploadcue_logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        uploadcue_logger.addHandler(handler)
    else:
        # Silence library logs - simulator handles its own display
        uploadcue_logger.setLevel(logging.CRITICAL)


async def run_with_display(config: SimConfig, use_tui: bool = True, verbose: bool = False) -> None:
    """Run simulation with visual display.

    Args:
        config: Simulation configuration
        use_tui: Use Rich TUI display (default True)
        verbose: Print event log instead of status updates (implies no-tui)
    """
    state = SimulationState()

    if verbose:
        original_add_event = state.add_event

        def logging_add_event(event_type: str, item_id: str, kind: str | None = None, details: str = "") -> None:
            ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            print(f"{ts} {event_type:<12} {kind or '':<10} {item_id:<24} {details}")
            original_add_event(event_type, item_id, kind, details)

        state.add_event = logging_add_event  # type: ignore

    runner = SimulationRunner(config, state)

    if verbose:
        print("\nuploadcue-sim [verbose]")
        print(f"   Count: {config.count}, Error: {config.error_rate * 100:.0f}%, "
              f"Offline: {config.offline_rate * 100:.0f}%")
        print()
        print(f"{'TIME':<12} {'EVENT':<12} {'KIND':<10} {'ITEM':<24} DETAILS")
        print("-" * 80)
        try:
            await runner.run()
        finally:
            await runner.cleanup()
        print("-" * 80)
        print_final_summary(state)
        return

    if use_tui:
        display = SimulatorDisplay(state)

        async def update_loop():
            while True:
                display.refresh()
                await asyncio.sleep(0.1)
    else:
        print("\nuploadcue-sim")
        print(f"   Count: {config.count}, Error: {config.error_rate * 100:.0f}%, "
              f"Offline: {config.offline_rate * 100:.0f}%")
        print()

        async def update_loop():
            while True:
                print_simple_stats(state)
                await asyncio.sleep(0.5)

    async def run_and_update():
        update_task = asyncio.create_task(update_loop())
        try:
            await runner.run()
        finally:
            update_task.cancel()
            try:
                await update_task
            except asyncio.CancelledError:
                pass
            await runner.cleanup()

    if use_tui:
        with display:
            await run_and_update()
            display.refresh()
    else:
        await run_and_update()
        print_simple_stats(state)
        print()

    print_final_summary(state)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="uploadcue simulator - exercise the queue with flaky uploads and connectivity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  uploadcue-sim --count 30 --error-rate 0.3
  uploadcue-sim --count 50 --offline-rate 0.5 --passes 40
  uploadcue-sim --db queue.db --verbose
        """,
    )
    parser.add_argument(
        "--count", "-n",
        type=int,
        default=30,
        help="Number of items to enqueue (default: 30)",
    )
    parser.add_argument(
        "--error-rate", "-e",
        type=float,
        default=0.3,
        help="Fraction of upload attempts that fail, 0.0-1.0 (default: 0.3)",
    )
    parser.add_argument(
        "--offline-rate", "-o",
        type=float,
        default=0.2,
        help="Chance a pass finds the network offline, 0.0-1.0 (default: 0.2)",
    )
    parser.add_argument(
        "--passes", "-p",
        type=int,
        default=20,
        help="Maximum number of passes (default: 20)",
    )
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=0.2,
        help="Seconds between passes (default: 0.2)",
    )
    parser.add_argument(
        "--latency", "-l",
        type=int,
        default=50,
        help="Base upload latency in ms (default: 50)",
    )
    parser.add_argument(
        "--max-attempts", "-m",
        type=int,
        default=3,
        help="Attempts before an item is marked failed (default: 3)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=":memory:",
        help="SQLite file to persist the queue in (default: in-memory)",
    )
    parser.add_argument(
        "--no-tui",
        action="store_true",
        help="Disable TUI, use simple text output",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print event log instead of status updates (no-tui)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible behavior (default: random)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    for name in ("error_rate", "offline_rate"):
        value = getattr(args, name)
        if not 0.0 <= value <= 1.0:
            parser.error(f"--{name.replace('_', '-')} must be between 0.0 and 1.0")
    if args.max_attempts < 1:
        parser.error("--max-attempts must be at least 1")

    configure_logging(verbose=args.verbose)

    if args.seed is not None:
        random.seed(args.seed)

    config = SimConfig(
        count=args.count,
        latency_ms=args.latency,
        error_rate=args.error_rate,
        offline_rate=args.offline_rate,
        passes=args.passes,
        interval=args.interval,
        max_attempts=args.max_attempts,
        db_path=args.db,
    )

    try:
        asyncio.run(run_with_display(config, use_tui=not args.no_tui, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
