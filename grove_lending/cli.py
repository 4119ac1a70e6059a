"""``grove-lending`` command line: health sweeps, reports and the monitor loop."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable

from .config import load_config
from .logging_setup import configure_logging
from .notifications import NotificationDispatcher
from .services import LendingMarket, MarketMonitor
from .snapshot import load_snapshot, save_snapshot
from .store import LendingStore

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grove-lending",
        description="Collateralized lending engine for tokenized coffee groves",
    )
    parser.add_argument("--config", metavar="PATH", help="config.yaml to load")
    parser.add_argument(
        "--log-level", default="INFO", choices=LOG_LEVELS, help="root log level"
    )
    parser.add_argument(
        "--state",
        metavar="PATH",
        help="JSON snapshot of the lending store; written back after each sweep",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser("sweep", help="recompute every active loan once, liquidating breaches")
    commands.add_parser("report", help="send the pool and loan-tier report")
    loop = commands.add_parser("monitor", help="sweep on a fixed interval until stopped")
    loop.add_argument(
        "interval",
        nargs="?",
        type=int,
        help="minutes between sweeps (default: monitor.check_interval_minutes)",
    )
    return parser


def build_monitor(args: argparse.Namespace) -> MarketMonitor:
    """Wire a market over the configured oracle and the --state snapshot."""
    config = load_config(args.config)
    if args.state:
        store = load_snapshot(args.state)
    else:
        logger.warning("No --state given; running against an empty in-memory store")
        store = LendingStore()

    dispatcher = NotificationDispatcher.from_config(config.notifications)
    market = LendingMarket(config, store=store, events=dispatcher)

    def persist() -> None:
        save_snapshot(market.store, args.state)

    return MarketMonitor(market, dispatcher, after_check=persist if args.state else None)


_COMMANDS: dict[str, Callable[[MarketMonitor, argparse.Namespace], Awaitable[object]]] = {
    "sweep": lambda monitor, args: monitor.check_and_liquidate(),
    "report": lambda monitor, args: monitor.generate_daily_report(),
    "monitor": lambda monitor, args: monitor.run_continuous(args.interval),
}


async def _run(args: argparse.Namespace) -> None:
    configure_logging(args.log_level)
    command = _COMMANDS.get(args.command)
    if command is None:
        build_parser().print_help()
        sys.exit(1)
    await command(build_monitor(args), args)


def main() -> None:
    args = build_parser().parse_args()
    if args.command is None:
        build_parser().print_help()
        sys.exit(1)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
