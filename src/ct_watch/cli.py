"""Command-line launcher: watch CT logs until interrupted."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from .config import (
    DEFAULT_FILTER_WORKERS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_WINDOW_SIZE,
    LOG_LIST_URL,
    VERSION,
)
from .errors import ConstructionError, DiscoveryError
from .manager import CTWatchManager
from .models import MatchResult
from .rules import load_rules

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ct-watch",
        description="Watch Certificate Transparency logs for certificates matching regex rules",
    )
    parser.add_argument(
        "--rules", "-r",
        default="rules.json",
        help="JSON file mapping category names to regular expressions (default: rules.json)",
    )
    parser.add_argument(
        "--log-list-url",
        default=LOG_LIST_URL,
        help="URL of the v3 CT log list",
    )
    parser.add_argument(
        "--poll-interval", "-s",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between polls of each log (default: {DEFAULT_POLL_INTERVAL})",
    )
    parser.add_argument(
        "--window-size", "-b",
        type=int,
        default=DEFAULT_WINDOW_SIZE,
        help=f"Max entries fetched per log per poll (default: {DEFAULT_WINDOW_SIZE})",
    )
    parser.add_argument(
        "--queue-capacity",
        type=int,
        default=DEFAULT_QUEUE_CAPACITY,
        help=f"Entries buffered before dropping (default: {DEFAULT_QUEUE_CAPACITY})",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=DEFAULT_FILTER_WORKERS,
        help=f"Concurrent filter workers (default: {DEFAULT_FILTER_WORKERS})",
    )
    parser.add_argument(
        "--parse-workers",
        type=int,
        default=0,
        help="Processes used to decode certificates, 0 decodes inline (default: 0)",
    )
    parser.add_argument(
        "--include", "-i",
        action="append",
        metavar="PATTERN",
        help="Only monitor logs whose URL contains PATTERN (repeatable)",
    )
    parser.add_argument(
        "--exclude", "-x",
        action="append",
        metavar="PATTERN",
        help="Skip logs whose URL contains PATTERN (repeatable)",
    )
    parser.add_argument(
        "--match-san",
        action="store_true",
        help="Also match SAN DNS names, not only the subject Common Name",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def print_match(result: MatchResult) -> None:
    print(json.dumps(result.to_dict()), flush=True)


async def watch(args: argparse.Namespace) -> int:
    try:
        rules = load_rules(args.rules)
        manager = CTWatchManager(
            rules,
            log_list_url=args.log_list_url,
            sink=print_match,
            poll_interval=args.poll_interval,
            window_size=args.window_size,
            queue_capacity=args.queue_capacity,
            filter_workers=args.workers,
            parse_workers=args.parse_workers,
            include_logs=args.include,
            exclude_logs=args.exclude,
            match_san=args.match_san,
        )
    except ConstructionError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    async with manager:
        try:
            await manager.discover()
        except DiscoveryError as e:
            logger.error(f"Log discovery failed: {e}")
            return 1
        await manager.run(stop_event)

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return asyncio.run(watch(args))
    except KeyboardInterrupt:
        return 130
