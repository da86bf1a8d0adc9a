"""
Command line tool for following a database changes feed.

Commands:
- tail: Follow the feed until interrupted
- drain: Read the feed up to its current tail, then exit

Usage:
    changes-feed --url http://localhost:5984 tail orders --since now
    changes-feed drain orders --since 0 --include-docs > changes.jsonl

Each change is printed to stdout as one JSON object per line. Logs go to
stderr.

Exit codes:
    0: Feed stopped normally (interrupt, drained, ceiling reached)
    1: Feed stopped on a fatal server error
    2: Invalid configuration
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, TextIO

import json_log_formatter

from .client import ChangesClient
from .config import ClientSettings, ReaderConfig
from .errors import ConfigurationError, TransportError
from .events import EventKind
from .types import ChangeRecord

logger = logging.getLogger(__name__)


def setup_logging(level_name: str = "INFO", log_format: str = "text") -> None:
    """Configure root logging on stderr.

    Args:
        level_name: Logging level name
        log_format: "json" for JSON lines, anything else for plain text
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="changes-feed", description="Follow a database changes feed")
    parser.add_argument("--url", help="Server base URL (default: CHANGES_URL or http://localhost:5984)")
    parser.add_argument("--log-level", help="Log level (default: CHANGES_LOG_LEVEL or INFO)")
    parser.add_argument("--log-format", choices=["json", "text"], help="Log format")

    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("tail", "Follow the feed until interrupted"),
        ("drain", "Read the feed up to its current tail and exit"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("db", help="Database name")
        sub.add_argument("--since", help="Start position ('now', '0' or a sequence token)")
        sub.add_argument("--batch-size", type=int, help="Changes per request")
        sub.add_argument("--include-docs", action="store_true", default=None, help="Include document bodies")
        sub.add_argument("--max-changes", type=int, help="Stop after this many changes")
    return parser


def reader_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Reader options given on the command line."""
    options = {
        "since": args.since,
        "batch_size": args.batch_size,
        "include_docs": args.include_docs,
        "max_changes": args.max_changes,
    }
    return {k: v for k, v in options.items() if v is not None}


async def run_feed(
    client: ChangesClient,
    command: str,
    db_name: str,
    options: Dict[str, Any],
    out: TextIO = sys.stdout,
    install_signals: bool = True,
) -> int:
    """Run one tail/drain session and return the exit code.

    Args:
        client: Connected or unconnected client
        command: "tail" or "drain"
        db_name: Database to read
        options: Reader options (configure() keywords)
        out: Stream receiving one JSON line per change
        install_signals: Whether SIGINT/SIGTERM stop the reader

    Raises:
        ConfigurationError: If options are invalid
    """
    fatal_errors: List[TransportError] = []
    last_seq: List[Optional[str]] = [None]

    async with client:
        reader = client.db(db_name).changes_reader

        if command == "drain":
            channel = reader.get(**options)
        else:
            channel = reader.start(**options)

        def on_change(record: ChangeRecord) -> None:
            out.write(json.dumps(record.to_dict(), separators=(",", ":")) + "\n")
            out.flush()

        def on_seq(seq: str) -> None:
            last_seq[0] = seq

        def on_error(error: TransportError) -> None:
            if error.fatal:
                fatal_errors.append(error)

        channel.on(EventKind.CHANGE, on_change)
        channel.on(EventKind.SEQ, on_seq)
        channel.on(EventKind.ERROR, on_error)

        if install_signals:
            loop = asyncio.get_running_loop()

            def handle_signal(sig: int) -> None:
                logger.info(f"Received signal {sig}, stopping changes reader")
                reader.stop()

            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, handle_signal, sig)

        await reader.wait()

    logger.info("Changes feed finished", extra={"db": db_name, "last_seq": last_seq[0]})
    if fatal_errors:
        print(f"Changes feed failed: {fatal_errors[-1]}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = ClientSettings()
        overrides = {
            "url": args.url,
            "log_level": args.log_level,
            "log_format": args.log_format,
        }
        settings = settings.model_copy(update={k: v for k, v in overrides.items() if v})
        setup_logging(settings.log_level, settings.log_format)

        client = ChangesClient(settings=settings, reader_config=ReaderConfig.from_env())
        return asyncio.run(run_feed(client, args.command, args.db, reader_options(args)))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
