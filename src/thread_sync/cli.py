"""CLI entry point: serve the thread-sync tools over stdio."""

from __future__ import annotations

import argparse
import asyncio
import os
from collections.abc import Sequence

from .logging_config import configure_logging
from .server import run_stdio


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thread-sync", description=__doc__)
    parser.add_argument("--config", help="YAML configuration file (default: $THREAD_SYNC_CONFIG)")
    parser.add_argument("--db", help="SQLite database path (default: $THREAD_SYNC_DB)")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = _parser().parse_args(argv)
    env = dict(os.environ)
    if args.config:
        env["THREAD_SYNC_CONFIG"] = args.config
    if args.db:
        env["THREAD_SYNC_DB"] = args.db
    env["LOG_LEVEL"] = args.log_level
    configure_logging(args.log_level)
    asyncio.run(run_stdio(env))


if __name__ == "__main__":
    main()
