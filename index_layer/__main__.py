#!/usr/bin/env python3
"""
Run one incremental pass over the module index.

Reads the watermark for the cursor, fetches every new module version under
the prefix, writes them as JSON lines and advances the watermark.

Usage:
  python -m index_layer                                # all modules, JSON lines to stdout
  python -m index_layer --prefix cloud.google.com/go   # one module tree
  python -m index_layer --output new.jsonl --timeout 600
  python -m index_layer --reset                        # forget the watermark first

Scheduling is left to the caller (cron, systemd timer). Run at most one pass
per cursor at a time.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from .config import SyncSettings
from .connectors.base import ConnectorError
from .storage.bookmarks import BookmarkManager, CheckpointError
from .sync import IndexSync, SyncError, cursor_for_prefix


def configure_logging(log_file: bool = True, verbose: bool = False) -> None:
    """Configure loguru logging."""
    logger.remove()

    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | <cyan>{name}</cyan> - {message}",
        level=level,
        colorize=True,
    )

    if log_file:
        log_dir = Path(os.environ.get("DATA_ROOT", ".")) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "index_sync.log"

        logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name} - {message}",
            level="DEBUG",
        )
        logger.info(f"Logging to {log_path}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch new module versions from the module index")
    parser.add_argument("--prefix", default=None, help="Module path prefix (default: $INDEX_PREFIX or all modules)")
    parser.add_argument("--cursor", default=None, help="Checkpoint cursor name (default: derived from prefix)")
    parser.add_argument("--output", default="-", help="JSON lines output file, '-' for stdout")
    parser.add_argument("--timeout", type=float, default=None, help="Overall time budget in seconds")
    parser.add_argument("--backend", choices=["local", "s3"], default=None, help="Checkpoint backend")
    parser.add_argument("--checkpoint-path", default=None, help="Local checkpoint file")
    parser.add_argument("--reset", action="store_true", help="Delete the cursor's watermark before running")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--no-log-file", action="store_true", help="Log to stderr only")
    return parser.parse_args(argv)


def write_entries(entries, output: str) -> None:
    ordered = sorted(entries, key=lambda e: (e.timestamp, e.path, e.version))
    lines = "".join(json.dumps(e.to_record()) + "\n" for e in ordered)
    if output == "-":
        sys.stdout.write(lines)
        sys.stdout.flush()
        return
    out_path = Path(output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(lines)
    logger.info(f"Wrote {len(ordered)} entries to {out_path}")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(log_file=not args.no_log_file, verbose=args.verbose)

    settings = SyncSettings.from_env()
    if args.prefix is not None:
        settings.prefix = args.prefix
    if args.cursor is not None:
        settings.cursor = args.cursor
    if args.backend is not None:
        settings.storage_backend = args.backend
    if args.checkpoint_path is not None:
        settings.checkpoint_path = args.checkpoint_path

    cursor = settings.cursor or cursor_for_prefix(settings.prefix)

    try:
        index_sync = IndexSync.from_settings(settings)
        if args.reset and isinstance(index_sync.store, BookmarkManager):
            index_sync.store.delete(cursor)
        index_sync.run(
            settings.prefix,
            cursor=cursor,
            timeout_s=args.timeout,
            deliver=lambda entries: write_entries(entries, args.output),
        )
    except (ConnectorError, CheckpointError, SyncError, OSError) as e:
        logger.error(f"Index sync failed for {cursor}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
