#!/usr/bin/env python
"""Command line entry point for the Plainflux index."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from plainflux_index import __version__
from plainflux_index.config import config
from plainflux_index.exceptions import PlainfluxError
from plainflux_index.observability import configure_logging, metrics
from plainflux_index.services.sync_service import SyncService
from plainflux_index.storage.index_store import IndexStore


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="plainflux-index",
        description="Incremental index for a markdown notes folder",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--notes-dir",
        help="Root folder of the notes",
        type=str,
        default=os.environ.get("PLAINFLUX_NOTES_DIR"),
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("PLAINFLUX_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("PLAINFLUX_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for the rotating log file",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--no-sync",
        help="Query the index as it is, without syncing it first",
        action="store_true",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Bring the index up to date")
    sync.add_argument(
        "--force", action="store_true", help="Re-index every note"
    )

    search = commands.add_parser("search", help="Full-text search")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)

    todos = commands.add_parser("todos", help="List todos")
    todos.add_argument(
        "--all", action="store_true", help="Include completed todos"
    )

    commands.add_parser("tags", help="List tags with note counts")

    backlinks = commands.add_parser("backlinks", help="Notes linking to a note")
    backlinks.add_argument("path")

    commands.add_parser("stats", help="Row counts of the index tables")

    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.notes_dir:
        config.notes_dir = Path(args.notes_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    config.log_level = args.log_level


def _emit(record) -> None:
    if hasattr(record, "model_dump_json"):
        print(record.model_dump_json())
    else:
        print(json.dumps(record, ensure_ascii=False))


def run_command(args, store: IndexStore, sync_service: SyncService) -> None:
    if args.command == "sync":
        report = sync_service.sync(force=args.force)
        _emit({
            "created": len(report.created),
            "modified": len(report.modified),
            "deleted": len(report.deleted),
            "unchanged": len(report.unchanged),
            "relinked": len(report.relinked),
            "failed": report.failed,
            "files_touched": report.files_touched,
        })
        return

    if not args.no_sync:
        sync_service.sync()

    if args.command == "search":
        for path in store.search(args.query, args.limit):
            _emit({"path": path})
    elif args.command == "todos":
        todos = store.get_all_todos() if args.all else store.get_incomplete_todos()
        for todo in todos:
            _emit(todo)
    elif args.command == "tags":
        for tag, count in store.get_tags_with_counts().items():
            _emit({"tag": tag, "count": count})
    elif args.command == "backlinks":
        target = Path(args.path)
        if not target.is_absolute():
            target = sync_service.notes_root / target
        for path in store.get_backlinks(str(target)):
            _emit({"path": path})
    elif args.command == "stats":
        _emit(store.stats())


def main(argv: Optional[List[str]] = None) -> int:
    """Run one index command and print its results as JSON lines."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=args.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)

    notes_dir = config.get_notes_dir()
    if not notes_dir.is_dir():
        logger.error(f"Notes directory does not exist: {notes_dir}")
        return 1

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        store = IndexStore()
    except (PlainfluxError, SQLAlchemyError) as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        run_command(args, store, SyncService(store, notes_dir))
    except PlainfluxError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        store.close()
        logger.debug(f"Operation metrics: {metrics.get_summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
