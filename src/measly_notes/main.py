#!/usr/bin/env python
"""Command line entry point for the Measly Notes core."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path

from measly_notes import __version__
from measly_notes.config import config
from measly_notes.exceptions import MeaslyNotesError
from measly_notes.models.db_models import init_db
from measly_notes.observability import configure_logging
from measly_notes.services.notes_service import NotesService


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="measly-notes", description="Measly Notes maintenance and query tool"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--notes-dir",
        help="Directory holding the note .md files",
        type=str,
        default=os.environ.get("MEASLY_NOTES_NOTES_DIR")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("MEASLY_NOTES_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("MEASLY_NOTES_LOG_LEVEL", "INFO")
    )

    sub = parser.add_subparsers(dest="command", required=True)
    reconcile = sub.add_parser("reconcile", help="Sync the store with the notes directory")
    reconcile.add_argument(
        "--no-mark-missing", action="store_true",
        help="Do not move notes with a missing file to the trash",
    )
    search = sub.add_parser("search", help="Full-text search")
    search.add_argument("query")
    search.add_argument("--tag", action="store_true", help="Search tag names instead")
    tags = sub.add_parser("tags", help="List tags with usage counts")
    tags.add_argument("--top", type=int, help="Only the N most used recent tags")
    hierarchy = sub.add_parser("hierarchy", help="Print the category tree")
    hierarchy.add_argument("--tag", help="Restrict to notes carrying this tag")
    sub.add_parser("trash", help="List notes in the trash")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.notes_dir:
        config.notes_dir = Path(args.notes_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    config.log_level = args.log_level


def run_command(service: NotesService, args):
    """Run the selected subcommand and return a JSON-serializable result."""
    if args.command == "reconcile":
        return service.reconcile(mark_missing=not args.no_mark_missing).to_dict()
    if args.command == "search":
        if args.tag:
            results = service.search_notes_by_tag(args.query)
        else:
            results = service.search_notes(args.query)
        return [r.model_dump(mode="json") for r in results]
    if args.command == "tags":
        if args.top:
            return [t.name for t in service.get_top_tags(args.top)]
        return service.get_tags_with_counts()
    if args.command == "hierarchy":
        if args.tag:
            return service.get_hierarchy_for_tag(args.tag).to_dict()
        return service.get_category_hierarchy().to_dict()
    if args.command == "trash":
        return [n.model_dump(mode="json") for n in service.get_trash_notes()]
    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None):
    """Run the Measly Notes command line tool."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (persistent file logging with rotation); stdout is for JSON
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(level=log_level, console=False)
    except OSError as e:
        logging.basicConfig(level=log_level, stream=sys.stderr)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
        service = NotesService(engine=engine)
        output = run_command(service, args)
    except MeaslyNotesError as e:
        logger.error(f"{args.command} failed: {e}")
        json.dump(e.to_dict(), sys.stderr, indent=2)
        sys.stderr.write("\n")
        return 1

    json.dump(output, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
