#!/usr/bin/env python
"""Command-line front end for a jotnotes notes root."""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from jotnotes import __version__
from jotnotes.config import AppConfig, config, save_app_config
from jotnotes.exceptions import JotError
from jotnotes.models.schema import ALL_NOTES_VIEW, TRASH_FOLDER
from jotnotes.observability import configure_logging, format_stats, metrics
from jotnotes.services.workspace import Workspace
from jotnotes.utils import preview_text

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jotnotes", description="Local-first markdown notes")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--root",
        help="Notes root directory (overrides JOT_NOTES_ROOT and the app config file)",
        type=str,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    parser.add_argument(
        "--stats",
        help="Print timing stats for scans, flushes and folder removals",
        action="store_true",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List notes")
    list_cmd.add_argument("--view", default=ALL_NOTES_VIEW, help='"All Notes", "Pinned", "Trash" or a folder')
    list_cmd.add_argument("--search", default="", help="Case-insensitive text to look for")
    list_cmd.add_argument("--tag", default=None, help="Only notes carrying this #tag")

    commands.add_parser("tags", help="List tags with note counts")
    commands.add_parser("folders", help="List folders with note counts")

    new_cmd = commands.add_parser("new", help="Create a note")
    new_cmd.add_argument("--folder", default="", help="Folder for the new note")
    new_cmd.add_argument("--content", default=None, help="Initial content")

    for name, help_text in (
        ("trash", "Move a note to the trash"),
        ("restore", "Restore a note from the trash"),
        ("pin", "Toggle a note's pin"),
        ("purge", "Delete a note permanently"),
    ):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument("note_id")

    mkdir_cmd = commands.add_parser("mkdir", help="Create a folder")
    mkdir_cmd.add_argument("folder")

    rmdir_cmd = commands.add_parser("rmdir", help="Delete a folder, moving its notes to the trash")
    rmdir_cmd.add_argument("folder")

    init_cmd = commands.add_parser("init", help="Remember a notes root in the app config file")
    init_cmd.add_argument("path")

    return parser


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.root:
        config.notes_root = Path(args.root)
    if args.log_level:
        config.log_level = args.log_level


def _setup_logging() -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    try:
        configure_logging(log_dir=config.log_dir, level=level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=level)
        logger.warning(f"Failed to configure file logging: {e}")


def _print_notes(workspace: Workspace, args: argparse.Namespace) -> None:
    store = workspace.store
    store.set_active_folder(args.view)
    store.set_search(args.search)
    store.set_active_tag(args.tag)
    for note in store.filtered_notes():
        marker = "*" if note.pinned else " "
        folder = "trash" if note.folder == TRASH_FOLDER else (note.folder or "-")
        print(f"{marker} {note.id}  [{folder}]  {note.title}")
        preview = preview_text(note.content, max_length=60)
        if preview:
            print(f"      {preview}")


def run_command(workspace: Workspace, args: argparse.Namespace) -> int:
    """Run one command against an opened workspace."""
    store = workspace.store

    if args.command == "list":
        _print_notes(workspace, args)
    elif args.command == "tags":
        for tag, count in store.all_tags():
            print(f"#{tag}  {count}")
    elif args.command == "folders":
        for folder in store.folders:
            print(f"{folder}  {store.folder_count(folder)}")
        print(f"Pinned  {store.pinned_count()}")
        print(f"Trash  {store.trash_count()}")
    elif args.command == "new":
        notes = store.create_note(folder=args.folder)
        note = notes[0]
        if args.content:
            store.update_note(note.id, content=args.content)
        print(note.id)
    elif args.command == "trash":
        store.move_to_trash(args.note_id)
    elif args.command == "restore":
        store.restore_from_trash(args.note_id)
    elif args.command == "pin":
        store.toggle_pin(args.note_id)
    elif args.command == "purge":
        store.delete_forever(args.note_id)
    elif args.command == "mkdir":
        workspace.create_folder(args.folder)
    elif args.command == "rmdir":
        removal = workspace.delete_folder(args.folder).result()
        print(f"Moved {len(removal.moved_ids)} note(s) to trash")
        if removal.error is not None:
            print(f"Error: {removal.error}", file=sys.stderr)
            return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the jotnotes command line."""
    args = build_parser().parse_args(argv)
    update_config(args)
    _setup_logging()

    try:
        if args.command == "init":
            path = save_app_config(
                AppConfig(notes_root_path=str(Path(args.path).expanduser().resolve())),
                config.app_config_path,
            )
            print(f"Notes root saved to {path}")
            return 0

        workspace = Workspace(jot_config=config).open()
        try:
            status = run_command(workspace, args)
        finally:
            result = workspace.close(flush=True)
            if args.stats:
                for line in format_stats(metrics.snapshot()):
                    print(line)
        if result is not None and not result.ok:
            for path, error in result.failed:
                print(f"Error: could not sync {path}: {error}", file=sys.stderr)
            return 1
        return status
    except JotError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
