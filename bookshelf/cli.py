from __future__ import annotations

import argparse
import importlib
import time
from pathlib import Path
from typing import Any, Optional

from bookshelf.admin import run_admin_server
from bookshelf.covers import cache_missing_covers, find_uncached_covers
from bookshelf.engine import LibraryEngine, Outcome
from bookshelf.fetch import FetchSettings
from bookshelf.library import CATEGORIES, CLICK_BEHAVIORS, BookEntry, LibraryError, load_config
from bookshelf.preview import PreviewSettings


def _questionary():
    return importlib.import_module("questionary")


def _prompt_yes_no(prompt: str, default: bool) -> bool:
    questionary = _questionary()
    response = questionary.confirm(prompt, default=default).ask()
    if response is None:
        return default
    return response


def _report(outcome: Outcome) -> int:
    tag = "ok" if outcome.success else "error"
    print(f"[{tag}] {outcome.message}")
    return 0 if outcome.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage a personal book library and build its static site."
    )
    parser.add_argument(
        "--site-dir",
        type=Path,
        default=Path("."),
        help="Directory holding config.json, books/ and the site assets.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print the result of each command.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=FetchSettings.timeout,
        help="Seconds to wait on each network request.",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=FetchSettings.retries,
        help="Retries after a failed download before giving up.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build the static site into dist/.")
    build.add_argument(
        "--sample",
        action="store_true",
        help="Build from books-sample/ instead of books/.",
    )

    preview = subparsers.add_parser("preview", help="Serve dist/ on a local port.")
    preview.add_argument(
        "--port",
        type=int,
        default=PreviewSettings.start_port,
        help="First port to try; later ports are tried when it is taken.",
    )
    preview.add_argument(
        "--build",
        action="store_true",
        help="Rebuild the site before serving it.",
    )

    covers = subparsers.add_parser("covers", help="Cache external cover images locally.")
    mode = covers.add_mutually_exclusive_group()
    mode.add_argument(
        "--check",
        action="store_true",
        help="Only list books whose covers are not cached yet.",
    )
    mode.add_argument(
        "--all",
        action="store_true",
        help="Download every missing cover without asking.",
    )

    add = subparsers.add_parser("add", help="Add a book to a shelf.")
    add.add_argument("--shelf", required=True, help="Shelf id to add the book to.")
    add.add_argument("--title", default=None, help="Book title.")
    add.add_argument("--author", default=None, help="Book author.")
    add.add_argument(
        "--category",
        default=None,
        help=f"Book category ({', '.join(CATEGORIES)}).",
    )
    add.add_argument("--publish-date", default=None, help="Publish date as YYYY-MM-DD.")
    add.add_argument("--pages", type=int, default=None, help="Page count.")
    add.add_argument("--cover", default=None, help="Cover image URL.")
    add.add_argument("--link", default=None, help="Link to open for the book.")
    add.add_argument("--notes", default=None, help="Personal notes.")
    add.add_argument(
        "--click-behavior",
        choices=CLICK_BEHAVIORS,
        default=None,
        help="What clicking the book does on the site.",
    )
    add.add_argument(
        "--lookup",
        metavar="QUERY",
        default=None,
        help="Title, author or ISBN to pre-fill fields from Open Library.",
    )
    add.add_argument(
        "--cache-cover",
        action="store_true",
        help="Download the cover after saving the book.",
    )

    move = subparsers.add_parser("move", help="Move a book file to another shelf.")
    move.add_argument("file", type=Path, help="Path to the book JSON file.")
    move.add_argument("shelf", help="Target shelf id.")

    delete = subparsers.add_parser("delete", help="Delete a book file.")
    delete.add_argument("file", type=Path, help="Path to the book JSON file.")
    delete.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")

    shelves = subparsers.add_parser("shelves", help="List and edit shelves.")
    shelf_commands = shelves.add_subparsers(dest="shelf_command", required=True)
    shelf_commands.add_parser("list", help="List shelves with their book counts.")
    shelf_add = shelf_commands.add_parser("add", help="Create a shelf.")
    shelf_add.add_argument("id", help="Shelf id.")
    shelf_add.add_argument("label", help="Shelf label shown on the site.")
    shelf_add.add_argument("--folder", default=None, help="Folder name under books/.")
    shelf_remove = shelf_commands.add_parser("remove", help="Delete an empty shelf.")
    shelf_remove.add_argument("id", help="Shelf id.")
    shelf_reorder = shelf_commands.add_parser("reorder", help="Set the shelf order.")
    shelf_reorder.add_argument("ids", nargs="+", help="Shelf ids in their new order.")
    shelf_rename = shelf_commands.add_parser("rename", help="Change a shelf label.")
    shelf_rename.add_argument("id", help="Shelf id.")
    shelf_rename.add_argument("label", help="New label.")
    shelf_merge = shelf_commands.add_parser(
        "merge", help="Move every book of one shelf to another and delete it."
    )
    shelf_merge.add_argument("source", help="Shelf id to empty and delete.")
    shelf_merge.add_argument("target", help="Shelf id receiving the books.")

    site = subparsers.add_parser("site", help="Update the site title, subtitle or footer.")
    site.add_argument("--title", default=None, help="Site title.")
    site.add_argument("--subtitle", default=None, help="Site subtitle.")
    site.add_argument("--footer", default=None, help="Footer text.")

    subparsers.add_parser("sample", help="Copy books-sample/ into books/.")

    admin = subparsers.add_parser("admin", help="Run the JSON API used by the admin app.")
    admin.add_argument("--host", default="127.0.0.1", help="Host to bind.")
    admin.add_argument("--port", type=int, default=8070, help="Port to bind.")
    return parser


def _book_fields(args: argparse.Namespace, engine: LibraryEngine) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if args.lookup:
        outcome = engine.search_lookup(args.lookup)
        if outcome.value:
            fields.update(outcome.value[0])
            print(f"[lookup] Using \"{fields.get('title')}\" by {fields.get('author') or 'unknown'}")
        else:
            print(f"[lookup] No Open Library match for {args.lookup!r}")
    overrides = {
        "title": args.title,
        "author": args.author,
        "category": args.category,
        "publishDate": args.publish_date,
        "pages": args.pages,
        "cover": args.cover,
        "link": args.link,
        "notes": args.notes,
        "clickBehavior": args.click_behavior,
    }
    fields.update({key: value for key, value in overrides.items() if value is not None})
    return fields


def _run_add(args: argparse.Namespace, engine: LibraryEngine) -> int:
    outcome = engine.create_book(args.shelf, _book_fields(args, engine))
    status = _report(outcome)
    if status or not args.cache_cover:
        return status
    book = engine.get_book(outcome.value)
    if book.success and book.value.cover:
        return _report(engine.cache_book_cover(outcome.value))
    print("[covers] No cover URL to cache.")
    return status


def _run_covers(args: argparse.Namespace, engine: LibraryEngine) -> int:
    try:
        entries = find_uncached_covers(engine.paths)
    except LibraryError as exc:
        print(f"[error] {exc}")
        return 1
    if not entries:
        print("[covers] All covers are cached.")
        return 0
    print(f"[covers] {len(entries)} book(s) without a cached cover:")
    for entry in entries:
        print(f"[covers]   - {entry.shelf_label}: {entry.book.title}")
    if args.check:
        return 0

    def confirm(entry: BookEntry) -> bool:
        return _prompt_yes_no(f'Download cover for "{entry.book.title}"?', default=True)

    result = cache_missing_covers(
        engine.paths,
        entries,
        settings=engine.fetch_settings,
        confirm=None if args.all else confirm,
        verbose=engine.verbose,
    )
    print(
        f"[covers] Downloaded {len(result.downloaded)}, failed {len(result.failed)}, "
        f"skipped {len(result.skipped)}."
    )
    return 1 if result.failed else 0


def _run_preview(args: argparse.Namespace, engine: LibraryEngine) -> int:
    if args.build:
        status = _report(engine.build())
        if status:
            return status
    status = _report(engine.start_preview())
    if status:
        return status
    try:
        while engine.preview.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("[preview] Shutting down.")
    return _report(engine.stop_preview())


def _list_shelves(engine: LibraryEngine) -> int:
    try:
        config = load_config(engine.paths)
    except LibraryError as exc:
        print(f"[error] {exc}")
        return 1
    books = engine.get_books()
    entries = books.value or []
    for shelf in config.shelves:
        count = sum(1 for entry in entries if entry.shelf_id == shelf.id)
        print(f"{shelf.id}\t{shelf.label}\t{shelf.folder}/\t{count} book(s)")
    return 0


def _run_shelves(args: argparse.Namespace, engine: LibraryEngine) -> int:
    command = args.shelf_command
    if command == "list":
        return _list_shelves(engine)
    if command == "add":
        shelf: dict[str, Any] = {"id": args.id, "label": args.label}
        if args.folder:
            shelf["folder"] = args.folder
        return _report(engine.create_shelf(shelf))
    if command == "remove":
        return _report(engine.delete_shelf(args.id))
    if command == "reorder":
        return _report(engine.reorder_shelves(args.ids))
    if command == "rename":
        return _report(engine.update_shelf(args.id, args.label))
    return _report(engine.merge_shelf(args.source, args.target))


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    preview_settings = PreviewSettings()
    if args.command == "preview":
        preview_settings = PreviewSettings(start_port=args.port)
    engine = LibraryEngine(
        args.site_dir,
        fetch_settings=FetchSettings(timeout=args.timeout, retries=args.retries),
        preview_settings=preview_settings,
        verbose=not args.quiet,
    )

    if args.command == "admin":
        run_admin_server(engine, host=args.host, port=args.port)
        return 0

    try:
        if args.command == "build":
            return _report(engine.build(use_sample_data=args.sample))
        if args.command == "preview":
            return _run_preview(args, engine)
        if args.command == "covers":
            return _run_covers(args, engine)
        if args.command == "add":
            return _run_add(args, engine)
        if args.command == "move":
            return _report(engine.move_book(args.file, args.shelf))
        if args.command == "delete":
            if not args.yes and not _prompt_yes_no(f"Delete {args.file.name}?", default=False):
                print("[delete] Cancelled.")
                return 0
            return _report(engine.delete_book(args.file))
        if args.command == "shelves":
            return _run_shelves(args, engine)
        if args.command == "site":
            return _report(
                engine.update_config(
                    site_title=args.title,
                    site_subtitle=args.subtitle,
                    footer_text=args.footer,
                )
            )
        return _report(engine.load_sample_data())
    finally:
        engine.close()


if __name__ == "__main__":
    raise SystemExit(main())
