"""Book and shelf mutations that keep folders and config.json consistent."""
from __future__ import annotations

import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from bookshelf.filenames import book_filename
from bookshelf.library import (
    BOOK_SUFFIX,
    COVERS_DIRNAME,
    Book,
    Config,
    LibraryError,
    Shelf,
    SitePaths,
    book_files,
    list_books,
    load_config,
    locate_book,
    read_book,
    save_config,
    write_json,
)

BookInput = Union[Book, Mapping[str, Any]]
ShelfInput = Union[Shelf, Mapping[str, Any]]

SAMPLE_SHELVES = (
    Shelf(id="top5", label="Top 5 Reads", folder="top-5-reads"),
    Shelf(id="good", label="Good Reads", folder="good-reads"),
    Shelf(id="current", label="Current Reads", folder="current-reads"),
    Shelf(id="future", label="Future Reads", folder="future-reads"),
)


@dataclass
class BatchResult:
    succeeded: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self, verb: str) -> str:
        message = f"{verb} {len(self.succeeded)} book(s)"
        if self.failed:
            message += f", {len(self.failed)} failed"
            details = "; ".join(f"{path.name}: {error}" for path, error in self.failed)
            message += f" ({details})"
        return message


def _as_book(book: BookInput) -> Book:
    if isinstance(book, Book):
        return book
    return Book.from_dict(book)


def _as_shelf(shelf: ShelfInput) -> Shelf:
    if isinstance(shelf, Shelf):
        return shelf
    return Shelf.from_dict(shelf)


def _check_file_name(file_name: str) -> str:
    if not isinstance(file_name, str):
        raise LibraryError(f"Invalid book file name {file_name!r}")
    name = file_name.strip()
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise LibraryError(f'Invalid book file name "{file_name}"')
    if not name.endswith(BOOK_SUFFIX):
        raise LibraryError(f'Book file name must end with {BOOK_SUFFIX}: "{file_name}"')
    return name


def save_book(
    paths: SitePaths,
    shelf_id: str,
    file_name: str,
    book: BookInput,
    config: Optional[Config] = None,
) -> Path:
    """Write a book record into its shelf folder, replacing any existing file."""
    record = _as_book(book)
    record.validate()
    name = _check_file_name(file_name)
    if config is None:
        config = load_config(paths)
    shelf = config.require_shelf(shelf_id)
    shelf_dir = paths.shelf_dir(shelf)
    shelf_dir.mkdir(parents=True, exist_ok=True)
    file_path = shelf_dir / name
    write_json(file_path, record.to_dict())
    return file_path.resolve()


def create_book(paths: SitePaths, shelf_id: str, book: BookInput) -> Path:
    record = _as_book(book)
    config = load_config(paths)
    shelf = config.require_shelf(shelf_id)
    file_name = book_filename(record.title)
    if (paths.shelf_dir(shelf) / file_name).exists():
        raise LibraryError(
            f'A book file named "{file_name}" already exists on shelf "{shelf.label}"'
        )
    return save_book(paths, shelf_id, file_name, record, config=config)


def update_book(
    paths: SitePaths,
    file_path: Path,
    book: BookInput,
    target_shelf_id: Optional[str] = None,
) -> Path:
    """Save edits to an existing book, moving it first when its shelf changes.

    The file name is kept even when the title changed.
    """
    record = _as_book(book)
    record.validate()
    config = load_config(paths)
    file_path, current = locate_book(paths, file_path, config)
    if not file_path.is_file():
        raise LibraryError(f"Book not found: {file_path}")
    shelf_id = current.id
    if target_shelf_id and target_shelf_id != current.id:
        file_path = move_book(paths, file_path, target_shelf_id, config=config)
        shelf_id = target_shelf_id
    return save_book(paths, shelf_id, file_path.name, record, config=config)


def delete_book(paths: SitePaths, file_path: Path, config: Optional[Config] = None) -> bool:
    file_path, _ = locate_book(paths, file_path, config)
    if not file_path.exists():
        return False
    file_path.unlink()
    return True


def move_book(
    paths: SitePaths,
    file_path: Path,
    target_shelf_id: str,
    config: Optional[Config] = None,
) -> Path:
    """Rename a book file into the target shelf folder, keeping its base name."""
    if config is None:
        config = load_config(paths)
    target_shelf = config.find_shelf(target_shelf_id)
    if target_shelf is None:
        raise LibraryError(f'Target shelf with id "{target_shelf_id}" not found')
    source, _ = locate_book(paths, file_path, config)
    if not source.is_file():
        raise LibraryError(f"Book file not found: {source}")
    target_dir = paths.shelf_dir(target_shelf)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / source.name
    if target.exists():
        if target.resolve() == source.resolve():
            return target.resolve()
        raise LibraryError(
            f'Shelf "{target_shelf.label}" already has a book file named "{source.name}"'
        )
    source.rename(target)
    return target.resolve()


def _run_batch(
    file_paths: Iterable[Path], action: Callable[[Path], Any]
) -> BatchResult:
    result = BatchResult()
    for file_path in file_paths:
        file_path = Path(file_path)
        try:
            action(file_path)
        except (LibraryError, OSError) as error:
            result.failed.append((file_path, str(error)))
            continue
        result.succeeded.append(file_path)
    return result


def move_books(
    paths: SitePaths, file_paths: Iterable[Path], target_shelf_id: str
) -> BatchResult:
    config = load_config(paths)
    return _run_batch(
        file_paths,
        lambda file_path: move_book(paths, file_path, target_shelf_id, config=config),
    )


def delete_books(paths: SitePaths, file_paths: Iterable[Path]) -> BatchResult:
    config = load_config(paths)
    return _run_batch(
        file_paths, lambda file_path: delete_book(paths, file_path, config=config)
    )


def create_shelf(paths: SitePaths, shelf: ShelfInput) -> Shelf:
    new_shelf = _as_shelf(shelf)
    config = load_config(paths)
    if config.find_shelf(new_shelf.id) is not None:
        raise LibraryError(f'Shelf with id "{new_shelf.id}" already exists')
    if config.shelf_for_folder(new_shelf.folder) is not None:
        raise LibraryError(f'Folder "{new_shelf.folder}" is already used by another shelf')
    paths.shelf_dir(new_shelf).mkdir(parents=True, exist_ok=True)
    save_config(paths, config.with_shelves((*config.shelves, new_shelf)))
    return new_shelf


def update_shelf(paths: SitePaths, shelf_id: str, label: str) -> Shelf:
    label = (label or "").strip()
    if not label:
        raise LibraryError("Shelf label is required")
    config = load_config(paths)
    shelf = config.require_shelf(shelf_id)
    updated = replace(shelf, label=label)
    save_config(
        paths,
        config.with_shelves(updated if item.id == shelf_id else item for item in config.shelves),
    )
    return updated


def delete_shelf(paths: SitePaths, shelf_id: str) -> None:
    """Remove an empty shelf folder and drop the shelf from config.json."""
    config = load_config(paths)
    shelf = config.require_shelf(shelf_id)
    shelf_dir = paths.shelf_dir(shelf)
    if shelf_dir.exists():
        files = book_files(shelf_dir)
        if files:
            raise LibraryError(
                f'Cannot delete shelf "{shelf.label}" - it contains {len(files)} book(s)'
            )
        for leftover in shelf_dir.iterdir():
            if leftover.name.startswith(".") and leftover.is_file():
                leftover.unlink()
        try:
            shelf_dir.rmdir()
        except OSError as exc:
            raise LibraryError(
                f'Cannot delete shelf "{shelf.label}" - its folder is not empty'
            ) from exc
    save_config(
        paths, config.with_shelves(item for item in config.shelves if item.id != shelf_id)
    )


def reorder_shelves(paths: SitePaths, ordered_ids: Iterable[str]) -> Config:
    config = load_config(paths)
    ordered_ids = list(ordered_ids)
    by_id = {shelf.id: shelf for shelf in config.shelves}
    seen: set[str] = set()
    for shelf_id in ordered_ids:
        if not isinstance(shelf_id, str) or shelf_id not in by_id:
            raise LibraryError(f'Shelf with id "{shelf_id}" not found')
        if shelf_id in seen:
            raise LibraryError(f'Shelf id "{shelf_id}" listed more than once')
        seen.add(shelf_id)
    # Shelves left out keep their relative order after the listed ones.
    remaining = [shelf for shelf in config.shelves if shelf.id not in seen]
    updated = config.with_shelves([by_id[shelf_id] for shelf_id in ordered_ids] + remaining)
    save_config(paths, updated)
    return updated


def merge_shelf(paths: SitePaths, source_id: str, target_id: str) -> BatchResult:
    config = load_config(paths)
    source = config.require_shelf(source_id)
    config.require_shelf(target_id)
    if source_id == target_id:
        raise LibraryError("Cannot merge a shelf into itself")
    entries = [entry for entry in list_books(paths, config) if entry.shelf_id == source.id]
    result = _run_batch(
        (entry.file_path for entry in entries),
        lambda file_path: move_book(paths, file_path, target_id, config=config),
    )
    if result.ok:
        delete_shelf(paths, source_id)
    return result


def update_config(
    paths: SitePaths,
    site_title: Optional[str] = None,
    site_subtitle: Optional[str] = None,
    footer_text: Optional[str] = None,
) -> Config:
    """Merge site text changes into a fresh read of config.json and save it."""
    config = load_config(paths)
    changes = {
        "site_title": site_title,
        "site_subtitle": site_subtitle,
        "footer_text": footer_text,
    }
    updated = replace(config, **{key: value for key, value in changes.items() if value is not None})
    save_config(paths, updated)
    return updated


def load_sample_data(paths: SitePaths) -> int:
    sample_dir = paths.sample_books_dir
    if not sample_dir.is_dir():
        raise LibraryError("Sample data folder (books-sample/) not found")
    config = load_config(paths)
    loaded = 0
    for shelf_dir in sorted(
        path for path in sample_dir.iterdir() if path.is_dir() and path.name != COVERS_DIRNAME
    ):
        target_dir = paths.books_dir / shelf_dir.name
        target_dir.mkdir(parents=True, exist_ok=True)
        for source in book_files(shelf_dir):
            shutil.copyfile(source, target_dir / source.name)
            loaded += 1
    shelves = list(config.shelves)
    for sample_shelf in SAMPLE_SHELVES:
        if config.find_shelf(sample_shelf.id) is None and config.shelf_for_folder(
            sample_shelf.folder
        ) is None:
            shelves.append(sample_shelf)
    save_config(paths, config.with_shelves(shelves))
    return loaded


def set_cover_local(file_path: Path, cover_local: Optional[str]) -> Book:
    record = read_book(file_path)
    updated = replace(record, cover_local=cover_local)
    write_json(Path(file_path), updated.to_dict())
    return updated
