"""File-backed library model: site config, shelf folders and book records."""
from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from bookshelf.filenames import shelf_id_to_folder


class LibraryError(ValueError):
    """Raised when a library request is invalid or refers to unknown data."""


CONFIG_FILENAME = "config.json"
BOOKS_DIRNAME = "books"
SAMPLE_BOOKS_DIRNAME = "books-sample"
DIST_DIRNAME = "dist"
COVERS_DIRNAME = "covers"
BOOK_SUFFIX = ".json"

DEFAULT_CATEGORY = "Other"
CATEGORIES = (
    "Programming",
    "Self-Improvement",
    "Business",
    "Science",
    "Biography",
    "Fiction",
    "Other",
)
CLICK_OVERLAY = "overlay"
CLICK_REDIRECT = "redirect"
CLICK_BEHAVIORS = (CLICK_OVERLAY, CLICK_REDIRECT)
PAGES_DISPLAY_MIN = 5

_BOOK_FIELDS = (
    "title",
    "author",
    "category",
    "publishDate",
    "pages",
    "cover",
    "coverLocal",
    "notes",
    "link",
    "clickBehavior",
)
_DERIVED_FIELDS = ("filePath", "fileName", "shelfId", "shelfLabel")


@dataclass(frozen=True)
class SitePaths:
    site_dir: Path

    @property
    def config_path(self) -> Path:
        return self.site_dir / CONFIG_FILENAME

    @property
    def books_dir(self) -> Path:
        return self.site_dir / BOOKS_DIRNAME

    @property
    def sample_books_dir(self) -> Path:
        return self.site_dir / SAMPLE_BOOKS_DIRNAME

    @property
    def dist_dir(self) -> Path:
        return self.site_dir / DIST_DIRNAME

    @property
    def covers_dir(self) -> Path:
        return self.books_dir / COVERS_DIRNAME

    def shelf_dir(self, shelf: "Shelf") -> Path:
        return self.books_dir / shelf.folder


@dataclass(frozen=True)
class Shelf:
    id: str
    label: str
    folder: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Shelf":
        if not isinstance(data, Mapping):
            raise LibraryError("Shelf entries must be objects.")
        shelf_id = _clean_text(data.get("id"))
        if not shelf_id:
            raise LibraryError("Shelf id is required.")
        label = _clean_text(data.get("label")) or shelf_id
        folder = _clean_text(data.get("folder")) or shelf_id_to_folder(shelf_id)
        if "/" in folder or "\\" in folder or folder in {".", "..", COVERS_DIRNAME}:
            raise LibraryError(f'Invalid folder "{folder}" for shelf "{shelf_id}".')
        return cls(id=shelf_id, label=label, folder=folder)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "label": self.label, "folder": self.folder}


@dataclass(frozen=True)
class Config:
    site_title: str = ""
    site_subtitle: str = ""
    footer_text: str = ""
    shelves: tuple[Shelf, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        if not isinstance(data, Mapping):
            raise LibraryError("config.json must contain an object.")
        raw_shelves = data.get("shelves") or []
        if not isinstance(raw_shelves, list):
            raise LibraryError("config.json shelves must be a list.")
        shelves = tuple(Shelf.from_dict(item) for item in raw_shelves)
        _ensure_unique_ids(shelves)
        return cls(
            site_title=_clean_text(data.get("siteTitle"), strip=False),
            site_subtitle=_clean_text(data.get("siteSubtitle"), strip=False),
            footer_text=_clean_text(data.get("footerText"), strip=False),
            shelves=shelves,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "siteTitle": self.site_title,
            "siteSubtitle": self.site_subtitle,
            "footerText": self.footer_text,
            "shelves": [shelf.to_dict() for shelf in self.shelves],
        }

    def find_shelf(self, shelf_id: str) -> Optional[Shelf]:
        for shelf in self.shelves:
            if shelf.id == shelf_id:
                return shelf
        return None

    def require_shelf(self, shelf_id: str) -> Shelf:
        shelf = self.find_shelf(shelf_id)
        if shelf is None:
            raise LibraryError(f'Shelf with id "{shelf_id}" not found')
        return shelf

    def shelf_for_folder(self, folder: str) -> Optional[Shelf]:
        for shelf in self.shelves:
            if shelf.folder == folder:
                return shelf
        return None

    def with_shelves(self, shelves: Iterable[Shelf]) -> "Config":
        shelves = tuple(shelves)
        _ensure_unique_ids(shelves)
        return replace(self, shelves=shelves)


@dataclass(frozen=True)
class Book:
    title: str
    author: str
    category: str = DEFAULT_CATEGORY
    publish_date: str = ""
    pages: Optional[int] = None
    cover: Optional[str] = None
    cover_local: Optional[str] = None
    notes: Optional[str] = None
    link: Optional[str] = None
    click_behavior: str = CLICK_OVERLAY
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Book":
        if not isinstance(data, Mapping):
            raise LibraryError("Book records must be objects.")
        title = _clean_text(data.get("title"))
        if not title:
            raise LibraryError("Title is required")
        author = _clean_text(data.get("author"))
        if not author:
            raise LibraryError("Author is required")
        click_behavior = _clean_text(data.get("clickBehavior"))
        if click_behavior not in CLICK_BEHAVIORS:
            click_behavior = CLICK_OVERLAY
        return cls(
            title=title,
            author=author,
            category=_clean_text(data.get("category")) or DEFAULT_CATEGORY,
            publish_date=_clean_text(data.get("publishDate")),
            pages=_coerce_pages(data.get("pages")),
            cover=_optional_text(data.get("cover")),
            cover_local=_optional_text(data.get("coverLocal")),
            notes=_optional_text(data.get("notes"), strip=False),
            link=_optional_text(data.get("link")),
            click_behavior=click_behavior,
            extra={
                key: value
                for key, value in data.items()
                if key not in _BOOK_FIELDS and key not in _DERIVED_FIELDS
            },
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "publishDate": self.publish_date,
        }
        optional = {
            "pages": self.pages,
            "cover": self.cover,
            "coverLocal": self.cover_local,
            "notes": self.notes,
            "link": self.link,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        payload["clickBehavior"] = self.click_behavior
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload

    @property
    def display_pages(self) -> Optional[int]:
        if self.pages is None or self.pages < PAGES_DISPLAY_MIN:
            return None
        return self.pages

    @property
    def display_cover(self) -> Optional[str]:
        return self.cover_local or self.cover

    def validate(self) -> None:
        if self.publish_date:
            try:
                datetime.date.fromisoformat(self.publish_date)
            except ValueError as exc:
                raise LibraryError("Publish date must be in YYYY-MM-DD format") from exc


@dataclass(frozen=True)
class BookEntry:
    book: Book
    file_path: Path
    shelf_id: str
    shelf_label: str

    @property
    def file_name(self) -> str:
        return self.file_path.name

    def to_dict(self) -> dict[str, Any]:
        payload = self.book.to_dict()
        payload.update(
            {
                "filePath": str(self.file_path),
                "fileName": self.file_name,
                "shelfId": self.shelf_id,
                "shelfLabel": self.shelf_label,
            }
        )
        return payload


def _clean_text(value: Any, strip: bool = True) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.strip() if strip else value


def _optional_text(value: Any, strip: bool = True) -> Optional[str]:
    text = _clean_text(value, strip=strip)
    if not text.strip():
        return None
    return text


def _coerce_pages(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return None
    try:
        pages = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if pages <= 0:
        return None
    return pages


def _ensure_unique_ids(shelves: Iterable[Shelf]) -> None:
    seen: set[str] = set()
    for shelf in shelves:
        if shelf.id in seen:
            raise LibraryError(f'Duplicate shelf id "{shelf.id}" in config.')
        seen.add(shelf.id)


def write_json(path: Path, payload: Any, indent: int = 2) -> None:
    path.write_text(
        json.dumps(payload, indent=indent, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )


def load_config(paths: SitePaths) -> Config:
    config_path = paths.config_path
    if not config_path.exists():
        raise LibraryError(f"{CONFIG_FILENAME} not found")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LibraryError(f"Could not read {CONFIG_FILENAME}: {exc}") from exc
    return Config.from_dict(data)


def save_config(paths: SitePaths, config: Config) -> None:
    paths.site_dir.mkdir(parents=True, exist_ok=True)
    write_json(paths.config_path, config.to_dict())


def read_book(file_path: Path) -> Book:
    file_path = Path(file_path)
    if not file_path.is_file():
        raise LibraryError(f"Book file not found: {file_path}")
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LibraryError(f"Could not read {file_path.name}: {exc}") from exc
    return Book.from_dict(data)


def locate_book(
    paths: SitePaths, file_path: Path, config: Optional[Config] = None
) -> tuple[Path, Shelf]:
    """Resolve ``file_path`` to a book file directly inside a configured shelf folder.

    Anything else is rejected, whether or not the file exists.
    """
    if config is None:
        config = load_config(paths)
    try:
        resolved = Path(file_path).resolve()
    except (TypeError, ValueError, OSError) as exc:
        raise LibraryError(f"Invalid book path: {file_path}") from exc
    if resolved.suffix == BOOK_SUFFIX:
        books_root = paths.books_dir.resolve()
        for shelf in config.shelves:
            if resolved.parent == books_root / shelf.folder:
                return resolved, shelf
    raise LibraryError(f"Not a book file of this library: {file_path}")


def book_files(shelf_dir: Path) -> list[Path]:
    if not shelf_dir.is_dir():
        return []
    return sorted(
        path
        for path in shelf_dir.iterdir()
        if path.suffix == BOOK_SUFFIX and path.is_file()
    )


def list_books(
    paths: SitePaths,
    config: Optional[Config] = None,
    books_dir: Optional[Path] = None,
) -> list[BookEntry]:
    """Read every book of every shelf, in config order.

    Shelves without a directory contribute nothing. Files that cannot be
    parsed or fail validation are reported and skipped.
    """
    if config is None:
        config = load_config(paths)
    root = books_dir if books_dir is not None else paths.books_dir
    entries: list[BookEntry] = []
    for shelf in config.shelves:
        for file_path in book_files(root / shelf.folder):
            try:
                book = read_book(file_path)
            except LibraryError as error:
                print(f"[library] Skipped {shelf.folder}/{file_path.name}: {error}")
                continue
            entries.append(
                BookEntry(
                    book=book,
                    file_path=file_path,
                    shelf_id=shelf.id,
                    shelf_label=shelf.label,
                )
            )
    return entries


def books_by_shelf(entries: Iterable[BookEntry], shelf_id: str) -> list[BookEntry]:
    return [entry for entry in entries if entry.shelf_id == shelf_id]


def search_books(entries: Iterable[BookEntry], query: str) -> list[BookEntry]:
    needle = query.strip().lower()
    if not needle:
        return list(entries)
    return [
        entry
        for entry in entries
        if needle in entry.book.title.lower()
        or needle in entry.book.author.lower()
        or needle in entry.book.category.lower()
    ]


def count_books(paths: SitePaths) -> int:
    books_dir = paths.books_dir
    if not books_dir.is_dir():
        return 0
    return sum(
        len(book_files(entry))
        for entry in books_dir.iterdir()
        if entry.is_dir() and entry.name != COVERS_DIRNAME
    )
