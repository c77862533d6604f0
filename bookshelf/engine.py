"""Single entry point for shells: every operation reports an ``Outcome``."""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from bookshelf import covers, library, mutations
from bookshelf.build import BuildSettings, build_site
from bookshelf.covers import CoverError
from bookshelf.fetch import FetchError, FetchSettings
from bookshelf.library import Config, LibraryError, SitePaths
from bookshelf.lookup import OpenLibraryClient
from bookshelf.preview import PreviewError, PreviewServer, PreviewSettings

_EXPECTED_ERRORS = (LibraryError, CoverError, FetchError, PreviewError, OSError)


@dataclass(frozen=True)
class Outcome:
    success: bool
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.value is not None:
            payload["value"] = _jsonable(self.value)
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _attempt(action: Callable[[], Any], message: Callable[[Any], str]) -> Outcome:
    try:
        value = action()
    except _EXPECTED_ERRORS as exc:
        return Outcome(False, str(exc) or exc.__class__.__name__)
    return Outcome(True, message(value), value)


def _batch_outcome(result: mutations.BatchResult, verb: str) -> Outcome:
    return Outcome(
        result.ok,
        result.summary(verb),
        {
            "succeeded": [str(path) for path in result.succeeded],
            "failed": [{"filePath": str(path), "error": error} for path, error in result.failed],
        },
    )


class LibraryEngine:
    def __init__(
        self,
        site_dir: Path,
        fetch_settings: Optional[FetchSettings] = None,
        build_settings: Optional[BuildSettings] = None,
        preview_settings: Optional[PreviewSettings] = None,
        lookup_client: Optional[OpenLibraryClient] = None,
        max_workers: int = 4,
        verbose: bool = False,
    ) -> None:
        self.paths = SitePaths(Path(site_dir))
        self.fetch_settings = fetch_settings or FetchSettings()
        self.build_settings = build_settings or BuildSettings()
        self.preview = PreviewServer(preview_settings)
        self.lookup_client = lookup_client or OpenLibraryClient()
        self.verbose = verbose
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def close(self) -> Outcome:
        self.preview.stop()
        self._executor.shutdown(wait=True)
        return Outcome(True, "Engine closed")

    # Config

    def get_config(self) -> Outcome:
        return _attempt(lambda: library.load_config(self.paths), lambda _: "Loaded config")

    def save_config(self, config: Config | Mapping[str, Any]) -> Outcome:
        def action() -> Config:
            value = config if isinstance(config, Config) else Config.from_dict(config)
            library.save_config(self.paths, value)
            return value

        return _attempt(action, lambda _: "Saved config")

    def update_config(self, **changes: Optional[str]) -> Outcome:
        return _attempt(
            lambda: mutations.update_config(self.paths, **changes), lambda _: "Saved config"
        )

    # Books

    def get_books(self, query: str = "") -> Outcome:
        def action() -> list[library.BookEntry]:
            return library.search_books(library.list_books(self.paths), query)

        return _attempt(action, lambda entries: f"Found {len(entries)} book(s)")

    def get_book(self, file_path: Path) -> Outcome:
        def action() -> library.Book:
            located, _ = library.locate_book(self.paths, file_path)
            return library.read_book(located)

        return _attempt(action, lambda book: book.title)

    def save_book(self, shelf_id: str, file_name: str, book: mutations.BookInput) -> Outcome:
        return _attempt(
            lambda: mutations.save_book(self.paths, shelf_id, file_name, book),
            lambda path: f"Saved {path.name}",
        )

    def create_book(self, shelf_id: str, book: mutations.BookInput) -> Outcome:
        return _attempt(
            lambda: mutations.create_book(self.paths, shelf_id, book),
            lambda path: f"Created {path.parent.name}/{path.name}",
        )

    def update_book(
        self, file_path: Path, book: mutations.BookInput, target_shelf_id: Optional[str] = None
    ) -> Outcome:
        return _attempt(
            lambda: mutations.update_book(self.paths, Path(file_path), book, target_shelf_id),
            lambda path: f"Saved {path.parent.name}/{path.name}",
        )

    def delete_book(self, file_path: Path) -> Outcome:
        return _attempt(
            lambda: mutations.delete_book(self.paths, file_path),
            lambda removed: "Deleted book" if removed else "Book was already gone",
        )

    def move_book(self, file_path: Path, target_shelf_id: str) -> Outcome:
        return _attempt(
            lambda: mutations.move_book(self.paths, Path(file_path), target_shelf_id),
            lambda path: f"Moved to {path.parent.name}/{path.name}",
        )

    def move_books(self, file_paths: Iterable[Path], target_shelf_id: str) -> Outcome:
        try:
            result = mutations.move_books(self.paths, file_paths, target_shelf_id)
        except _EXPECTED_ERRORS as exc:
            return Outcome(False, str(exc))
        return _batch_outcome(result, "Moved")

    def delete_books(self, file_paths: Iterable[Path]) -> Outcome:
        try:
            result = mutations.delete_books(self.paths, file_paths)
        except _EXPECTED_ERRORS as exc:
            return Outcome(False, str(exc))
        return _batch_outcome(result, "Deleted")

    def count_books(self) -> Outcome:
        return _attempt(
            lambda: library.count_books(self.paths), lambda count: f"{count} book(s) on disk"
        )

    def load_sample_data(self) -> Outcome:
        return _attempt(
            lambda: mutations.load_sample_data(self.paths),
            lambda loaded: f"Loaded {loaded} sample books",
        )

    # Shelves

    def create_shelf(self, shelf: mutations.ShelfInput) -> Outcome:
        return _attempt(
            lambda: mutations.create_shelf(self.paths, shelf),
            lambda created: f'Created shelf "{created.label}"',
        )

    def update_shelf(self, shelf_id: str, label: str) -> Outcome:
        return _attempt(
            lambda: mutations.update_shelf(self.paths, shelf_id, label),
            lambda shelf: f'Renamed shelf to "{shelf.label}"',
        )

    def delete_shelf(self, shelf_id: str) -> Outcome:
        return _attempt(
            lambda: mutations.delete_shelf(self.paths, shelf_id),
            lambda _: f'Deleted shelf "{shelf_id}"',
        )

    def reorder_shelves(self, ordered_ids: Iterable[str]) -> Outcome:
        return _attempt(
            lambda: mutations.reorder_shelves(self.paths, ordered_ids),
            lambda _: "Reordered shelves",
        )

    def merge_shelf(self, source_id: str, target_id: str) -> Outcome:
        try:
            result = mutations.merge_shelf(self.paths, source_id, target_id)
        except _EXPECTED_ERRORS as exc:
            return Outcome(False, str(exc))
        return _batch_outcome(result, "Merged")

    # Covers

    def download_cover(self, url: str, file_name: str) -> Outcome:
        return _attempt(
            lambda: covers.download_cover(
                url,
                file_name,
                self.paths.covers_dir,
                settings=self.fetch_settings,
                verbose=self.verbose,
            ),
            lambda cover_local: f"Saved {cover_local}",
        )

    def download_cover_async(self, url: str, file_name: str) -> "Future[Outcome]":
        return self._executor.submit(self.download_cover, url, file_name)

    def cache_book_cover(self, file_path: Path) -> Outcome:
        return _attempt(
            lambda: covers.cache_book_cover(
                self.paths, Path(file_path), settings=self.fetch_settings, verbose=self.verbose
            ),
            lambda cover_local: f"Saved {cover_local}",
        )

    def cache_book_cover_async(self, file_path: Path) -> "Future[Outcome]":
        return self._executor.submit(self.cache_book_cover, file_path)

    def delete_cover(self, cover_local: str) -> Outcome:
        return _attempt(
            lambda: covers.delete_cover(self.paths, cover_local),
            lambda removed: "Deleted cover" if removed else "Cover was already gone",
        )

    # Lookup

    def search_lookup(self, query: str) -> Outcome:
        results = self.lookup_client.lookup(query)
        return Outcome(
            True,
            f"Found {len(results)} match(es)",
            [result.to_book_fields() for result in results],
        )

    def search_lookup_async(self, query: str) -> "Future[Outcome]":
        return self._executor.submit(self.search_lookup, query)

    # Build and preview

    def build(self, use_sample_data: bool = False) -> Outcome:
        return _attempt(
            lambda: build_site(
                self.paths,
                use_sample_data=use_sample_data,
                settings=self.build_settings,
                verbose=self.verbose,
            ),
            lambda result: result.message,
        )

    def start_preview(self) -> Outcome:
        return _attempt(
            lambda: self.preview.start(self.paths.dist_dir, verbose=self.verbose),
            lambda info: f"Preview running at {info.url}",
        )

    def stop_preview(self) -> Outcome:
        return _attempt(
            self.preview.stop,
            lambda stopped: "Preview stopped" if stopped else "Preview was not running",
        )
