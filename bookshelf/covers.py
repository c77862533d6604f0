from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from bookshelf.fetch import FetchError, FetchSettings, fetch
from bookshelf.filenames import cover_filename
from bookshelf.library import (
    BOOKS_DIRNAME,
    COVERS_DIRNAME,
    BookEntry,
    Config,
    LibraryError,
    SitePaths,
    list_books,
    locate_book,
    read_book,
)
from bookshelf.mutations import set_cover_local

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"}
PART_SUFFIX = ".part"
_CHUNK_SIZE = 64 * 1024


class CoverError(RuntimeError):
    """Raised when a cover image cannot be cached or removed."""


@dataclass
class SweepResult:
    downloaded: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def is_local_cover(cover_path: Optional[str]) -> bool:
    if not cover_path:
        return False
    return cover_path.startswith(f"{BOOKS_DIRNAME}/{COVERS_DIRNAME}/") or cover_path.startswith(
        f"{COVERS_DIRNAME}/"
    )


def is_external_cover(cover_url: Optional[str]) -> bool:
    if not cover_url:
        return False
    return cover_url.startswith("http://") or cover_url.startswith("https://")


def cover_extension(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return suffix.lstrip(".")
    return "jpg"


def claim_cover_path(covers_dir: Path, file_name: str) -> Path:
    """Reserve ``covers_dir / file_name``, numbering it until a free name is taken.

    Each name is created exclusively, so concurrent downloads never end up
    with the same file.
    """
    candidate = covers_dir / file_name
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while True:
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            candidate = covers_dir / f"{stem}-{counter}{suffix}"
            counter += 1
            continue
        os.close(fd)
        return candidate


def _cover_local_value(file_name: str) -> str:
    return f"{COVERS_DIRNAME}/{file_name}"


def _check_cover_name(file_name: str) -> str:
    name = file_name.strip() if isinstance(file_name, str) else ""
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise CoverError(f'Invalid cover file name "{file_name}"')
    return name


def download_cover(
    url: str,
    file_name: str,
    covers_dir: Path,
    settings: Optional[FetchSettings] = None,
    overwrite: bool = False,
    verbose: bool = False,
) -> str:
    """Download ``url`` into ``covers_dir`` and return the ``coverLocal`` value.

    Unless ``overwrite`` is set, an existing file of the same name is never
    replaced; a numbered name is used instead. The image is streamed into a
    private hidden ``.part`` file and only gets its final name once complete,
    so a failed download leaves nothing behind.
    """
    if not is_external_cover(url):
        raise CoverError(f"Not an http(s) cover URL: {url}")
    name = _check_cover_name(file_name)
    try:
        covers_dir.mkdir(parents=True, exist_ok=True)
        fd, part_name = tempfile.mkstemp(dir=covers_dir, prefix=f".{name}.", suffix=PART_SUFFIX)
    except OSError as exc:
        raise CoverError(f"Failed to save cover {name}: {exc}") from exc
    os.close(fd)
    part_path = Path(part_name)
    destination: Optional[Path] = None

    def write_body(response) -> None:
        with part_path.open("wb") as handle:
            shutil.copyfileobj(response, handle, _CHUNK_SIZE)

    try:
        fetch(url, write_body, settings=settings, verbose=verbose)
        destination = covers_dir / name if overwrite else claim_cover_path(covers_dir, name)
        part_path.replace(destination)
    except FetchError as exc:
        raise CoverError(f"Failed to download cover: {exc}") from exc
    except OSError as exc:
        if destination is not None and not overwrite and destination.exists():
            destination.unlink()
        raise CoverError(f"Failed to save cover {name}: {exc}") from exc
    finally:
        if part_path.exists():
            part_path.unlink()
    if verbose:
        print(f"[covers] Wrote {destination.name}.")
    return _cover_local_value(destination.name)


def resolve_cover_path(paths: SitePaths, cover_local: str) -> Path:
    relative = cover_local.strip()
    prefix = f"{BOOKS_DIRNAME}/"
    if relative.startswith(prefix):
        relative = relative[len(prefix):]
    covers_root = paths.covers_dir.resolve()
    candidate = (paths.books_dir / relative).resolve()
    if covers_root not in candidate.parents:
        raise CoverError(f"Invalid cover path: {cover_local}")
    return candidate


def delete_cover(paths: SitePaths, cover_local: str) -> bool:
    cover_path = resolve_cover_path(paths, cover_local)
    if not cover_path.is_file():
        return False
    cover_path.unlink()
    return True


def cache_book_cover(
    paths: SitePaths,
    file_path: Path,
    settings: Optional[FetchSettings] = None,
    verbose: bool = False,
) -> str:
    """Cache a book's external cover and record it as the book's ``coverLocal``.

    The record is only rewritten after the image was fully saved.
    """
    try:
        file_path, _ = locate_book(paths, file_path)
        book = read_book(file_path)
    except LibraryError as exc:
        raise CoverError(str(exc)) from exc
    if not is_external_cover(book.cover):
        raise CoverError(f'"{book.title}" has no external cover URL')
    overwrite = False
    file_name = cover_filename(book.title, cover_extension(book.cover))
    if book.cover_local and is_local_cover(book.cover_local):
        # Refresh the book's own cached file in place.
        file_name = PurePosixPath(book.cover_local).name
        overwrite = True
    cover_local = download_cover(
        book.cover,
        file_name,
        paths.covers_dir,
        settings=settings,
        overwrite=overwrite,
        verbose=verbose,
    )
    try:
        set_cover_local(file_path, cover_local)
    except (LibraryError, OSError) as exc:
        if not overwrite:
            delete_cover(paths, cover_local)
        raise CoverError(f"Could not update {file_path.name}: {exc}") from exc
    return cover_local


def find_uncached_covers(
    paths: SitePaths, config: Optional[Config] = None
) -> list[BookEntry]:
    return [
        entry
        for entry in list_books(paths, config)
        if not entry.book.cover_local and is_external_cover(entry.book.cover)
    ]


def cache_missing_covers(
    paths: SitePaths,
    entries: Iterable[BookEntry],
    settings: Optional[FetchSettings] = None,
    confirm: Optional[Callable[[BookEntry], bool]] = None,
    verbose: bool = False,
) -> SweepResult:
    """Cache each entry's cover independently; one failure never stops the sweep."""
    result = SweepResult()
    for entry in entries:
        if confirm is not None and not confirm(entry):
            result.skipped.append(entry.file_path)
            continue
        try:
            cache_book_cover(paths, entry.file_path, settings=settings, verbose=verbose)
        except CoverError as error:
            print(f"[covers] Skipped {entry.file_name}: {error}")
            result.failed.append((entry.file_path, str(error)))
            continue
        result.downloaded.append(entry.file_path)
    return result
