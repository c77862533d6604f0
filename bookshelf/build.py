"""Compile the library into a static bundle with a generated book index."""
from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from bookshelf.library import (
    BOOKS_DIRNAME,
    CONFIG_FILENAME,
    COVERS_DIRNAME,
    Config,
    LibraryError,
    SitePaths,
    book_files,
    load_config,
    write_json,
)

INDEX_FILENAME = "index.json"


@dataclass(frozen=True)
class BuildSettings:
    static_files: tuple[str, ...] = ("styles-minimalist.css", "app.js", "favicon.svg")
    template_files: tuple[str, ...] = ("index.html",)


@dataclass
class BuildResult:
    output_dir: Path
    source_dir: Path
    book_files: list[str] = field(default_factory=list)
    shelf_counts: dict[str, int] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return f"Built {len(self.book_files)} books to {self.output_dir.name}/"

    def to_dict(self) -> dict[str, object]:
        return {
            "outputDir": str(self.output_dir),
            "bookFiles": list(self.book_files),
            "shelfCounts": dict(self.shelf_counts),
        }


def template_values(config: Config) -> dict[str, str]:
    return {
        "siteTitle": config.site_title,
        "siteSubtitle": config.site_subtitle,
        "footerText": config.footer_text,
    }


def render_template(content: str, values: Mapping[str, str]) -> str:
    for name, value in values.items():
        content = content.replace("{{" + name + "}}", value)
    return content


def _check_output_dir(paths: SitePaths, output_dir: Path) -> None:
    target = output_dir.resolve()
    for protected in (paths.site_dir, paths.books_dir, paths.sample_books_dir):
        protected = protected.resolve()
        if target == protected or target in protected.parents:
            raise LibraryError(f"Refusing to build into {output_dir}: it holds source data")


def _reset_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


def _copy_assets(
    paths: SitePaths, config: Config, output_dir: Path, settings: BuildSettings
) -> None:
    for name in settings.static_files:
        source = paths.site_dir / name
        if not source.is_file():
            print(f"[build] Warning: static file not found: {name}")
            continue
        shutil.copyfile(source, output_dir / name)
    values = template_values(config)
    for name in settings.template_files:
        source = paths.site_dir / name
        if not source.is_file():
            print(f"[build] Warning: template file not found: {name}")
            continue
        content = source.read_text(encoding="utf-8")
        (output_dir / name).write_text(render_template(content, values), encoding="utf-8")


def _copy_books(
    config: Config, source_dir: Path, books_out: Path, result: BuildResult
) -> None:
    for shelf in config.shelves:
        shelf_source = source_dir / shelf.folder
        if not shelf_source.is_dir():
            print(f"[build] Warning: folder not found: {shelf.folder}")
            result.shelf_counts[shelf.folder] = 0
            continue
        shelf_out = books_out / shelf.folder
        shelf_out.mkdir(parents=True, exist_ok=True)
        files = book_files(shelf_source)
        for source in files:
            shutil.copyfile(source, shelf_out / source.name)
            result.book_files.append(f"{shelf.folder}/{source.name}")
        result.shelf_counts[shelf.folder] = len(files)


def _copy_covers(source_dir: Path, books_out: Path) -> int:
    covers_source = source_dir / COVERS_DIRNAME
    if not covers_source.is_dir():
        return 0
    covers_out = books_out / COVERS_DIRNAME
    covers_out.mkdir(parents=True, exist_ok=True)
    copied = 0
    for source in sorted(covers_source.iterdir()):
        if source.name.startswith(".") or not source.is_file():
            continue
        shutil.copyfile(source, covers_out / source.name)
        copied += 1
    return copied


def build_site(
    paths: SitePaths,
    use_sample_data: bool = False,
    settings: Optional[BuildSettings] = None,
    output_dir: Optional[Path] = None,
    verbose: bool = False,
) -> BuildResult:
    """Regenerate the whole bundle from config.json and the book folders.

    config.json is read before anything is removed, so a missing or broken
    config leaves the previous bundle untouched.
    """
    settings = settings or BuildSettings()
    config = load_config(paths)
    source_dir = paths.sample_books_dir if use_sample_data else paths.books_dir
    output_dir = output_dir or paths.dist_dir
    _check_output_dir(paths, output_dir)
    result = BuildResult(output_dir=output_dir, source_dir=source_dir)

    _reset_dir(output_dir)
    _copy_assets(paths, config, output_dir, settings)
    shutil.copyfile(paths.config_path, output_dir / CONFIG_FILENAME)

    books_out = output_dir / BOOKS_DIRNAME
    books_out.mkdir()
    _copy_books(config, source_dir, books_out, result)
    write_json(books_out / INDEX_FILENAME, result.book_files, indent=4)
    covers = _copy_covers(source_dir, books_out)

    if verbose:
        data_source = "sample" if use_sample_data else "real"
        print(f"[build] Generated {BOOKS_DIRNAME}/{INDEX_FILENAME} ({data_source} data).")
        print(f"[build] Found {len(result.book_files)} books:")
        for folder, count in result.shelf_counts.items():
            print(f"[build]   - {folder}: {count} books")
        if covers:
            print(f"[build] Copied {covers} cover(s).")
    return result
