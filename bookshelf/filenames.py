from __future__ import annotations

import re


_DROP_RE = re.compile(r"[^a-z0-9\s-]")
_SPACE_RE = re.compile(r"\s+")
_HYPHEN_RE = re.compile(r"-+")
_CAMEL_RE = re.compile(r"([A-Z])")
COVER_NAME_LIMIT = 50


def to_kebab_case(text: str, fallback: str = "untitled") -> str:
    slug = _DROP_RE.sub("", (text or "").lower())
    slug = _SPACE_RE.sub("-", slug)
    slug = _HYPHEN_RE.sub("-", slug).strip("-")
    return slug or fallback


def shelf_id_to_folder(shelf_id: str) -> str:
    folder = _CAMEL_RE.sub(r"-\1", shelf_id).lower().lstrip("-")
    return to_kebab_case(folder, fallback="shelf")


def book_filename(title: str) -> str:
    return f"{to_kebab_case(title)}.json"


def cover_filename(title: str, extension: str = "jpg") -> str:
    stem = to_kebab_case(title)[:COVER_NAME_LIMIT].strip("-") or "untitled"
    return f"{stem}.{extension.lstrip('.')}"
