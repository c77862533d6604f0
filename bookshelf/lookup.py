from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

from bookshelf.fetch import FetchError, FetchSettings, fetch_bytes

OPEN_LIBRARY_URL = "https://openlibrary.org"
COVERS_URL = "https://covers.openlibrary.org"
_ISBN_RE = re.compile(r"^(\d{10}|\d{13}|\d{9}[\dXx])$")
_YEAR_RE = re.compile(r"\d{4}")


@dataclass(frozen=True)
class LookupResult:
    title: str
    author: str = ""
    first_publish_year: Optional[int] = None
    page_count: Optional[int] = None
    cover_id: Optional[int] = None
    cover_edition_key: Optional[str] = None
    key: str = ""
    covers_url: str = COVERS_URL
    base_url: str = OPEN_LIBRARY_URL

    @property
    def cover_url(self) -> Optional[str]:
        if self.cover_edition_key:
            return f"{self.covers_url}/b/olid/{self.cover_edition_key}-L.jpg"
        if self.cover_id:
            return f"{self.covers_url}/b/id/{self.cover_id}-L.jpg"
        return None

    def to_book_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "title": self.title,
            "author": self.author,
            "publishDate": f"{self.first_publish_year}-01-01" if self.first_publish_year else "",
        }
        if self.page_count:
            fields["pages"] = self.page_count
        if self.cover_url:
            fields["cover"] = self.cover_url
        if self.key:
            fields["link"] = f"{self.base_url}{self.key}"
        return fields


def is_isbn(query: str) -> bool:
    return bool(_ISBN_RE.match(re.sub(r"[-\s]", "", query or "")))


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    return None


def _year_from(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        match = _YEAR_RE.search(value)
        if match:
            return int(match.group(0))
    return None


class OpenLibraryClient:
    """Search Open Library; network or parse failures yield no matches."""

    def __init__(
        self,
        base_url: str = OPEN_LIBRARY_URL,
        covers_url: str = COVERS_URL,
        settings: Optional[FetchSettings] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.covers_url = covers_url.rstrip("/")
        self.settings = settings or FetchSettings(timeout=15.0, retries=2, backoff=0.5)

    def _get_json(self, path: str) -> Any:
        try:
            body = fetch_bytes(f"{self.base_url}{path}", settings=self.settings)
            return json.loads(body.decode("utf-8"))
        except (FetchError, OSError, UnicodeDecodeError, ValueError):
            return None

    def search(self, query: str, limit: int = 10) -> list[LookupResult]:
        query = (query or "").strip()
        if not query:
            return []
        data = self._get_json(f"/search.json?q={quote(query)}&limit={int(limit)}")
        if not isinstance(data, dict) or not isinstance(data.get("docs"), list):
            return []
        results = []
        for doc in data["docs"]:
            result = self._result_from_doc(doc)
            if result is not None:
                results.append(result)
        return results

    def _result_from_doc(self, doc: Any) -> Optional[LookupResult]:
        if not isinstance(doc, dict) or not isinstance(doc.get("title"), str):
            return None
        authors = doc.get("author_name")
        author = authors[0] if isinstance(authors, list) and authors else ""
        edition_key = doc.get("cover_edition_key")
        return LookupResult(
            title=doc["title"],
            author=author if isinstance(author, str) else "",
            first_publish_year=_year_from(doc.get("first_publish_year")),
            page_count=_positive_int(doc.get("number_of_pages_median")),
            cover_id=_positive_int(doc.get("cover_i")),
            cover_edition_key=edition_key if isinstance(edition_key, str) else None,
            key=doc.get("key") if isinstance(doc.get("key"), str) else "",
            covers_url=self.covers_url,
            base_url=self.base_url,
        )

    def lookup_isbn(self, isbn: str) -> Optional[LookupResult]:
        clean_isbn = re.sub(r"[-\s]", "", isbn or "")
        if not clean_isbn:
            return None
        data = self._get_json(f"/isbn/{quote(clean_isbn)}.json")
        if not isinstance(data, dict) or not isinstance(data.get("title"), str):
            return None
        author = ""
        authors = data.get("authors")
        if isinstance(authors, list) and authors and isinstance(authors[0], dict):
            author_key = authors[0].get("key")
            if isinstance(author_key, str) and author_key.startswith("/"):
                author_data = self._get_json(f"{author_key}.json")
                if isinstance(author_data, dict) and isinstance(author_data.get("name"), str):
                    author = author_data["name"]
        covers = data.get("covers")
        cover_id = _positive_int(covers[0]) if isinstance(covers, list) and covers else None
        return LookupResult(
            title=data["title"],
            author=author,
            first_publish_year=_year_from(data.get("publish_date")),
            page_count=_positive_int(data.get("number_of_pages")),
            cover_id=cover_id,
            key=f"/isbn/{clean_isbn}",
            covers_url=self.covers_url,
            base_url=self.base_url,
        )

    def lookup(self, query: str, limit: int = 5) -> list[LookupResult]:
        if is_isbn(query):
            result = self.lookup_isbn(query)
            return [result] if result is not None else []
        return self.search(query, limit=limit)
