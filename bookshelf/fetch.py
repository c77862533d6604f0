"""Bounded HTTP fetching: fixed-backoff retries and manually followed redirects."""
from __future__ import annotations

import http.client
import socket
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar
from urllib import request
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin, urlparse

T = TypeVar("T")

REDIRECT_CODES = {301, 302, 303, 307, 308}
_TRANSIENT_ERRORS = (
    URLError,
    socket.timeout,
    TimeoutError,
    ConnectionError,
    http.client.HTTPException,
)
_FETCH_SCHEMES = {"http", "https"}


class FetchError(RuntimeError):
    """Raised when a URL cannot be fetched after retries and redirects."""


@dataclass(frozen=True)
class FetchSettings:
    timeout: float = 30.0
    retries: int = 3
    backoff: float = 1.0
    max_redirects: int = 5
    user_agent: str = "bookshelf/0.1"


class _NoRedirectHandler(request.HTTPRedirectHandler):
    # Returning None makes urllib raise the 3xx as an HTTPError we handle ourselves.
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


def _build_opener() -> request.OpenerDirector:
    # http(s) only: no file: or ftp: handlers.
    opener = request.OpenerDirector()
    for handler in (
        request.ProxyHandler(),
        request.HTTPHandler(),
        request.HTTPSHandler(),
        request.UnknownHandler(),
        request.HTTPDefaultErrorHandler(),
        request.HTTPErrorProcessor(),
        _NoRedirectHandler(),
    ):
        opener.add_handler(handler)
    return opener


_OPENER = _build_opener()


def _open(url: str, settings: FetchSettings) -> Any:
    req = request.Request(url, headers={"User-Agent": settings.user_agent})
    return _OPENER.open(req, timeout=settings.timeout)


def fetch(
    url: str,
    handle_response: Callable[[Any], T],
    settings: Optional[FetchSettings] = None,
    verbose: bool = False,
) -> T:
    """Open ``url`` and pass the response to ``handle_response``.

    Connection-level failures (including timeouts while reading the body)
    are retried ``settings.retries`` times with a fixed pause. Redirects are
    followed up to ``settings.max_redirects`` hops and do not use up retries.
    Any other HTTP status is a terminal failure.
    """
    settings = settings or FetchSettings()
    current_url = url
    retries_left = settings.retries
    redirects_left = settings.max_redirects
    while True:
        if urlparse(current_url).scheme.lower() not in _FETCH_SCHEMES:
            raise FetchError(f"Refusing to fetch non-http(s) URL: {current_url}")
        try:
            with _open(current_url, settings) as response:
                status = getattr(response, "status", None)
                if not isinstance(status, int) or not 200 <= status < 300:
                    raise FetchError(f"HTTP {status} for {current_url}")
                return handle_response(response)
        except HTTPError as exc:
            location = exc.headers.get("Location") if exc.headers else None
            if exc.code in REDIRECT_CODES and location:
                if redirects_left <= 0:
                    raise FetchError(f"Too many redirects fetching {url}") from exc
                redirects_left -= 1
                current_url = urljoin(current_url, location)
                if verbose:
                    print(f"[fetch] Redirected to {current_url}")
                continue
            raise FetchError(f"HTTP {exc.code} for {current_url}") from exc
        except _TRANSIENT_ERRORS as exc:
            if retries_left <= 0:
                raise FetchError(f"Failed to fetch {url}: {_describe(exc)}") from exc
            retries_left -= 1
            if verbose:
                print(
                    f"[fetch] Retrying {current_url} after {_describe(exc)} "
                    f"({retries_left} retries left)"
                )
            time.sleep(settings.backoff)


def fetch_bytes(
    url: str, settings: Optional[FetchSettings] = None, verbose: bool = False
) -> bytes:
    return fetch(url, lambda response: response.read(), settings=settings, verbose=verbose)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, URLError) and not isinstance(exc, HTTPError):
        return str(exc.reason)
    return str(exc) or exc.__class__.__name__
