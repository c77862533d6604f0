"""Loopback-only static server for inspecting a built bundle."""
from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

CONTENT_TYPES = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class PreviewError(RuntimeError):
    """Raised when the preview server cannot be started."""


@dataclass(frozen=True)
class PreviewSettings:
    host: str = "127.0.0.1"
    start_port: int = 8080
    port_attempts: int = 20
    index_document: str = "index.html"


@dataclass(frozen=True)
class PreviewInfo:
    host: str
    port: int
    bundle_dir: Path

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_dict(self) -> dict[str, object]:
        return {"port": self.port, "url": self.url}


class ForbiddenPath(ValueError):
    """Raised when a request path resolves outside the bundle."""


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)


def resolve_request_path(bundle_root: Path, request_path: str, index_document: str) -> Path:
    relative = unquote(urlparse(request_path).path)
    if relative in {"", "/"}:
        relative = index_document
    candidate = (bundle_root / relative.lstrip("/")).resolve()
    root = bundle_root.resolve()
    if candidate != root and root not in candidate.parents:
        raise ForbiddenPath(relative)
    return candidate


def _send_text(handler: BaseHTTPRequestHandler, status: int, text: str) -> None:
    body = text.encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "text/plain; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _send_file(handler: BaseHTTPRequestHandler, path: Path) -> None:
    try:
        body = path.read_bytes()
    except OSError:
        _send_text(handler, HTTPStatus.NOT_FOUND, "Not Found")
        return
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-Type", content_type_for(path))
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    try:
        handler.wfile.write(body)
    except (BrokenPipeError, ConnectionResetError):
        return


class _BundleServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self, address: tuple[str, int], bundle_root: Path, settings: PreviewSettings, verbose: bool
    ) -> None:
        self.bundle_root = bundle_root
        self.settings = settings
        self.verbose = verbose
        super().__init__(address, BundleRequestHandler)


class BundleRequestHandler(BaseHTTPRequestHandler):
    """Serve files from the bundle the server was started with."""

    server: _BundleServer

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self._serve(include_body=True)

    def do_HEAD(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self._serve(include_body=False)

    def _serve(self, include_body: bool) -> None:
        try:
            path = resolve_request_path(
                self.server.bundle_root, self.path, self.server.settings.index_document
            )
        except ForbiddenPath:
            _send_text(self, HTTPStatus.FORBIDDEN, "Forbidden")
            return
        except (ValueError, OSError):
            # Paths the filesystem cannot represent, e.g. an embedded NUL.
            _send_text(self, HTTPStatus.NOT_FOUND, "Not Found")
            return
        if not path.is_file():
            _send_text(self, HTTPStatus.NOT_FOUND, "Not Found")
            return
        if include_body:
            _send_file(self, path)
            return
        try:
            size = path.stat().st_size
        except OSError:
            _send_text(self, HTTPStatus.NOT_FOUND, "Not Found")
            return
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", content_type_for(path))
        self.send_header("Content-Length", str(size))
        self.end_headers()

    def log_message(self, format: str, *args) -> None:  # noqa: A002 - signature from base class
        if self.server.verbose:
            print(f"[preview] {self.address_string()} {format % args}")


def _bind(bundle_root: Path, settings: PreviewSettings, verbose: bool) -> _BundleServer:
    for offset in range(settings.port_attempts):
        port = settings.start_port + offset
        try:
            return _BundleServer((settings.host, port), bundle_root, settings, verbose)
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                continue
            raise PreviewError(f"Could not start preview server on port {port}: {exc}") from exc
    last_port = settings.start_port + settings.port_attempts - 1
    raise PreviewError(
        f"No free port for the preview server between {settings.start_port} and {last_port}"
    )


class PreviewServer:
    """Owns at most one running preview server; starting again replaces it."""

    def __init__(self, settings: Optional[PreviewSettings] = None) -> None:
        self.settings = settings or PreviewSettings()
        self._httpd: Optional[_BundleServer] = None
        self._thread: Optional[threading.Thread] = None
        self._info: Optional[PreviewInfo] = None
        self._lock = threading.Lock()

    @property
    def info(self) -> Optional[PreviewInfo]:
        return self._info

    @property
    def running(self) -> bool:
        return self._httpd is not None

    def start(self, bundle_dir: Path, verbose: bool = False) -> PreviewInfo:
        bundle_dir = Path(bundle_dir)
        with self._lock:
            self._stop_locked()
            if not bundle_dir.is_dir():
                raise PreviewError(
                    f"{bundle_dir.name}/ directory not found. Build the site first."
                )
            httpd = _bind(bundle_dir.resolve(), self.settings, verbose)
            thread = threading.Thread(target=httpd.serve_forever, daemon=True)
            thread.start()
            port = httpd.server_address[1]
            self._httpd = httpd
            self._thread = thread
            info = PreviewInfo(host=self.settings.host, port=port, bundle_dir=bundle_dir)
            self._info = info
        print(f"[preview] Serving {bundle_dir} at {info.url}")
        return info

    def stop(self) -> bool:
        with self._lock:
            return self._stop_locked()

    def _stop_locked(self) -> bool:
        if self._httpd is None:
            return False
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None
        self._info = None
        return True
