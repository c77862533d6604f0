"""HTTP JSON API exposing the library engine to a desktop or browser shell."""
from __future__ import annotations

import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse

from bookshelf.engine import LibraryEngine, Outcome


class ApiError(ValueError):
    """Raised when API input is invalid."""


def _require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise ApiError(f"{key} is required")
    return value


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = _require(payload, key)
    if not isinstance(value, str):
        raise ApiError(f"{key} must be a string")
    return value


def _optional_text(payload: dict[str, Any], key: str) -> Optional[str]:
    if payload.get(key) in (None, ""):
        return None
    return _require_text(payload, key)


def _require_path(payload: dict[str, Any], key: str) -> Path:
    return Path(_require_text(payload, key))


def _require_mapping(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = _require(payload, key)
    if not isinstance(value, dict):
        raise ApiError(f"{key} must be an object")
    return value


def _require_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ApiError(f"{key} must be a list of strings")
    return value


def build_routes(engine: LibraryEngine) -> dict[str, Callable[[dict[str, Any]], Outcome]]:
    return {
        "/api/save-config": lambda p: engine.save_config(_require_mapping(p, "config")),
        "/api/save-book": lambda p: engine.save_book(
            _require_text(p, "shelfId"),
            _require_text(p, "fileName"),
            _require_mapping(p, "book"),
        ),
        "/api/create-book": lambda p: engine.create_book(
            _require_text(p, "shelfId"), _require_mapping(p, "book")
        ),
        "/api/update-book": lambda p: engine.update_book(
            _require_path(p, "filePath"),
            _require_mapping(p, "book"),
            _optional_text(p, "targetShelfId"),
        ),
        "/api/delete-book": lambda p: engine.delete_book(_require_path(p, "filePath")),
        "/api/delete-books": lambda p: engine.delete_books(
            [Path(value) for value in _require_list(p, "filePaths")]
        ),
        "/api/move-book": lambda p: engine.move_book(
            _require_path(p, "filePath"), _require_text(p, "targetShelfId")
        ),
        "/api/move-books": lambda p: engine.move_books(
            [Path(value) for value in _require_list(p, "filePaths")],
            _require_text(p, "targetShelfId"),
        ),
        "/api/create-shelf": lambda p: engine.create_shelf(_require_mapping(p, "shelf")),
        "/api/update-shelf": lambda p: engine.update_shelf(
            _require_text(p, "shelfId"), _require_text(p, "label")
        ),
        "/api/delete-shelf": lambda p: engine.delete_shelf(_require_text(p, "shelfId")),
        "/api/reorder-shelves": lambda p: engine.reorder_shelves(_require_list(p, "shelfIds")),
        "/api/merge-shelf": lambda p: engine.merge_shelf(
            _require_text(p, "sourceShelfId"), _require_text(p, "targetShelfId")
        ),
        "/api/download-cover": lambda p: engine.download_cover(
            _require_text(p, "url"), _require_text(p, "fileName")
        ),
        "/api/cache-cover": lambda p: engine.cache_book_cover(_require_path(p, "filePath")),
        "/api/delete-cover": lambda p: engine.delete_cover(_require_text(p, "coverPath")),
        "/api/build": lambda p: engine.build(bool(p.get("useSampleData", False))),
        "/api/preview/start": lambda p: engine.start_preview(),
        "/api/preview/stop": lambda p: engine.stop_preview(),
        "/api/load-sample": lambda p: engine.load_sample_data(),
    }


def build_query_routes(
    engine: LibraryEngine,
) -> dict[str, Callable[[dict[str, Any]], Outcome]]:
    return {
        "/api/config": lambda q: engine.get_config(),
        "/api/books": lambda q: engine.get_books(q.get("q", "")),
        "/api/book": lambda q: engine.get_book(_require_path(q, "path")),
        "/api/search": lambda q: engine.search_lookup(_require_text(q, "q")),
        "/api/count": lambda q: engine.count_books(),
    }


def _read_json(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    content_type = handler.headers.get("Content-Type", "")
    if content_type.split(";")[0].strip().lower() != "application/json":
        raise ApiError("Content-Type must be application/json.")
    try:
        length = int(handler.headers.get("Content-Length", "0"))
    except ValueError as exc:
        raise ApiError("Invalid Content-Length.") from exc
    if length <= 0:
        return {}
    raw = handler.rfile.read(length)
    if not raw:
        return {}
    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ApiError("JSON payload must be an object.")
    return payload


def _send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    try:
        handler.wfile.write(body)
    except (BrokenPipeError, ConnectionResetError):
        return


def _parse_query(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    query = parse_qs(urlparse(handler.path).query)
    return {key: values[0] for key, values in query.items() if values}


def _handle_api(handler: "AdminRequestHandler", method: str) -> None:
    engine = handler.server.engine
    path = urlparse(handler.path).path
    try:
        if method == "GET":
            handler_fn = build_query_routes(engine).get(path)
            payload = _parse_query(handler)
        else:
            handler_fn = build_routes(engine).get(path)
            payload = _read_json(handler)
        if handler_fn is None:
            _send_json(handler, {"error": "Unknown endpoint"}, HTTPStatus.NOT_FOUND)
            return
        outcome = handler_fn(payload)
        _send_json(handler, outcome.to_dict(), HTTPStatus.OK)
    except ApiError as exc:
        _send_json(handler, {"error": str(exc)}, HTTPStatus.BAD_REQUEST)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _send_json(handler, {"error": "Invalid JSON payload."}, HTTPStatus.BAD_REQUEST)


class AdminServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], engine: LibraryEngine) -> None:
        self.engine = engine
        super().__init__(address, AdminRequestHandler)


class AdminRequestHandler(BaseHTTPRequestHandler):
    """Serve the engine operations as JSON endpoints."""

    server: AdminServer

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        if not self.path.startswith("/api/"):
            _send_json(self, {"error": "Unsupported endpoint"}, HTTPStatus.NOT_FOUND)
            return
        _handle_api(self, "GET")

    def do_POST(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        if not self.path.startswith("/api/"):
            _send_json(self, {"error": "Unsupported endpoint"}, HTTPStatus.NOT_FOUND)
            return
        _handle_api(self, "POST")

    def log_message(self, format: str, *args) -> None:  # noqa: A002 - signature from base class
        if self.server.engine.verbose:
            print(f"[admin] {self.address_string()} {format % args}")


def run_admin_server(
    engine: LibraryEngine, host: str = "127.0.0.1", port: int = 8070
) -> AdminServer:
    """Run the admin API until interrupted."""
    server = AdminServer((host, port), engine)
    print(f"[admin] API available at http://{host}:{port}/api/")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("[admin] Shutting down.")
    finally:
        server.server_close()
        engine.close()
    return server
