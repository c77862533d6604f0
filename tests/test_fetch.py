import socket
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

from bookshelf import fetch
from bookshelf.fetch import FetchError, FetchSettings, fetch_bytes


def _response(body: bytes, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.status = status
    response.read.return_value = body
    return response


def _redirect(url: str, location: str, code: int = 301) -> HTTPError:
    return HTTPError(url, code, "Moved", {"Location": location}, None)


def _always_redirect(url: str, settings: FetchSettings) -> None:
    raise _redirect(url, "https://a.test/loop", code=302)


class TestFetch(unittest.TestCase):
    def test_follows_redirect_without_using_retries(self) -> None:
        settings = FetchSettings(retries=0)
        with patch(
            "bookshelf.fetch._open",
            side_effect=[_redirect("https://a.test/c.jpg", "/real.jpg"), _response(b"img")],
        ) as mocked_open:
            body = fetch_bytes("https://a.test/c.jpg", settings=settings)

        self.assertEqual(body, b"img")
        self.assertEqual(mocked_open.call_args_list[1][0][0], "https://a.test/real.jpg")

    def test_gives_up_after_redirect_limit(self) -> None:
        settings = FetchSettings(max_redirects=2)
        with patch(
            "bookshelf.fetch._open",
            side_effect=_always_redirect,
        ) as mocked_open:
            with self.assertRaises(FetchError) as context:
                fetch_bytes("https://a.test/start", settings=settings)

        self.assertEqual(mocked_open.call_count, 3)
        self.assertIn("Too many redirects", str(context.exception))

    def test_retries_timeouts_with_fixed_backoff(self) -> None:
        with patch("bookshelf.fetch._open", side_effect=TimeoutError("timed out")) as mocked_open:
            with patch("bookshelf.fetch.time.sleep") as mocked_sleep:
                with self.assertRaises(FetchError):
                    fetch_bytes("https://a.test/c.jpg")

        self.assertEqual(mocked_open.call_count, 4)
        self.assertEqual(mocked_sleep.call_count, 3)
        mocked_sleep.assert_called_with(1.0)

    def test_recovers_after_transient_failure(self) -> None:
        with patch(
            "bookshelf.fetch._open",
            side_effect=[URLError("connection refused"), _response(b"ok")],
        ):
            with patch("bookshelf.fetch.time.sleep"):
                body = fetch_bytes("https://a.test/c.jpg")

        self.assertEqual(body, b"ok")

    def test_http_error_is_terminal(self) -> None:
        error = HTTPError("https://a.test/c.jpg", 404, "Not Found", {}, None)
        with patch("bookshelf.fetch._open", side_effect=error) as mocked_open:
            with self.assertRaises(FetchError) as context:
                fetch_bytes("https://a.test/c.jpg")

        self.assertEqual(mocked_open.call_count, 1)
        self.assertIn("HTTP 404", str(context.exception))

    def test_non_success_status_is_terminal(self) -> None:
        with patch("bookshelf.fetch._open", return_value=_response(b"", status=500)):
            with self.assertRaises(FetchError):
                fetch_bytes("https://a.test/c.jpg")

    def test_missing_status_is_a_failure(self) -> None:
        with patch("bookshelf.fetch._open", return_value=_response(b"x", status=None)):
            with self.assertRaises(FetchError):
                fetch_bytes("https://a.test/c.jpg")

    def test_refuses_redirect_to_local_file(self) -> None:
        redirect = _redirect("https://a.test/c.jpg", "file:///etc/hostname", code=302)
        with patch("bookshelf.fetch._open", side_effect=[redirect]) as mocked_open:
            with self.assertRaises(FetchError) as context:
                fetch_bytes("https://a.test/c.jpg")

        self.assertEqual(mocked_open.call_count, 1)
        self.assertIn("non-http(s)", str(context.exception))

    def test_socket_timeout_is_retried(self) -> None:
        with patch(
            "bookshelf.fetch._open", side_effect=socket.timeout("timed out")
        ) as mocked_open:
            with patch("bookshelf.fetch.time.sleep"):
                with self.assertRaises(FetchError):
                    fetch_bytes("https://a.test/c.jpg")

        self.assertEqual(mocked_open.call_count, 4)

    def test_opener_only_handles_http(self) -> None:
        with TemporaryDirectory() as tmpdir:
            local = Path(tmpdir) / "secret.txt"
            local.write_text("secret", encoding="utf-8")

            with self.assertRaises(URLError):
                fetch._OPENER.open(local.as_uri())


if __name__ == "__main__":
    unittest.main()
