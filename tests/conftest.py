from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        routes: dict[str, tuple[int, dict[str, str], str]] = {
            "/ok": (
                200,
                {"Content-Type": "text/html; charset=utf-8"},
                (
                    "<!doctype html><html><head><title>OK Page</title></head>"
                    "<body><nav>nav</nav><h1>Everything is fine</h1></body></html>"
                ),
            ),
            "/bad_gateway": (
                502,
                {"Content-Type": "text/plain; charset=utf-8"},
                "Bad Gateway",
            ),
        }

        if self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if self.path == "/trickle":
            self._trickle()
            return

        if self.path == "/slow":
            time.sleep(2.0)

        if self.path == "/delay":
            time.sleep(1.0)
            self.path = "/ok"

        status, headers, body = routes.get(
            self.path,
            (404, {"Content-Type": "text/plain; charset=utf-8"}, "Not Found"),
        )
        body_bytes = body.encode("utf-8")
        try:
            self.send_response(status)
            for k, v in headers.items():
                self.send_header(k, v)
            self.send_header("Content-Length", str(len(body_bytes)))
            self.end_headers()
            self.wfile.write(body_bytes)
        except (BrokenPipeError, ConnectionResetError):
            # Client gave up (timeout tests).
            return

    def _trickle(self) -> None:
        # Headers at once, then one body byte every 0.3s.
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", "8")
            self.end_headers()
            self.wfile.flush()
            for _ in range(8):
                time.sleep(0.3)
                self.wfile.write(b"x")
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            return


class _Server(ThreadingHTTPServer):
    daemon_threads = True
    # Room for a few hundred connections arriving at once.
    request_queue_size = 256


@pytest.fixture(scope="session")
def local_server_base_url() -> str:
    httpd = _Server(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()
