"""
Shared fixtures: a throwaway HTTP origin the relay can talk to.
"""

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class _OriginHandler(BaseHTTPRequestHandler):
    """Canned routes used by the relay and web tests."""

    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass

    def _send(self, status, body=b"", content_type="text/plain", extra=None):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        for k, v in extra or []:
            self.send_header(k, v)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _handle(self):
        length = int(self.headers.get("Content-Length", 0) or 0)
        body = self.rfile.read(length) if length else b""
        self.server.received.append({
            "method": self.command,
            "path": self.path,
            "headers": dict(self.headers),
            "body": body,
        })
        route = self.path.split("?")[0]

        if route == "/json":
            self._send(200, b'{"ok":true}', "application/json")
        elif route == "/text":
            self._send(200, b"hello", "text/plain")
        elif route == "/latin1":
            self._send(200, "café".encode("latin-1"), "text/plain; charset=iso-8859-1")
        elif route == "/missing":
            self._send(404, b'{"error":"missing"}', "application/json; charset=utf-8")
        elif route == "/bad-json":
            self._send(200, b"not json at all", "application/json")
        elif route == "/cookies":
            self._send(200, b"ok", "text/plain", extra=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")])
        elif route == "/echo":
            payload = {
                "method": self.command,
                "path": self.path,
                "body": body.decode("utf-8", errors="replace"),
            }
            self._send(200, json.dumps(payload).encode(), "application/json")
        elif route == "/large":
            self._send(200, b"x" * 200_000, "text/plain")
        elif route == "/stall":
            time.sleep(1.5)
            self._send(200, b"late", "text/plain")
        elif route == "/slow":
            self._send_trickle()
        else:
            self._send(404, b"no route", "text/plain")

    def _send_trickle(self, chunks=40, delay=0.1):
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Transfer-Encoding", "chunked")
        self.send_header("Connection", "close")
        self.end_headers()
        try:
            for _ in range(chunks):
                self.wfile.write(b"5\r\nchunk\r\n")
                self.wfile.flush()
                time.sleep(delay)
            self.wfile.write(b"0\r\n\r\n")
        except (BrokenPipeError, ConnectionResetError):
            pass

    do_GET = _handle
    do_POST = _handle
    do_PUT = _handle
    do_PATCH = _handle
    do_DELETE = _handle
    do_HEAD = _handle
    do_OPTIONS = _handle


class Origin:
    def __init__(self, server):
        self.server = server

    @property
    def base(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def url(self, path: str) -> str:
        return f"{self.base}{path}"

    @property
    def received(self):
        return self.server.received

    @property
    def last(self):
        return self.server.received[-1]


@pytest.fixture(scope="session")
def origin():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _OriginHandler)
    server.daemon_threads = True
    server.received = []
    thread = threading.Thread(target=server.serve_forever, daemon=True, name="test-origin")
    thread.start()
    yield Origin(server)
    server.shutdown()
    server.server_close()


@pytest.fixture
def unreachable_url():
    # Port 1 on loopback: nothing listens there, connection is refused
    return "http://127.0.0.1:1/"
