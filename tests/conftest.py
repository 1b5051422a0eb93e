"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from probewatch.health.models import ErrorKind, Failure, Observation, Success
from probewatch.health.store import ResultStore
from probewatch.registry import CheckKind


@pytest.fixture
def store(tmp_path: Path) -> ResultStore:
    s = ResultStore(tmp_path / "checks.db")
    yield s
    s.close()


class _TrickleHandler(BaseHTTPRequestHandler):
    """Answers one byte every 0.1s: ``/slow-body`` after the headers, anything else mid-headers."""

    def do_GET(self) -> None:
        try:
            if self.path == "/slow-body":
                self.send_response(200)
                self.send_header("Content-Length", "100000")
                self.end_headers()
                chunk = b"x"
            else:
                self.wfile.write(b"HTTP/1.1 200 OK\r\n")
                chunk = b"X-Pad: 1\r\n"
            for _ in range(100):
                self.wfile.write(chunk)
                self.wfile.flush()
                time.sleep(0.1)
        except OSError:
            # client hung up
            return

    def log_message(self, format: str, *args) -> None:
        pass


@pytest.fixture
def trickle_url() -> str:
    """Base URL of a local server that never finishes a response."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TrickleHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def ok(name: str, ts: float, ms: int, kind: CheckKind = CheckKind.HTTP, code: int | None = 200) -> Observation:
    """A successful observation."""
    return Observation(
        check_name=name, kind=kind, timestamp=ts,
        outcome=Success(latency_ms=ms, code=code if kind is CheckKind.HTTP else None),
    )


def err(name: str, ts: float, kind: CheckKind = CheckKind.PING,
        error_kind: ErrorKind = ErrorKind.TIMEOUT, detail: str = "no reply") -> Observation:
    """A failed observation."""
    return Observation(
        check_name=name, kind=kind, timestamp=ts,
        outcome=Failure(error_kind=error_kind, error_detail=detail),
    )
