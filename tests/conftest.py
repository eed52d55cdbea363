"""Shared fixtures: a local stand-in for the reaper service."""

import json
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from argdecrypt.config import (
    AUTH_TOKEN_ENV,
    CLOUD_RUNNER_ENV,
    EXECUTOR_ID_ENV,
    REAPER_URL_ENV,
    SETTINGS_FILE_ENV,
)
from argdecrypt.decryptor import ReaperDecryptor


def _localhost_bind_available() -> bool:
    try:
        s = socket.socket()
        s.bind(("127.0.0.1", 0))
        s.close()
        return True
    except OSError:
        return False


class FakeReaper:
    """
    Records every request and answers from a queue of canned responses.

    When the queue runs dry the last response is repeated.
    """

    def __init__(self):
        self.requests = []
        self.responses = []
        self.server = None

    @property
    def url(self):
        return f"http://127.0.0.1:{self.server.server_port}"

    def respond(self, status=200, body=None, headers=None, byte_delay=0.0):
        """Queue a response; byte_delay trickles the body out one byte at a time."""
        if body is not None and not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        self.responses.append((status, body or "", headers or {}, byte_delay))

    def respond_with_arguments(self, arguments):
        self.respond(200, {"data": {"arguments": arguments}})

    def next_response(self):
        if len(self.responses) > 1:
            return self.responses.pop(0)
        if self.responses:
            return self.responses[0]
        return 500, "no response configured", {}, 0.0


def _make_handler(reaper):
    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):  # noqa: N802 - http.server uses do_* naming
            length = int(self.headers.get("Content-Length", "0") or "0")
            raw = self.rfile.read(length).decode("utf-8")
            reaper.requests.append({
                "path": self.path,
                "headers": dict(self.headers),
                "body": json.loads(raw) if raw else None,
            })

            status, body, headers, byte_delay = reaper.next_response()
            if isinstance(body, str):
                body = body.encode("utf-8")

            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            for name, value in headers.items():
                self.send_header(name, value)
            self.end_headers()

            if not byte_delay:
                self.wfile.write(body)
                return

            try:
                for i in range(len(body)):
                    self.wfile.write(body[i:i + 1])
                    self.wfile.flush()
                    time.sleep(byte_delay)
            except (BrokenPipeError, ConnectionResetError):
                return

        def log_message(self, _format, *_args):
            return

    return Handler


@pytest.fixture
def reaper():
    """A running FakeReaper bound to a free localhost port."""
    if not _localhost_bind_available():
        pytest.skip("localhost socket bind is not permitted in this environment")

    fake = FakeReaper()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(fake))
    fake.server = server
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield fake
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def no_sleep(monkeypatch):
    """Patch out retry waits, recording what would have been slept."""
    slept = []
    monkeypatch.setattr(ReaperDecryptor, "_sleep", staticmethod(slept.append))
    return slept


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove all decryptor configuration from the environment."""
    for name in (CLOUD_RUNNER_ENV, REAPER_URL_ENV, AUTH_TOKEN_ENV, EXECUTOR_ID_ENV):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv(SETTINGS_FILE_ENV, str(tmp_path / "missing.yaml"))
    return monkeypatch
