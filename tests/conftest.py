from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import urlparse

import pytest


@dataclass
class FakeLCD:
    """A tiny LCD stand-in: routes map a URL path to (status, JSON body or raw bytes)."""

    base_url: str
    routes: dict[str, tuple[int, Any]] = field(default_factory=dict)
    hits: list[str] = field(default_factory=list)

    def route(self, path: str, body: Any, status: int = 200) -> None:
        self.routes[path] = (status, body)


def _make_handler(lcd: FakeLCD) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args) -> None:  # noqa: A002
            return

        def do_GET(self) -> None:  # noqa: N802
            lcd.hits.append(self.path)
            path = urlparse(self.path).path
            if path not in lcd.routes:
                self.send_error(404)
                return
            status, body = lcd.routes[path]
            raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

    return _Handler


def _start_lcd() -> tuple[FakeLCD, HTTPServer, threading.Thread]:
    lcd = FakeLCD(base_url="")
    httpd = HTTPServer(("127.0.0.1", 0), _make_handler(lcd))
    host, port = httpd.server_address
    lcd.base_url = f"http://{host}:{port}"
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return lcd, httpd, thread


def _stop_lcd(httpd: HTTPServer, thread: threading.Thread) -> None:
    httpd.shutdown()
    thread.join(timeout=5)
    httpd.server_close()


@pytest.fixture
def fake_lcd() -> FakeLCD:
    lcd, httpd, thread = _start_lcd()
    try:
        yield lcd
    finally:
        _stop_lcd(httpd, thread)


@pytest.fixture
def second_lcd() -> FakeLCD:
    lcd, httpd, thread = _start_lcd()
    try:
        yield lcd
    finally:
        _stop_lcd(httpd, thread)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


VALID_CONFIG: dict[str, Any] = {
    "poll_interval": 15,
    "monitors": ["*"],
    "database": {"data_dir": "/tmp/chain-checks-test"},
    "network": {"clients": ["https://lcd-a.example.org:1317", "https://lcd-b.example.org:1317"]},
    "targets": {"email_recipients": ["foo@bar.com"]},
    "filters": {
        "validators": [
            {
                "operator": "cosmosaccaddr1chchjxgackcqkn9fqgpsc4n9xamx4flgndapzg",
                "address": "DBA70FA7E9D55E035AD87B41C4DC0C38511FD09A",
            }
        ]
    },
    "integrations": {"sendgrid": {"api_key": "test-key", "from_name": "Chain Checks"}},
}


@pytest.fixture
def valid_config_data(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    for name in ("SENDGRID_API_KEY", "TELEGRAM_BOT_TOKEN", "CHAIN_CHECKS_DATA_DIR"):
        monkeypatch.delenv(name, raising=False)
    return json.loads(json.dumps(VALID_CONFIG))
