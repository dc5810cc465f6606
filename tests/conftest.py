"""Shared test fixtures for the fetch layer test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
import stem
import stem.connection

from anonfetch.config.settings import FetchSettings
from anonfetch.cookies.jar import CookieJarStore
from anonfetch.fetch.client import FetchClient
from anonfetch.identity.control import ControlSession
from anonfetch.resilience.quality import QualityTracker
from anonfetch.resilience.rate_limiter import Throttler


# ---------------------------------------------------------------------------
# Keep the developer's environment out of FetchSettings
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("ANONFETCH_"):
            monkeypatch.delenv(key)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path: Path) -> FetchSettings:
    """Test settings with safe defaults."""
    return FetchSettings(
        downloader_name="test",
        cookie_dir=str(tmp_path / "cookies"),
        throttle_rules_path=str(tmp_path / "missing-throttle.yaml"),
        proxy_host="127.0.0.1",
        proxy_port=9050,
        control_host="127.0.0.1",
        control_port=9051,
        control_password="hunter2",
        rotation_min_interval_seconds=0,
        http2=False,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cookie_jar(tmp_path: Path) -> CookieJarStore:
    return CookieJarStore(tmp_path / "cookies" / "test.txt")


@pytest.fixture
def throttler() -> Throttler:
    return Throttler()


@pytest.fixture
def quality() -> QualityTracker:
    return QualityTracker()


@pytest.fixture
def make_client(
    cookie_jar: CookieJarStore, throttler: Throttler, quality: QualityTracker
) -> Callable[..., FetchClient]:
    """Build a FetchClient whose transfers are answered by *handler*."""

    def factory(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> FetchClient:
        kwargs.setdefault("cookie_jar", cookie_jar)
        kwargs.setdefault("throttler", throttler)
        kwargs.setdefault("quality", quality)
        return FetchClient("test", transport=httpx.MockTransport(handler), **kwargs)

    return factory


# ---------------------------------------------------------------------------
# Fake control endpoint
# ---------------------------------------------------------------------------

class FakeController:
    """Stands in for ``stem.control.Controller`` and records wire commands."""

    def __init__(self, endpoint: FakeTorControl) -> None:
        self.endpoint = endpoint
        self.closed = False

    def _send(self, line: str) -> None:
        self.endpoint.commands.append(line)
        for prefix, error in self.endpoint.failures.items():
            if line.startswith(prefix):
                raise error

    def authenticate(self, password: str | None = None) -> None:
        self._send("AUTHENTICATE")
        if password != self.endpoint.password:
            raise stem.connection.IncorrectPassword(
                "Authentication failed: Password did not match HashedControlPassword value"
            )

    def signal(self, signal: str) -> None:
        self._send(f"SIGNAL {signal}")

    def set_conf(self, param: str, value: str) -> None:
        self._send(f"SETCONF {param}={value}")

    def get_info(self, key: str) -> str:
        self._send(f"GETINFO {key}")
        return self.endpoint.info.get(key, "")

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.endpoint.commands.append("QUIT")


class FakeTorControl:
    """Control endpoint double: hands out FakeControllers sharing one log."""

    def __init__(self, password: str | None = "hunter2") -> None:
        self.password = password
        self.commands: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.info: dict[str, str] = {}
        self.connections: list[tuple[str, int]] = []
        self.refuse = False

    def __call__(self, host: str, port: int) -> FakeController:
        self.connections.append((host, port))
        if self.refuse:
            raise stem.SocketError(f"[Errno 111] Connection refused ({host}:{port})")
        return FakeController(self)

    def session(self, password: str = "hunter2", **kwargs) -> ControlSession:
        return ControlSession("127.0.0.1", 9051, password, controller_factory=self, **kwargs)


@pytest.fixture
def tor_control() -> FakeTorControl:
    return FakeTorControl()
