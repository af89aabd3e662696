"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
from typing import Any, Callable, Generator
from urllib.parse import urlparse

import pytest
import requests
from flask.testing import FlaskClient

from quire.admin import app


# ───────────────────────── fake CMS backend ─────────────────────────
class FakeResponse:
    """Just enough of ``requests.Response`` for :mod:`quire.api`."""

    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        self._body = body

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeBackend:
    """
    Stand-in for ``requests.Session``.  Routes are keyed on
    ``(METHOD, path)``; anything unknown answers 404 ``{error: Not found}``.
    Every call is recorded in ``calls``.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[dict] = []

    def on(self, method: str, path: str, body: Any = None, *, status: int = 200):
        self.routes[(method.upper(), path)] = FakeResponse(status, body)
        return self

    def fail(self, method: str, path: str, exc: Exception | None = None):
        self.routes[(method.upper(), path)] = exc or requests.ConnectionError("down")
        return self

    def handle(self, method: str, path: str, fn: Callable[..., FakeResponse]):
        self.routes[(method.upper(), path)] = fn
        return self

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = urlparse(url).path
        self.calls.append(
            {"method": method, "path": path, "params": params, "json": json,
             "headers": headers, "timeout": timeout}
        )
        route = self.routes.get((method.upper(), path))
        if route is None:
            return FakeResponse(404, {"error": "Not found"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(params=params, json=json)
        return route

    def called(self, method: str, path: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


# ───────────────────────── fixtures ─────────────────────────────────
@pytest.fixture(scope="session", autouse=True)
def _configure_app() -> None:
    app.config.update(
        TESTING=True,
        API_URL="http://cms.test",
        SITE_NAME="Quire",
        PAGE_SIZE=25,
    )


@pytest.fixture
def backend(monkeypatch) -> FakeBackend:
    fake = FakeBackend()
    monkeypatch.setitem(app.config, "API_SESSION", fake)
    return fake


@pytest.fixture
def client(backend) -> Generator[FlaskClient, None, None]:
    """
    Test client wired to a fresh :class:`FakeBackend`.

    Every request gets its own app context, so ``g.api`` never leaks
    between tests.
    """
    with app.test_client() as client:
        yield client


@pytest.fixture(autouse=True)
def _frozen_today(monkeypatch):
    from quire import admin

    fixed = _dt.datetime(2025, 6, 30, 12, 0, tzinfo=_dt.timezone.utc)
    monkeypatch.setattr(admin, "utc_now", lambda: fixed)

