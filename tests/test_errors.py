"""
tests/test_errors.py
"""
from __future__ import annotations

from quire.admin import app


def test_404_custom_page(client):
    resp = client.get("/this/route/does/not/exist")
    assert resp.status_code == 404
    assert b"Page not found" in resp.data
    # site name appears in the sidebar
    assert b"Quire" in resp.data


def test_unhandled_api_error_renders_502(client, backend):
    """
    A post that exists but cannot be loaded (server error) falls through to
    the API error page rather than a traceback.
    """
    backend.on("GET", "/api/v1/blog/id/5", {"error": "Database is locked"}, status=500)
    resp = client.get("/admin/blog/5/edit")
    assert resp.status_code == 502
    assert b"Database is locked" in resp.data


def test_500_handler_renders_friendly_page(client, monkeypatch):
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "dashboard", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/admin")
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data
