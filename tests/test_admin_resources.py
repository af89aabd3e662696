"""
tests/test_admin_resources.py
"""
from __future__ import annotations

import pytest

from quire.admin import validate_author, validate_category, validate_changelog

CSRF = "test-token"
ENTRY = {
    "id": 4,
    "version": "1.2.0",
    "date": "2025-05-01T00:00:00Z",
    "title": "Tag tools",
    "summary": "Rename, merge, delete",
    "improvements": ["Tag merge"],
    "fixes": [],
    "status": "draft",
}


# ───────────────────────── helpers ──────────────────────────────────
def _csrf(client) -> None:
    with client.session_transaction() as sess:
        sess["csrf"] = CSRF


@pytest.fixture
def cms(backend):
    backend.on("GET", "/api/v1/blog/authors", {"data": [{"id": 1, "name": "Ada", "slug": "ada"}]})
    backend.on("GET", "/api/v1/blog/categories", {"data": [{"id": 2, "name": "Guides", "slug": "guides"}]})
    backend.on("GET", "/api/v1/changelog", {"data": [ENTRY], "pagination": {"totalPages": 1}})
    backend.on("GET", "/api/v1/changelog/4", {"data": ENTRY})
    return backend


# ───────────────────────── validators ───────────────────────────────
@pytest.mark.parametrize(
    "avatar, ok",
    [("", True), ("https://example.com/a.png", True), ("ftp://example.com/a", False), ("nope", False)],
)
def test_author_avatar_must_be_http_url(avatar, ok):
    _, errors = validate_author({"name": "Ada", "avatar": avatar})
    assert ("avatar" not in errors) is ok


def test_author_limits():
    data, errors = validate_author({"name": "x" * 101, "slug": "Bad Slug", "bio": "b" * 501})
    assert set(errors) == {"name", "slug", "bio"}


def test_category_slug_derived_from_name():
    data, errors = validate_category({"name": "How-To Guides"})
    assert errors == {}
    assert data["slug"] == "how-to-guides"


def test_category_description_limit():
    _, errors = validate_category({"name": "ok", "description": "d" * 201})
    assert errors["description"] == "Description must be at most 200 characters"


@pytest.mark.parametrize("version, ok", [("1.0.0", True), ("1,2.0.10", True), ("1.0", False), ("v1.0.0", False)])
def test_changelog_version_format(version, ok):
    _, errors = validate_changelog({
        "version": version, "date": "2025-06-30", "title": "t", "summary": "s",
        "improvements": "one",
    })
    assert ("version" not in errors) is ok


def test_changelog_needs_an_improvement_and_splits_lines():
    data, errors = validate_changelog({"improvements": " \n", "fixes": "a\n\n b \n"})
    assert errors["improvements"] == "At least one improvement is required"
    assert data["fixes"] == ["a", "b"]


# ───────────────────────── authors + categories ─────────────────────
def test_author_list(client, cms):
    resp = client.get("/admin/authors")
    assert resp.status_code == 200
    assert b"Ada" in resp.data
    assert b"/admin/authors/1/edit" in resp.data


def test_create_category(client, cms):
    cms.on("POST", "/api/v1/blog/categories", {"data": {"id": 3}})
    _csrf(client)
    resp = client.post("/admin/categories/new",
                       data={"csrf": CSRF, "name": "Release Notes", "description": ""})
    assert resp.status_code == 302
    (call,) = cms.called("POST", "/api/v1/blog/categories")
    assert call["json"] == {"name": "Release Notes", "slug": "release-notes", "description": ""}


def test_invalid_author_is_not_sent(client, cms):
    _csrf(client)
    resp = client.post("/admin/authors/new", data={"csrf": CSRF, "name": "", "avatar": "x"})
    assert resp.status_code == 400
    assert b"Name is required" in resp.data
    assert b"Invalid URL" in resp.data
    assert cms.called("POST", "/api/v1/blog/authors") == []


def test_edit_author_prefills(client, cms):
    html = client.get("/admin/authors/1/edit").get_data(as_text=True)
    assert 'value="Ada"' in html


def test_unknown_category_is_404(client, cms):
    assert client.get("/admin/categories/99/edit").status_code == 404


def test_delete_author_confirms_first(client, cms):
    cms.on("DELETE", "/api/v1/blog/authors/1", {"message": "ok"})
    assert b"Delete author?" in client.get("/admin/authors/1/delete").data
    assert cms.called("DELETE", "/api/v1/blog/authors/1") == []

    _csrf(client)
    resp = client.post("/admin/authors/1/delete", data={"csrf": CSRF}, follow_redirects=True)
    assert b"Author deleted successfully" in resp.data


def test_delete_author_server_refusal(client, cms):
    cms.on("DELETE", "/api/v1/blog/authors/1", {"error": "Author has posts"}, status=409)
    _csrf(client)
    resp = client.post("/admin/authors/1/delete", data={"csrf": CSRF}, follow_redirects=True)
    assert b"Author has posts" in resp.data


# ───────────────────────── changelog ────────────────────────────────
def test_changelog_list(client, cms):
    html = client.get("/admin/changelog").get_data(as_text=True)
    assert "1.2.0" in html
    assert "Publish" in html


def test_changelog_create(client, cms):
    cms.on("POST", "/api/v1/changelog", {"data": {"id": 5}})
    _csrf(client)
    resp = client.post("/admin/changelog/new", data={
        "csrf": CSRF, "version": "1.3.0", "date": "2025-06-30", "title": "Faster tags",
        "summary": "Quicker", "improvements": "Debounced suggestions\nCase-blind duplicates",
        "fixes": "",
    })
    assert resp.status_code == 302
    payload = cms.called("POST", "/api/v1/changelog")[0]["json"]
    assert payload["improvements"] == ["Debounced suggestions", "Case-blind duplicates"]
    assert payload["fixes"] == []


def test_changelog_edit_prefills_date(client, cms):
    html = client.get("/admin/changelog/4/edit").get_data(as_text=True)
    assert 'value="2025-05-01"' in html
    assert "Tag merge" in html


def test_changelog_status_toggle(client, cms):
    cms.on("PATCH", "/api/v1/changelog/4/status", {"data": {}})
    _csrf(client)
    resp = client.post("/admin/changelog/4/status", data={"csrf": CSRF, "status": "published"})
    assert resp.status_code == 302
    assert cms.called("PATCH", "/api/v1/changelog/4/status")[0]["json"] == {"status": "published"}


def test_changelog_status_rejects_unknown_value(client, cms):
    _csrf(client)
    resp = client.post("/admin/changelog/4/status", data={"csrf": CSRF, "status": "archived"})
    assert resp.status_code == 400


def test_changelog_bulk_delete(client, cms):
    cms.on("DELETE", "/api/v1/changelog/bulk", {"deletedCount": 1})
    _csrf(client)
    resp = client.post("/admin/changelog/bulk-delete", data={"csrf": CSRF, "ids": ["4"]})
    assert b"Delete 1 changelog entry?" in resp.data
    resp = client.post("/admin/changelog/bulk-delete",
                       data={"csrf": CSRF, "ids": ["4"], "confirm": "yes"},
                       follow_redirects=True)
    assert b"Deleted 1 entry" in resp.data
