"""
Thin client for the CMS REST API.

The API is somebody else's service; this module only knows the paths, turns
every failure into :class:`ApiError` and hands back the decoded JSON.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import requests

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
BLOG = f"{API_PREFIX}/blog"
CHANGELOG = f"{API_PREFIX}/changelog"
GENERIC_ERROR = "API request failed"
JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class ApiError(Exception):
    """
    A request did not succeed.

    ``server_message`` is the ``error`` field of the JSON body when the server
    sent one, otherwise ``None`` (transport failure, HTML error page …).
    """

    def __init__(self, server_message: str | None = None, *, status: int | None = None):
        self.server_message = server_message
        self.status = status
        super().__init__(server_message or GENERIC_ERROR)

    @property
    def not_found(self) -> bool:
        return self.status == 404


def _error_text(resp) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"] or None
    return None


################################################################################
# Client
################################################################################
class ApiClient:
    def __init__(self, base_url: str, *, timeout: float = 10, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        self.tags = TagStore(self)
        self.posts = Posts(self, BLOG)
        self.authors = Collection(self, f"{BLOG}/authors")
        self.categories = Collection(self, f"{BLOG}/categories")
        self.changelog = Changelog(self, CHANGELOG)

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict | list | None = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=JSON_HEADERS,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            log.warning("%s %s failed: %s", method, url, exc)
            raise ApiError(None) from exc

        if not resp.ok:
            msg = _error_text(resp)
            log.warning("%s %s → %s %s", method, url, resp.status_code, msg or "")
            raise ApiError(msg, status=resp.status_code)

        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(None, status=resp.status_code) from exc

    def get(self, endpoint: str, **params):
        clean = {k: v for k, v in params.items() if v not in (None, "", [])}
        return self.request("GET", endpoint, params=clean or None)


class Collection:
    """Plain CRUD resource: list / create / update / delete."""

    def __init__(self, client: ApiClient, path: str):
        self.client = client
        self.path = path

    def list(self) -> list[dict]:
        return self.client.get(self.path).get("data", [])

    def find(self, item_id: int) -> dict:
        """The API has no single-item route for these; look it up in the list."""
        for row in self.list():
            if row.get("id") == item_id:
                return row
        raise ApiError("Not found", status=404)

    def create(self, data: dict) -> dict:
        return self.client.request("POST", self.path, json=data)

    def update(self, item_id: int, data: dict) -> dict:
        return self.client.request("PUT", f"{self.path}/{item_id}", json=data)

    def delete(self, item_id: int) -> dict:
        return self.client.request("DELETE", f"{self.path}/{item_id}")


class Posts(Collection):
    def page(
        self,
        *,
        page: int = 1,
        limit: int = 25,
        search: str | None = None,
        category: str | None = None,
        author: str | None = None,
        tags: list[str] | None = None,
    ) -> dict:
        params = [("page", page), ("limit", limit)]
        for key, val in (("search", search), ("category", category), ("author", author)):
            if val:
                params.append((key, val))
        params.extend(("tags", t) for t in tags or [])
        return self.client.request("GET", self.path, params=params)

    def get(self, post_id: int) -> dict:
        return self.client.get(f"{self.path}/id/{post_id}")["data"]

    def bulk_delete(self, ids: list[int]) -> dict:
        return self.client.request("DELETE", f"{self.path}/bulk", json={"ids": ids})

    def stats(self) -> dict:
        return self.client.get(f"{self.path}/stats")["data"]


class Changelog(Collection):
    def page(self, *, page: int = 1, limit: int = 25, search: str | None = None) -> dict:
        return self.client.get(self.path, page=page, limit=limit, search=search)

    def get(self, entry_id: int) -> dict:
        return self.client.get(f"{self.path}/{entry_id}")["data"]

    def bulk_delete(self, ids: list[int]) -> dict:
        return self.client.request("DELETE", f"{self.path}/bulk", json={"ids": ids})

    def set_status(self, entry_id: int, status: str) -> dict:
        return self.client.request(
            "PATCH", f"{self.path}/{entry_id}/status", json={"status": status}
        )

    def stats(self) -> dict:
        return self.client.get(f"{self.path}/stats")["data"]


################################################################################
# Tag store
################################################################################
class TagStore:
    """Tag endpoints: list, suggestions and the three bulk operations."""

    path = f"{BLOG}/tags"

    def __init__(self, client: ApiClient):
        self.client = client

    def list(self) -> list[dict]:
        """``[{name, count}]``, most used first."""
        rows = self.client.get(self.path).get("data", [])
        return sorted(rows, key=lambda r: -int(r.get("count") or 0))

    def suggest(self, query: str, limit: int | None = None) -> list[str]:
        return self.client.get(f"{self.path}/suggestions", q=query, limit=limit).get(
            "data", []
        )

    def suggester(self, limit: int | None = 10):
        """Async suggestion function for :class:`quire.tags.TagInput`."""

        async def fetch(query: str) -> list[str]:
            return await asyncio.to_thread(self.suggest, query, limit)

        return fetch

    def rename(self, old: str, new: str) -> dict:
        return self.client.request(
            "POST", f"{self.path}/rename", json={"from": old, "to": new}
        )

    def merge(self, sources: list[str], into: str) -> dict:
        return self.client.request(
            "POST", f"{self.path}/merge", json={"tags": list(sources), "into": into}
        )

    def delete(self, slug: str) -> dict:
        return self.client.request("DELETE", f"{self.path}/{slug}")
