"""
tests/test_suggestions.py
"""
from __future__ import annotations

import asyncio

from quire.api import ApiClient
from quire.tags import TagInput


# ───────────────────────── helpers ──────────────────────────────────
class _Recorder:
    """Async suggestion source that remembers every query."""

    def __init__(self, results: list[str] | None = None, *, fail: bool = False):
        self.queries: list[str] = []
        self.results = results or []
        self.fail = fail

    async def __call__(self, query: str) -> list[str]:
        self.queries.append(query)
        if self.fail:
            raise RuntimeError("network down")
        return [r for r in self.results if query.lower() in r.lower()]


# ───────────────────────── tests ────────────────────────────────────
def test_short_query_never_fetches():
    async def run():
        source = _Recorder(["alpha"])
        inp = TagInput(get_suggestions=source, debounce=0)
        inp.type("a")
        await inp.settle()
        return source, inp

    source, inp = asyncio.run(run())
    assert source.queries == []
    assert inp.suggestions == []
    assert not inp.show_suggestions


def test_debounce_only_sends_the_last_keystroke():
    async def run():
        source = _Recorder(["api", "apis", "rapid"])
        inp = TagInput(get_suggestions=source, debounce=0.05)
        for text in ("ap", "api", "apis"):
            inp.type(text)
            await asyncio.sleep(0)
        await inp.settle()
        return source, inp

    source, inp = asyncio.run(run())
    assert source.queries == ["apis"]
    assert inp.suggestions == ["apis"]
    assert inp.show_suggestions


def test_existing_tags_are_filtered_out_of_suggestions():
    async def run():
        source = _Recorder(["Docs", "docker", "documentation"])
        inp = TagInput(["docs"], get_suggestions=source, debounce=0)
        inp.type("do")
        await inp.settle()
        return inp

    inp = asyncio.run(run())
    assert inp.suggestions == ["docker", "documentation"]


def test_stale_response_is_discarded():
    inp = TagInput()
    inp.type("ap")
    stale = inp._seq
    inp.type("apx")
    assert not inp.apply_suggestions(stale, ["api"])
    assert inp.suggestions == []
    assert inp.apply_suggestions(inp._seq, ["apx-tools"])
    assert inp.suggestions == ["apx-tools"]


def test_committing_a_tag_invalidates_pending_request():
    inp = TagInput()
    inp.type("py")
    pending = inp._seq
    inp.key("Enter")
    assert inp.tags == ["py"]
    assert not inp.apply_suggestions(pending, ["python"])
    assert not inp.show_suggestions


def test_fetch_failure_yields_empty_list(caplog):
    async def run():
        inp = TagInput(get_suggestions=_Recorder(fail=True), debounce=0)
        inp.type("err")
        await inp.settle()
        return inp

    inp = asyncio.run(run())
    assert inp.suggestions == []
    assert not inp.show_suggestions
    assert "Error fetching tag suggestions" in caplog.text


def test_tag_store_suggester_goes_through_the_api(backend):
    backend.on("GET", "/api/v1/blog/tags/suggestions", {"data": ["python", "pytest"]})
    fetch = ApiClient("http://cms.test", session=backend).tags.suggester(limit=5)

    async def run():
        inp = TagInput(get_suggestions=fetch, debounce=0)
        inp.type("py")
        await inp.settle()
        return inp

    inp = asyncio.run(run())
    assert inp.suggestions == ["python", "pytest"]
    (call,) = backend.calls
    assert call["params"] == {"q": "py", "limit": 5}


def test_rejected_comma_head_drops_pending_suggestions():
    async def run():
        source = _Recorder(["ab!-suggestion"])
        inp = TagInput(get_suggestions=source, debounce=0.05)
        inp.type("ab!")
        await asyncio.sleep(0)
        inp.type("ab!,")
        await inp.settle()
        await asyncio.sleep(0.1)
        return source, inp

    source, inp = asyncio.run(run())
    assert source.queries == []
    assert inp.suggestions == []
    assert not inp.show_suggestions
    assert inp.text == "ab!,"
    assert inp.error == "Tag can only contain letters, numbers, spaces, and hyphens"
