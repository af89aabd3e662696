"""
tests/test_lifecycle.py
"""
from __future__ import annotations

import pytest

from quire.api import ApiError
from quire.lifecycle import (
    Delete,
    Merge,
    OperationInFlight,
    Rename,
    State,
    TagModal,
    TagTab,
    toast_text,
)


# ───────────────────────── helpers ──────────────────────────────────
class _Store:
    """Records calls; optionally fails with *error*."""

    def __init__(self, result=None, error: ApiError | None = None):
        self.calls: list[tuple] = []
        self.result = result if result is not None else {"message": "ok", "affected": 2}
        self.error = error

    def _do(self, *call):
        self.calls.append(call)
        if self.error:
            raise self.error
        return self.result

    def rename(self, old, new):
        return self._do("rename", old, new)

    def merge(self, sources, into):
        return self._do("merge", list(sources), into)

    def delete(self, slug):
        return self._do("delete", slug)


# ───────────────────────── validation (no network) ──────────────────
def test_rename_to_same_name_is_rejected():
    store = _Store()
    tab = TagTab("rename")
    assert tab.submit(Rename("javascript", "javascript"), store) is None
    assert tab.error == "New name must be different from the old name"
    assert tab.state is State.IDLE
    assert store.calls == []


def test_rename_needs_both_fields():
    tab = TagTab("rename")
    tab.submit(Rename("", "new"), _Store())
    assert tab.error == "Both fields are required"


def test_merge_into_a_source_is_rejected():
    store = _Store()
    tab = TagTab("merge")
    tab.submit(Merge(["js", "javascript"], "js"), store)
    assert tab.error == "Cannot merge a tag into itself"
    assert store.calls == []


def test_merge_needs_sources_and_target():
    tab = TagTab("merge")
    tab.submit(Merge([], "js"), _Store())
    assert tab.error == "Select tags to merge and specify the target tag"


def test_delete_confirmation_is_case_sensitive():
    store = _Store()
    tab = TagTab("delete")
    tab.submit(Delete("beta", "Beta"), store)
    assert tab.error == 'Type "beta" to confirm deletion'
    assert store.calls == []

    tab.submit(Delete("beta", "beta"), store)
    assert tab.error is None
    assert store.calls == [("delete", "beta")]


def test_delete_uses_slug():
    store = _Store()
    TagTab("delete").submit(Delete("Feature Request", "Feature Request"), store)
    assert store.calls == [("delete", "feature-request")]


# ───────────────────────── success + failure ────────────────────────
def test_success_closes_tab_and_calls_refresh_hook():
    store = _Store({"message": "Tag renamed", "affected": 3})
    refreshed = []
    tab = TagTab("rename")
    result = tab.submit(Rename("js", "javascript"), store, on_success=refreshed.append)

    assert result == {"message": "Tag renamed", "affected": 3}
    assert refreshed == [result]
    assert tab.state is State.SUCCEEDED
    assert tab.outcome is State.SUCCEEDED
    assert tab.closed
    assert tab.toast == "Tag renamed (3 posts affected)"


def test_server_message_is_surfaced():
    store = _Store(error=ApiError("Tag not found", status=404))
    refreshed = []
    tab = TagTab("rename")
    tab.submit(Rename("nope", "yes"), store, on_success=refreshed.append)

    assert tab.error == "Tag not found"
    assert tab.outcome is State.FAILED
    assert tab.state is State.IDLE
    assert not tab.closed
    assert refreshed == []


@pytest.mark.parametrize(
    "op, fallback",
    [
        (Rename("a1", "b1"), "Failed to rename tag"),
        (Merge(["a1"], "b1"), "Failed to merge tags"),
        (Delete("a1", "a1"), "Failed to delete tag"),
    ],
)
def test_fallback_message_when_server_says_nothing(op, fallback):
    tab = TagTab("x")
    tab.submit(op, _Store(error=ApiError(None, status=500)))
    assert tab.error == fallback


def test_retry_after_failure_clears_error():
    store = _Store(error=ApiError("boom"))
    tab = TagTab("rename")
    tab.submit(Rename("a1", "b1"), store)
    store.error = None
    tab.submit(Rename("a1", "b1"), store)
    assert tab.error is None
    assert tab.closed


def test_only_one_submission_in_flight():
    tab = TagTab("rename")
    tab.state = State.SUBMITTING
    with pytest.raises(OperationInFlight):
        tab.submit(Rename("a1", "b1"), _Store())


def test_toast_text():
    assert toast_text(Rename("a", "b"), {"affected": 1}) == "Renamed “a” to “b” (1 post affected)"
    assert toast_text(Merge(["a", "b"], "c"), {}) == "Merged a, b into “c”"


# ───────────────────────── modal ────────────────────────────────────
def test_modal_prefills_every_tab_from_selected_tag():
    modal = TagModal("python", active="merge")
    assert modal.tab.name == "merge"
    assert modal.defaults() == {
        "from": "python", "to": "", "sources": ["python"],
        "into": "", "tag": "python", "confirm": "",
    }


def test_modal_tabs_are_independent():
    modal = TagModal(active="bogus")
    assert modal.active == "rename"
    modal.tabs["rename"].submit(Rename("x1", "x1"), _Store())
    assert modal.tabs["rename"].error
    assert modal.tabs["delete"].error is None
