"""
Bulk tag operations (rename / merge / delete) and the modal that runs them.

Each operation checks itself before anything goes over the wire; the
:class:`TagTab` runner owns the Idle → Validating → Submitting → Succeeded /
Failed cycle for one tab of the modal.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

from .api import ApiError, TagStore
from .tags import TagValidationError, tag_slug

log = logging.getLogger(__name__)

TABS = ("rename", "merge", "delete")


################################################################################
# Pending operations
################################################################################
@dataclass
class Rename:
    old: str
    new: str

    fallback = "Failed to rename tag"

    def validate(self) -> None:
        if not self.old or not self.new:
            raise TagValidationError("Both fields are required")
        if self.old == self.new:
            raise TagValidationError("New name must be different from the old name")

    def execute(self, store: TagStore) -> dict:
        return store.rename(self.old, self.new)

    def describe(self) -> str:
        return f"Renamed “{self.old}” to “{self.new}”"


@dataclass
class Merge:
    sources: list[str] = field(default_factory=list)
    into: str = ""

    fallback = "Failed to merge tags"

    def validate(self) -> None:
        if not self.sources or not self.into:
            raise TagValidationError("Select tags to merge and specify the target tag")
        if self.into in self.sources:
            raise TagValidationError("Cannot merge a tag into itself")

    def execute(self, store: TagStore) -> dict:
        return store.merge(self.sources, self.into)

    def describe(self) -> str:
        return f"Merged {', '.join(self.sources)} into “{self.into}”"


@dataclass
class Delete:
    tag: str
    confirm: str = ""

    fallback = "Failed to delete tag"

    def validate(self) -> None:
        if not self.tag:
            raise TagValidationError("Select a tag to delete")
        if self.confirm != self.tag:
            raise TagValidationError(f'Type "{self.tag}" to confirm deletion')

    @property
    def slug(self) -> str:
        return tag_slug(self.tag)

    def execute(self, store: TagStore) -> dict:
        return store.delete(self.slug)

    def describe(self) -> str:
        return f"Deleted “{self.tag}”"


################################################################################
# Modal state machine
################################################################################
class State(enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OperationInFlight(RuntimeError):
    """Submit pressed again while the previous request is still running."""


def toast_text(op, result: dict) -> str:
    """Success notice: server message (or our own) plus the affected count."""
    msg = (result or {}).get("message") or op.describe()
    affected = (result or {}).get("affected")
    if affected is None:
        return msg
    noun = "post" if affected == 1 else "posts"
    return f"{msg} ({affected} {noun} affected)"


class TagTab:
    """
    One tab of the tag management modal.

    ``submit`` never raises for validation or API problems; it leaves the
    outcome in ``state`` / ``error`` / ``toast`` for the view to render.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = State.IDLE
        self.outcome: State | None = None
        self.error: str | None = None
        self.toast: str | None = None
        self.closed = False
        self.pending = None

    @property
    def busy(self) -> bool:
        return self.state is State.SUBMITTING

    def submit(
        self,
        op,
        store: TagStore,
        *,
        on_success: Callable[[dict], None] | None = None,
    ) -> dict | None:
        if self.busy:
            raise OperationInFlight(self.name)

        self.state = State.VALIDATING
        self.error = None
        self.outcome = None
        try:
            op.validate()
        except TagValidationError as exc:
            self.state = State.IDLE
            self.error = str(exc)
            return None

        self.state = State.SUBMITTING
        self.pending = op
        try:
            result = op.execute(store)
        except ApiError as exc:
            log.warning("%s failed: %s", type(op).__name__, exc)
            self.outcome = State.FAILED
            self.error = exc.server_message or op.fallback
            self.state = State.IDLE
            return None
        finally:
            self.pending = None

        self.state = self.outcome = State.SUCCEEDED
        self.toast = toast_text(op, result)
        self.closed = True
        if on_success:
            on_success(result)
        return result


class TagModal:
    """Three independent tabs plus the tag the modal was opened for."""

    def __init__(self, selected: str | None = None, *, active: str = "rename"):
        self.selected = selected or ""
        self.active = active if active in TABS else "rename"
        self.tabs = {name: TagTab(name) for name in TABS}

    @property
    def tab(self) -> TagTab:
        return self.tabs[self.active]

    def defaults(self) -> dict:
        """Initial field values when the modal opens for ``selected``."""
        return {
            "from": self.selected,
            "to": "",
            "sources": [self.selected] if self.selected else [],
            "into": "",
            "tag": self.selected,
            "confirm": "",
        }
