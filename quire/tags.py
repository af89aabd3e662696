"""
Tag helpers + the autocomplete tag input.

Everything that decides whether a string may become a tag lives here, so the
post form, the lifecycle operations and the CLI all agree on the rules.
"""

import asyncio
import logging
import math
import re
from typing import Awaitable, Callable, Iterable

log = logging.getLogger(__name__)

################################################################################
# Constants
################################################################################
TAG_MIN_LEN = 2
TAG_MAX_LEN = 30
POST_MAX_TAGS = 10
SUGGEST_MIN_CHARS = 2
SUGGEST_DEBOUNCE = 0.3  # seconds
COMMIT_KEYS = {"Enter", "Tab", ","}

TAG_RE = re.compile(r"^[A-Za-z0-9 \-]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class TagValidationError(ValueError):
    """A tag (or a tag operation) failed a client-side check."""


################################################################################
# Normalisation helpers
################################################################################
def tag_key(name: str) -> str:
    """Case-insensitive identity of a tag."""
    return name.strip().lower()


def tag_slug(name: str) -> str:
    """
    Slug used by the delete-by-slug endpoint: lower-case, every run of
    non-alphanumerics becomes one hyphen.  Edges are *not* trimmed.
    """
    return _NON_ALNUM_RE.sub("-", name.lower())


def slugify(text: str) -> str:
    """URL slug for posts, authors and categories (edges trimmed)."""
    return tag_slug(text or "").strip("-")


def has_tag(tags: Iterable[str], name: str) -> bool:
    key = tag_key(name)
    return any(tag_key(t) == key for t in tags)


def check_tag(
    name: str, *, min_length: int = TAG_MIN_LEN, max_length: int = TAG_MAX_LEN
) -> str | None:
    """Return a human-readable problem with *name*, or None if it is fine."""
    if len(name) < min_length:
        return f"Tag must be at least {min_length} characters"
    if len(name) > max_length:
        return f"Tag must be at most {max_length} characters"
    if not TAG_RE.match(name):
        return "Tag can only contain letters, numbers, spaces, and hyphens"
    if "  " in name or "--" in name:
        return "Tag cannot contain consecutive spaces or hyphens"
    return None


def clean_tags(
    raw: Iterable[str], *, max_tags: int | None = POST_MAX_TAGS
) -> tuple[list[str], list[str]]:
    """
    Run a submitted tag list through the same rules the input widget uses.

    Returns ``(tags, errors)``; *tags* only holds entries that passed.
    """
    inp = TagInput(max_tags=max_tags)
    errors: list[str] = []
    for piece in raw:
        if not piece.strip():
            continue
        if not inp.add(piece):
            errors.append(f"“{piece.strip()}”: {inp.error}")
    return inp.tags, errors


def split_tag_field(value: str | None) -> list[str]:
    """Comma-separated form field → list of raw pieces."""
    return [p for p in (value or "").split(",") if p.strip()]


def cloud_size(count: int, max_count: int, *, lo: float = 0.8, hi: float = 2.5) -> float:
    """Font size (rem) for a tag cloud pill, log-scaled."""
    if max_count <= 0:
        return lo
    ratio = math.log(count + 1) / math.log(max_count + 1)
    return round(lo + (hi - lo) * ratio, 2)


################################################################################
# Autocomplete input
################################################################################
SuggestFn = Callable[[str], Awaitable[list[str]]]


class TagInput:
    """
    Keystrokes in, ordered de-duplicated tag list out.

    The model mirrors the browser widget in the post form.  It never exposes an
    invalid list: ``tags`` only grows through :meth:`add`, which validates.
    Seed values that break the rules are dropped.

    Suggestions are fetched on the running asyncio loop.  Each keystroke bumps
    ``_seq`` and cancels the pending task; a response is applied only when its
    sequence number is still the newest one.
    """

    def __init__(
        self,
        value: Iterable[str] = (),
        *,
        get_suggestions: SuggestFn | None = None,
        max_tags: int | None = None,
        min_length: int = TAG_MIN_LEN,
        max_length: int = TAG_MAX_LEN,
        disabled: bool = False,
        debounce: float = SUGGEST_DEBOUNCE,
        on_change: Callable[[list[str]], None] | None = None,
        on_tag_add: Callable[[str], None] | None = None,
        on_tag_remove: Callable[[str], None] | None = None,
    ):
        self.get_suggestions = get_suggestions
        self.max_tags = max_tags
        self.min_length = min_length
        self.max_length = max_length
        self.tags: list[str] = []
        for t in value:
            name = t.strip()
            if name and self.validate(name) is None:
                self.tags.append(name)
        self.disabled = disabled
        self.debounce = debounce
        self.on_change = on_change
        self.on_tag_add = on_tag_add
        self.on_tag_remove = on_tag_remove

        self.text = ""
        self.error: str | None = None
        self.suggestions: list[str] = []
        self.show_suggestions = False
        self.selected = -1

        self._seq = 0
        self._task: asyncio.Task | None = None

    # -- committing ----------------------------------------------------------
    @property
    def full(self) -> bool:
        return self.max_tags is not None and len(self.tags) >= self.max_tags

    def validate(self, name: str) -> str | None:
        problem = check_tag(name, min_length=self.min_length, max_length=self.max_length)
        if problem:
            return problem
        if has_tag(self.tags, name):
            return "Tag already exists"
        if self.full:
            return f"Maximum {self.max_tags} tags allowed"
        return None

    def add(self, raw: str) -> bool:
        """Commit *raw*.  On failure ``error`` is set and ``text`` is left alone."""
        name = raw.strip()
        if not name:
            return False

        problem = self.validate(name)
        if problem:
            self.error = problem
            return False

        self.tags = [*self.tags, name]
        self.text = ""
        self.error = None
        self._close_suggestions()
        self._invalidate()
        self._emit(added=name)
        return True

    def remove(self, name: str) -> bool:
        if name not in self.tags:
            return False
        self.tags = [t for t in self.tags if t != name]
        self._emit(removed=name)
        return True

    def choose(self, suggestion: str) -> bool:
        """Click on a suggestion."""
        return self.add(suggestion)

    def _emit(self, *, added: str | None = None, removed: str | None = None):
        if self.on_change:
            self.on_change(list(self.tags))
        if added is not None and self.on_tag_add:
            self.on_tag_add(added)
        if removed is not None and self.on_tag_remove:
            self.on_tag_remove(removed)

    # -- typing --------------------------------------------------------------
    def type(self, value: str) -> None:
        """
        The input's value changed to *value*.

        A comma commits whatever precedes it; the rest stays in the box and is
        looked at again on the next change.
        """
        if self.disabled:
            return
        if "," in value:
            head, rest = value.split(",", 1)
            head = head.strip()
            if head and not self.add(head):
                self.text = value
                self._invalidate()
                self.suggestions = []
                self._close_suggestions()
                return
            self.text = rest.lstrip()
        else:
            self.text = value
            self.error = None
        self._schedule_suggestions()

    def key(self, name: str) -> None:
        """Handle a key press (DOM ``KeyboardEvent.key`` names)."""
        if self.disabled:
            return

        if name in COMMIT_KEYS:
            if 0 <= self.selected < len(self.suggestions):
                self.add(self.suggestions[self.selected])
            else:
                self.add(self.text)
        elif name == "Backspace" and not self.text and self.tags:
            self.remove(self.tags[-1])
        elif name == "ArrowDown":
            if self.selected < len(self.suggestions) - 1:
                self.selected += 1
        elif name == "ArrowUp":
            self.selected = self.selected - 1 if self.selected > 0 else -1
        elif name == "Escape":
            self._close_suggestions()

    # -- suggestions ---------------------------------------------------------
    def _close_suggestions(self):
        self.show_suggestions = False
        self.selected = -1

    def _invalidate(self) -> int:
        self._seq += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        return self._seq

    def _schedule_suggestions(self) -> None:
        seq = self._invalidate()
        if not self.get_suggestions or len(self.text) < SUGGEST_MIN_CHARS:
            self.suggestions = []
            self._close_suggestions()
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._fetch(seq, self.text))

    async def _fetch(self, seq: int, query: str) -> None:
        await asyncio.sleep(self.debounce)
        try:
            results = await self.get_suggestions(query)
        except Exception:
            log.exception("Error fetching tag suggestions for %r", query)
            results = []
        self.apply_suggestions(seq, results)

    def apply_suggestions(self, seq: int, results: Iterable[str]) -> bool:
        """Install *results* unless a newer request was issued meanwhile."""
        if seq != self._seq:
            return False
        self.suggestions = [s for s in results if not has_tag(self.tags, s)]
        self.show_suggestions = bool(self.suggestions)
        self.selected = -1
        return True

    async def settle(self) -> None:
        """Wait for the pending suggestion request (if any) to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
