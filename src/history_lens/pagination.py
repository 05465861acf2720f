"""Stable pagination with persisted page-size preferences."""

import contextlib
import json
import logging
import math
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Generic, Protocol, TypeVar

from filelock import FileLock, Timeout

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MIN_PAGE_SIZE, PAGE_SIZE_ALL
from .models import PageSize, PageState, SearchFacets

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PreferenceStore(Protocol):
    """Keyed string store for UI preferences."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryPreferenceStore:
    """In-process preference store."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonPreferenceStore:
    """Preferences persisted in a JSON file.

    Writes happen under a file lock and go through a temp file plus atomic
    rename. Unreadable files behave as empty; failed writes are logged and
    dropped so a read-only config dir never breaks browsing.
    """

    def __init__(self, path: Path, lock_timeout: float = 5.0):
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(".lock")
        self.lock_timeout = lock_timeout

    def _load(self) -> dict[str, str]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                merged = {**self._load(), key: value}
                temp_file = self.path.with_suffix(".tmp." + str(os.getpid()))
                try:
                    with open(temp_file, "w", encoding="utf-8") as f:
                        json.dump(merged, f, indent=2, sort_keys=True)
                    os.replace(temp_file, self.path)
                except OSError:
                    with contextlib.suppress(OSError):
                        temp_file.unlink()
                    raise
        except (OSError, Timeout) as e:
            logger.warning(f"Could not persist preference {key!r} to {self.path}: {e}")


def clamp_page_size(value: object, default: PageSize = DEFAULT_PAGE_SIZE) -> PageSize:
    """Coerce a stored or requested page size into the supported range."""
    if value == PAGE_SIZE_ALL:
        return PAGE_SIZE_ALL
    try:
        size = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return max(MIN_PAGE_SIZE, min(size, MAX_PAGE_SIZE))


def filter_fingerprint(query: str, facets: SearchFacets, **extra: object) -> str:
    """Canonical string for the active query and facets.

    Any change to it resets pagination. Extra keys (selected conversation,
    branch path) let dependent views reset too.
    """
    payload = {
        "q": (query or "").strip(),
        "vendor": facets.vendor,
        "role": facets.role,
        "from": facets.from_date.isoformat() if facets.from_date else None,
        "to": facets.to_date.isoformat() if facets.to_date else None,
        "regex": facets.regex,
        "titleBody": facets.title_body,
        "sourceIds": sorted(facets.source_ids),
    }
    payload.update(extra)
    return json.dumps(payload, sort_keys=True, default=str)


class Paginator(Generic[T]):
    """Slices an ordered sequence into pages.

    Call update() with the freshly ordered items and the filter fingerprint on
    every recompute; when the fingerprint changes the page snaps back to 1.
    """

    def __init__(
        self,
        store: PreferenceStore,
        key: str,
        default_page_size: PageSize = DEFAULT_PAGE_SIZE,
    ):
        self._store = store
        self.key = key
        self.default_page_size = clamp_page_size(default_page_size)
        self.page_size: PageSize = clamp_page_size(store.get(key), self.default_page_size)
        self.page = 1
        self._items: Sequence[T] = ()
        self._fingerprint: str | None = None

    @property
    def total(self) -> int:
        return len(self._items)

    @property
    def page_count(self) -> int:
        if self.page_size == PAGE_SIZE_ALL:
            return 1 if self.total else 0
        return max(1, math.ceil(self.total / self.page_size))

    def _clamp(self):
        self.page = max(1, min(self.page, self.page_count or 1))

    def update(self, items: Sequence[T], fingerprint: str) -> PageState:
        """Install a new ordered sequence."""
        self._items = items
        if fingerprint != self._fingerprint:
            self._fingerprint = fingerprint
            self.page = 1
        self._clamp()
        return self.state

    @property
    def items(self) -> list[T]:
        """The current page."""
        if self.page_size == PAGE_SIZE_ALL:
            return list(self._items)
        start = (self.page - 1) * self.page_size
        return list(self._items[start : start + self.page_size])

    @property
    def state(self) -> PageState:
        return PageState(
            page=self.page,
            page_count=self.page_count,
            page_size=self.page_size,
            total=self.total,
        )

    def goto(self, page: int) -> int:
        self.page = page
        self._clamp()
        return self.page

    def first(self) -> int:
        return self.goto(1)

    def last(self) -> int:
        return self.goto(self.page_count or 1)

    def next(self) -> int:
        return self.goto(self.page + 1)

    def prev(self) -> int:
        return self.goto(self.page - 1)

    def set_page_size(self, size: PageSize) -> PageSize:
        """Change and persist the page size; the page only moves if now out of range."""
        self.page_size = clamp_page_size(size, self.page_size)
        self._store.set(self.key, str(self.page_size))
        self._clamp()
        return self.page_size
