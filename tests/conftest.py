from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

import pytest

from index_layer.schemas import IndexEntry

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_entry(path: str, version: str = "v1.0.0", ts: Optional[datetime] = None) -> IndexEntry:
    return IndexEntry(path=path, version=version, timestamp=ts or NOW)


class StubIndexer:
    """Returns canned pages in order and records every `since` it was asked for."""

    def __init__(self, pages: List[List[IndexEntry]], on_exhausted: Optional[Exception] = None):
        self.pages = list(pages)
        self.calls: List[datetime] = []
        self.on_exhausted = on_exhausted

    def fetch(self, prefix, since, timeout=None):
        self.calls.append(since)
        if not self.pages:
            if self.on_exhausted is not None:
                raise self.on_exhausted
            raise AssertionError("StubIndexer exhausted")
        return self.pages.pop(0)


class MemoryStore:
    """In-memory checkpoint store that records writes."""

    def __init__(self, initial=None, get_error: Optional[Exception] = None, put_error: Optional[Exception] = None):
        self.values = dict(initial or {})
        self.puts = []
        self.get_error = get_error
        self.put_error = put_error

    def get(self, cursor):
        if self.get_error is not None:
            raise self.get_error
        return self.values.get(cursor)

    def put(self, cursor, timestamp, entry_count=0):
        if self.put_error is not None:
            raise self.put_error
        self.puts.append((cursor, timestamp))
        self.values[cursor] = timestamp


@pytest.fixture()
def fixed_clock():
    return lambda: NOW


@pytest.fixture()
def bookmark_path(tmp_path):
    return tmp_path / "state" / "index_bookmarks.json"


@pytest.fixture()
def minutes_ago():
    def _ago(minutes: float) -> datetime:
        return NOW - timedelta(minutes=minutes)
    return _ago
