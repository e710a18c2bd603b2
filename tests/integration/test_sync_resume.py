import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, StubIndexer, make_entry
from index_layer import __main__ as cli
from index_layer.connectors import IndexConnector, TransportError
from index_layer.storage import BookmarkManager
from index_layer.sync import EmptyPageError, IndexSync, cursor_for_prefix


def test_second_run_resumes_from_persisted_watermark(bookmark_path, fixed_clock):
    first_pages = [
        [make_entry("example.com/a", ts=NOW - timedelta(days=5))],
        [make_entry("example.com/b", ts=NOW - timedelta(minutes=2))],
    ]
    store = BookmarkManager(local_path=str(bookmark_path))
    first = IndexSync(StubIndexer(first_pages), store, clock=fixed_clock).run()

    assert first.watermark == NOW - timedelta(minutes=2)

    # Nothing new upstream: the index replays the boundary entry only
    indexer = StubIndexer([[make_entry("example.com/b", ts=NOW - timedelta(minutes=2))]])
    second = IndexSync(indexer, BookmarkManager(local_path=str(bookmark_path)), clock=fixed_clock).run()

    assert indexer.calls == [NOW - timedelta(minutes=2)]
    assert second.watermark == first.watermark
    assert second.entries <= first.entries
    assert BookmarkManager(local_path=str(bookmark_path)).get(cursor_for_prefix("")) == first.watermark


def test_failed_run_is_retried_from_last_persisted_watermark(bookmark_path, fixed_clock):
    store = BookmarkManager(local_path=str(bookmark_path))
    start = NOW - timedelta(hours=3)
    store.put(cursor_for_prefix(""), start)

    failing = StubIndexer(
        [[make_entry("example.com/a", ts=NOW - timedelta(hours=2))]],
        on_exhausted=TransportError("reset by peer"),
    )
    with pytest.raises(TransportError):
        IndexSync(failing, store, clock=fixed_clock).run()

    assert store.get(cursor_for_prefix("")) == start

    retry = StubIndexer([
        [make_entry("example.com/a", ts=NOW - timedelta(hours=2))],
        [make_entry("example.com/c", ts=NOW - timedelta(minutes=1))],
    ])
    result = IndexSync(retry, BookmarkManager(local_path=str(bookmark_path)), clock=fixed_clock).run()

    assert retry.calls[0] == start
    # Re-delivered after the failed run
    assert make_entry("example.com/a", ts=NOW - timedelta(hours=2)) in result.entries


def test_empty_page_leaves_bookmark_file_untouched(bookmark_path, fixed_clock):
    store = BookmarkManager(local_path=str(bookmark_path))
    store.put(cursor_for_prefix(""), NOW - timedelta(hours=1))
    before = bookmark_path.read_text()

    with pytest.raises(EmptyPageError):
        IndexSync(StubIndexer([[]]), store, clock=fixed_clock).run()

    assert bookmark_path.read_text() == before


def _cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_ROOT", str(tmp_path))
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.delenv("CHECKPOINT_PATH", raising=False)
    monkeypatch.delenv("INDEX_PREFIX", raising=False)
    monkeypatch.delenv("INDEX_CURSOR", raising=False)


def test_cli_writes_jsonl_and_advances_checkpoint(monkeypatch, tmp_path):
    _cli_env(monkeypatch, tmp_path)
    now = datetime.now(timezone.utc)
    recent = make_entry("example.com/foo", "v1.2.3", ts=now)
    older = make_entry("example.com/foo/sub", "v0.1.0", ts=now - timedelta(days=1))

    def fake_fetch(self, prefix, since, timeout=None):
        assert prefix == "example.com/foo"
        return [older, recent]

    monkeypatch.setattr(IndexConnector, "fetch", fake_fetch)
    out = tmp_path / "out" / "new.jsonl"
    checkpoint = tmp_path / "state" / "bookmarks.json"

    code = cli.main([
        "--prefix", "example.com/foo",
        "--output", str(out),
        "--checkpoint-path", str(checkpoint),
        "--no-log-file",
    ])

    assert code == 0
    lines = [json.loads(line) for line in out.read_text().splitlines()]
    assert [line["Path"] for line in lines] == ["example.com/foo/sub", "example.com/foo"]
    assert BookmarkManager(local_path=str(checkpoint)).get("index:example.com/foo") == now


def test_cli_returns_error_code_on_transport_failure(monkeypatch, tmp_path):
    _cli_env(monkeypatch, tmp_path)

    def fake_fetch(self, prefix, since, timeout=None):
        raise TransportError("connection refused")

    monkeypatch.setattr(IndexConnector, "fetch", fake_fetch)
    checkpoint = tmp_path / "state" / "bookmarks.json"

    code = cli.main(["--checkpoint-path", str(checkpoint), "--output", str(tmp_path / "x.jsonl"), "--no-log-file"])

    assert code == 1
    assert not checkpoint.exists()
    assert not (tmp_path / "x.jsonl").exists()


def test_cli_reset_forgets_watermark(monkeypatch, tmp_path):
    _cli_env(monkeypatch, tmp_path)
    now = datetime.now(timezone.utc)
    checkpoint = tmp_path / "state" / "bookmarks.json"
    BookmarkManager(local_path=str(checkpoint)).put("index:*", now + timedelta(days=1))
    seen = []

    def fake_fetch(self, prefix, since, timeout=None):
        seen.append(since)
        return [make_entry("example.com/foo", ts=now)]

    monkeypatch.setattr(IndexConnector, "fetch", fake_fetch)

    code = cli.main(["--checkpoint-path", str(checkpoint), "--output", str(tmp_path / "x.jsonl"),
                     "--reset", "--no-log-file"])

    assert code == 0
    # Default lookback, not the deleted bookmark
    assert now - timedelta(days=11) < seen[0] < now - timedelta(days=9)
    assert BookmarkManager(local_path=str(checkpoint)).get("index:*") == now
