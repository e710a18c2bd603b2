"""
Incremental index sync.

Reads the watermark for a cursor, pages through the index from that point
until the watermark passes `now - settle`, dedupes the entries and writes the
new watermark back. The watermark is only written after the loop finishes, so
a failed or cancelled run is retried from the last persisted value on the
next invocation (at-least-once delivery).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Set, Tuple

from loguru import logger

from .config import SyncSettings
from .connectors.base import Indexer
from .connectors.index_connector import IndexConnector
from .schemas import IndexEntry, format_since, to_utc
from .storage.bookmarks import BookmarkManager, CheckpointStore
from .storage.s3_client import get_s3_client

DEFAULT_LOOKBACK = timedelta(days=10)
DEFAULT_SETTLE = timedelta(minutes=5)  # entries newer than this may not be stable upstream


class SyncError(Exception):
    """Base exception for sync loop failures."""
    pass


class EmptyPageError(SyncError):
    """Raised when the index returns no entries before the cutoff is reached."""
    pass


class SyncCancelled(SyncError):
    """Raised when the stop event fires or the deadline passes mid-run."""
    pass


@dataclass
class SyncResult:
    entries: Set[IndexEntry]
    since: datetime
    watermark: datetime
    pages: int


def cursor_for_prefix(prefix: str) -> str:
    return f"index:{prefix or '*'}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_cancelled(deadline: Optional[float], stop_event: Optional[threading.Event]) -> Optional[float]:
    """Raise SyncCancelled if the run must stop; otherwise return the seconds left (None without a deadline)."""
    if stop_event is not None and stop_event.is_set():
        raise SyncCancelled("Sync cancelled by stop event")
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise SyncCancelled("Sync deadline exceeded")
    return remaining


def collect_entries(
    indexer: Indexer,
    prefix: str,
    since: datetime,
    cutoff: datetime,
    deadline: Optional[float] = None,
    stop_event: Optional[threading.Event] = None,
) -> Tuple[Set[IndexEntry], datetime, int]:
    """
    Page through the index from `since` until the watermark passes `cutoff`.

    Pages are trusted to be chronological; the watermark moves to the last
    entry of each page and never backwards. A page whose last entry never
    passes the cutoff keeps the loop going until the deadline or stop event.

    Args:
        indexer: Page source
        prefix: Module path prefix passed to the indexer
        since: Starting watermark
        cutoff: Stop once the watermark is after this instant
        deadline: time.monotonic() value after which the run is cancelled
        stop_event: Cancels the run when set

    Returns:
        Tuple of (deduplicated entries, final watermark, pages fetched)

    Raises:
        EmptyPageError: a page came back empty before the cutoff was reached
        SyncCancelled: stop event set or deadline passed
    """
    since = to_utc(since)
    cutoff = to_utc(cutoff)
    entries: Set[IndexEntry] = set()
    pages = 0

    while True:
        remaining = _check_cancelled(deadline, stop_event)
        page = indexer.fetch(prefix, since, timeout=remaining)
        pages += 1

        if not page:
            if since > cutoff:
                # Watermark was already past the cutoff before this page
                logger.info(f"No new index entries since {format_since(since)}")
                break
            raise EmptyPageError(f"Found 0 entries in index response since {format_since(since)}")

        last = to_utc(page[-1].timestamp)
        if last < since:
            logger.warning(
                f"Index page ends at {last.isoformat()}, before watermark {since.isoformat()}; "
                "keeping watermark"
            )
        else:
            since = last

        entries.update(page)
        logger.debug(f"Page {pages}: {len(page)} entries, watermark {since.isoformat()}")

        if since > cutoff:
            break

    return entries, since, pages


class IndexSync:
    """
    Runs one incremental pass over the index for a cursor.

    Stateless between runs; all progress lives in the checkpoint store.
    Callers must not run two passes for the same cursor concurrently.
    """

    def __init__(
        self,
        indexer: Indexer,
        store: CheckpointStore,
        lookback: timedelta = DEFAULT_LOOKBACK,
        settle: timedelta = DEFAULT_SETTLE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            indexer: Page source
            store: Watermark persistence
            lookback: How far back to start when a cursor has no watermark
            settle: How close to "now" the watermark must get before stopping
            clock: Returns the current time (injected for tests)
        """
        self.indexer = indexer
        self.store = store
        self.lookback = lookback
        self.settle = settle
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "IndexSync":
        """Build a sync with the HTTP connector and the configured checkpoint backend."""
        indexer = IndexConnector(
            base_url=settings.index_url,
            rate_limit_per_sec=settings.rate_limit_per_sec,
            timeout=settings.http_timeout,
        )
        if settings.storage_backend == "s3":
            store = BookmarkManager(get_s3_client(), bookmark_key=settings.checkpoint_key)
        else:
            store = BookmarkManager(local_path=settings.checkpoint_path)

        return cls(indexer, store, lookback=settings.lookback, settle=settings.settle)

    def run(
        self,
        prefix: str = "",
        cursor: Optional[str] = None,
        timeout_s: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
        deliver: Optional[Callable[[Set[IndexEntry]], None]] = None,
    ) -> SyncResult:
        """
        Fetch all new entries for `prefix` and advance the cursor's watermark.

        Args:
            prefix: Module path prefix ("" for every module)
            cursor: Checkpoint cursor name (defaults to one per prefix)
            timeout_s: Overall time budget for the run
            stop_event: Cancels the run when set
            deliver: Called with the entries before the watermark is written;
                if it raises, the watermark stays where it was

        Raises:
            CheckpointError, TransportError, DecodeError, EmptyPageError, SyncCancelled.
            On any error the stored watermark is left unchanged.
        """
        cursor = cursor or cursor_for_prefix(prefix)
        deadline = time.monotonic() + timeout_s if timeout_s is not None else None

        stored = self.store.get(cursor)
        now = to_utc(self.clock())
        since = to_utc(stored) if stored is not None else now - self.lookback
        cutoff = now - self.settle

        logger.info(f"Fetching index entries since {format_since(since)} (cursor={cursor})")
        entries, watermark, pages = collect_entries(
            self.indexer,
            prefix,
            since,
            cutoff,
            deadline=deadline,
            stop_event=stop_event,
        )
        logger.info(f"Parsed {pages} index pages up to {format_since(watermark)}")

        if deliver is not None:
            deliver(entries)

        _check_cancelled(deadline, stop_event)
        self.store.put(cursor, watermark, entry_count=len(entries))

        logger.info(f"Sync complete: {len(entries)} new entries for {cursor}")
        return SyncResult(entries=entries, since=since, watermark=watermark, pages=pages)

    def sync(self, prefix: str = "", **kwargs) -> Set[IndexEntry]:
        """Run one pass and return only the deduplicated entries."""
        return self.run(prefix, **kwargs).entries
