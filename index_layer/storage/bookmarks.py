"""
Bookmark manager for tracking index sync progress with atomic updates.

A bookmark holds the watermark for one cursor: every index entry recorded at
or before `last_timestamp` has been handed to a caller. The sync loop reads it
at the start of a run and writes it once the run has finished.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..schemas import parse_timestamp, to_utc
from .s3_client import S3Client


class CheckpointError(Exception):
    """Raised when a watermark cannot be read from or written to storage."""
    pass


class CheckpointStore(ABC):
    """Durable mapping from cursor name to last processed timestamp."""

    @abstractmethod
    def get(self, cursor: str) -> Optional[datetime]:
        """Return the stored watermark, or None if the cursor has none."""

    @abstractmethod
    def put(self, cursor: str, timestamp: datetime, entry_count: int = 0) -> None:
        """Persist a new watermark for the cursor."""


@dataclass
class Bookmark:
    """Bookmark for a sync cursor."""
    cursor: str
    last_timestamp: str  # ISO 8601, UTC
    last_entry_count: int
    updated_at: str


class BookmarkManager(CheckpointStore):
    """
    Manages bookmarks with atomic persistence.

    S3-backed (ETag) when s3_client is provided; otherwise uses a local JSON
    file with atomic replace semantics.

    Watermarks never move backwards: a put older than the stored value is
    ignored with a warning.
    """

    def __init__(
        self,
        s3_client: Optional[S3Client] = None,
        bookmark_key: str = "manifests/index_bookmarks.json",
        local_path: Optional[str] = None,
        max_retries: int = 3,
    ):
        """
        Initialize bookmark manager.

        Args:
            s3_client: S3 client instance or None for local mode
            bookmark_key: S3 key for bookmark file
            local_path: Local file path (used when s3_client is None)
            max_retries: Max reload-and-write attempts on ETag mismatch
        """
        self.s3 = s3_client
        self.bookmark_key = bookmark_key
        self.local_path = Path(local_path) if local_path else Path(bookmark_key)
        self.max_retries = max_retries
        self._cache: Optional[Dict[str, Bookmark]] = None
        self._etag: Optional[str] = None

        location = bookmark_key if self.s3 else self.local_path
        logger.info(f"BookmarkManager initialized: {location} (local={self.s3 is None})")

    def _load(self) -> Dict[str, Bookmark]:
        """
        Load bookmarks from storage.

        Raises:
            CheckpointError: if storage is unreachable or the document is corrupt
        """
        if self.s3:
            try:
                data, etag = self.s3.get_json(self.bookmark_key)
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') == 'NoSuchKey':
                    logger.info("No existing bookmarks, starting fresh")
                    self._cache = {}
                    self._etag = None
                    return {}
                raise CheckpointError(f"Failed to load bookmarks from s3://{self.s3.bucket}/{self.bookmark_key}: {e}") from e
            except (BotoCoreError, ValueError) as e:
                raise CheckpointError(f"Failed to load bookmarks from s3://{self.s3.bucket}/{self.bookmark_key}: {e}") from e
            self._etag = etag
        else:
            path = self.local_path
            if not path.exists():
                logger.info(f"No existing local bookmarks at {path}, starting fresh")
                self._cache = {}
                return {}
            try:
                data = json.loads(path.read_text())
            except (OSError, ValueError) as e:
                raise CheckpointError(f"Failed to load local bookmarks ({path}): {e}") from e

        try:
            self._cache = {k: Bookmark(**v) for k, v in data.items()}
        except (AttributeError, TypeError) as e:
            raise CheckpointError(f"Malformed bookmark document: {e}") from e
        logger.debug(f"Loaded {len(self._cache)} bookmarks")
        return self._cache

    def _save(self, bookmarks: Dict[str, Bookmark]) -> bool:
        """
        Save bookmarks, with optimistic locking on S3.

        Returns:
            True if saved, False on ETag mismatch (concurrent update)

        Raises:
            CheckpointError: on any other storage failure
        """
        data = {k: asdict(v) for k, v in bookmarks.items()}

        if self.s3:
            try:
                new_etag = self.s3.put_json(key=self.bookmark_key, data=data, if_match=self._etag)
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') == 'PreconditionFailed':
                    logger.warning("Bookmark save failed: concurrent update detected")
                    return False
                raise CheckpointError(f"Failed to save bookmarks to s3://{self.s3.bucket}/{self.bookmark_key}: {e}") from e
            except BotoCoreError as e:
                raise CheckpointError(f"Failed to save bookmarks to s3://{self.s3.bucket}/{self.bookmark_key}: {e}") from e

            self._etag = new_etag
            self._cache = bookmarks
            logger.debug(f"Saved {len(bookmarks)} bookmarks (ETag: {new_etag})")
            return True

        path = self.local_path
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix="bookmarks_", suffix=".json", dir=str(path.parent))
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except OSError as e:
            logger.error(f"Failed to save local bookmarks to {path}: {e}")
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            raise CheckpointError(f"Failed to save local bookmarks to {path}: {e}") from e

        self._cache = bookmarks
        logger.debug(f"Saved {len(bookmarks)} local bookmarks to {path}")
        return True

    def get_bookmark(self, cursor: str) -> Optional[Bookmark]:
        """Get the full bookmark record for a cursor."""
        if self._cache is None:
            self._load()
        return self._cache.get(cursor)

    def get(self, cursor: str) -> Optional[datetime]:
        """
        Get the watermark for a cursor.

        Raises:
            CheckpointError: if storage fails or the stored value is not a timestamp
        """
        bookmark = self.get_bookmark(cursor)
        if bookmark is None:
            return None
        try:
            return parse_timestamp(bookmark.last_timestamp)
        except ValueError as e:
            raise CheckpointError(f"Bookmark {cursor} holds an invalid timestamp: {e}") from e

    def put(self, cursor: str, timestamp: datetime, entry_count: int = 0) -> None:
        """
        Set the watermark for a cursor, retrying on concurrent updates.

        Raises:
            CheckpointError: if storage fails or retries are exhausted
        """
        timestamp = to_utc(timestamp)

        for attempt in range(self.max_retries):
            # Reload to get latest state
            bookmarks = dict(self._load())

            existing = bookmarks.get(cursor)
            if existing is not None:
                try:
                    stored = parse_timestamp(existing.last_timestamp)
                except ValueError:
                    stored = None
                if stored is not None and stored > timestamp:
                    logger.warning(
                        f"Ignoring bookmark regression for {cursor}: "
                        f"{timestamp.isoformat()} < {existing.last_timestamp}"
                    )
                    return

            bookmarks[cursor] = Bookmark(
                cursor=cursor,
                last_timestamp=timestamp.isoformat(),
                last_entry_count=entry_count,
                updated_at=datetime.now(timezone.utc).isoformat(),
            )

            if self._save(bookmarks):
                logger.info(f"Bookmark updated: {cursor} -> {timestamp.isoformat()} ({entry_count} entries)")
                return

            logger.warning(f"Bookmark update retry {attempt + 1}/{self.max_retries}")

        raise CheckpointError(f"Failed to update bookmark after {self.max_retries} retries: {cursor}")

    def get_all(self) -> Dict[str, Bookmark]:
        """Get all bookmarks."""
        if self._cache is None:
            self._load()
        return self._cache.copy()

    def delete(self, cursor: str) -> bool:
        """
        Delete a bookmark so the next run starts from the default lookback.

        Returns:
            True if a bookmark was removed, False if none existed
        """
        for attempt in range(self.max_retries):
            bookmarks = dict(self._load())

            if cursor not in bookmarks:
                logger.debug(f"Bookmark not found: {cursor}")
                return False

            del bookmarks[cursor]

            if self._save(bookmarks):
                logger.info(f"Bookmark deleted: {cursor}")
                return True

            logger.warning(f"Bookmark delete retry {attempt + 1}/{self.max_retries}")

        raise CheckpointError(f"Failed to delete bookmark after {self.max_retries} retries: {cursor}")
