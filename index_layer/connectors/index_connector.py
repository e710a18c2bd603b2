"""
Connector for the Go module index (index.golang.org/index).

The index is append-only: `GET /index?since=<RFC3339>` returns the oldest
entries recorded at or after `since`, one JSON object per line, in
chronological order. The server decides how many lines make up a page.

Filtering keeps only published release versions under a path prefix:
- path must start with the prefix (empty prefix keeps everything)
- paths containing "internal" or "third_party" are dropped
- versions containing "-" (pseudo-versions, pre-releases) are dropped
"""

import json
from datetime import datetime
from typing import List, Optional

import requests
from loguru import logger

from .base import BaseConnector, DecodeError, Indexer, TransportError
from ..config import DEFAULT_INDEX_URL
from ..schemas import IndexEntry, format_since

EXCLUDED_PATH_MARKERS = ("internal", "third_party")


def keep_entry(entry: IndexEntry, prefix: str) -> bool:
    """Return True if the entry passes the prefix and exclusion filters."""
    if not entry.path.startswith(prefix):
        return False
    if any(marker in entry.path for marker in EXCLUDED_PATH_MARKERS):
        return False
    return not entry.is_pseudo_version


class IndexConnector(BaseConnector, Indexer):
    """
    Fetches pages of new module versions from the module index.

    One call to fetch() issues exactly one request. No retries, no caching;
    failures surface as TransportError or DecodeError.
    """

    API_URL = DEFAULT_INDEX_URL

    def __init__(
        self,
        base_url: Optional[str] = None,
        rate_limit_per_sec: float = 2.0,
        timeout: float = 30.0,
    ):
        super().__init__(
            source_name="index",
            base_url=base_url or self.API_URL,
            rate_limit_per_sec=rate_limit_per_sec,
            timeout=timeout,
        )

    def fetch(self, prefix: str, since: datetime, timeout: Optional[float] = None) -> List[IndexEntry]:
        """
        Fetch one page of entries recorded at or after `since`.

        Args:
            prefix: Module path prefix to keep ("" keeps everything)
            since: Lower bound timestamp
            timeout: Remaining time budget (seconds); caps the connector timeout

        Returns:
            Filtered entries in index order
        """
        if timeout is not None:
            timeout = min(timeout, self.timeout)
        return self.fetch_and_transform(prefix=prefix, since=since, timeout=timeout)

    def _fetch_raw(self, since: datetime, timeout: Optional[float] = None, **kwargs) -> List[bytes]:
        """Return the non-empty lines of one index page."""
        response = self._get(
            self.base_url,
            params={"since": format_since(since)},
            timeout=timeout,
            stream=True,
        )
        try:
            return [line for line in response.iter_lines() if line.strip()]
        except requests.exceptions.RequestException as e:
            logger.error(f"Reading index response failed: {e}")
            raise TransportError(f"Reading index response failed: {e}") from e
        finally:
            response.close()

    def _transform(self, raw_data: List[bytes], prefix: str = "", **kwargs) -> List[IndexEntry]:
        entries = []
        for lineno, line in enumerate(raw_data, start=1):
            try:
                entry = IndexEntry.from_record(json.loads(line))
            except ValueError as e:
                # json.JSONDecodeError and UnicodeDecodeError are ValueErrors too
                raise DecodeError(f"Invalid index record on line {lineno}: {e}") from e

            if keep_entry(entry, prefix):
                entries.append(entry)

        logger.debug(f"Kept {len(entries)}/{len(raw_data)} index records for prefix {prefix!r}")
        return entries
