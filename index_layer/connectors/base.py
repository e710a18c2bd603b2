"""
Base connector class with HTTP session setup, request spacing and logging.

All index connectors inherit from BaseConnector and implement:
- _fetch_raw(): fetch one raw page from the remote index
- _transform(): decode and filter the raw page into IndexEntry values
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from loguru import logger

from ..schemas import IndexEntry


class BaseConnector(ABC):
    """
    Base class for index connectors.

    Provides:
    - HTTP session without retries (each call is one request)
    - Per-instance request spacing
    - Transport failures mapped to TransportError
    """

    def __init__(
        self,
        source_name: str,
        base_url: Optional[str] = None,
        rate_limit_per_sec: float = 2.0,
        timeout: float = 30.0,
    ):
        """
        Initialize connector.

        Args:
            source_name: Name of the index (used in logs and cursor names)
            base_url: Endpoint URL
            rate_limit_per_sec: Max requests per second
            timeout: Default request timeout in seconds
        """
        self.source_name = source_name
        self.base_url = base_url
        self.rate_limit_per_sec = rate_limit_per_sec
        self.timeout = timeout

        self._last_request_time = 0.0
        self._min_request_interval = 1.0 / rate_limit_per_sec if rate_limit_per_sec > 0 else 0.0

        self.session = self._create_session()

        logger.info(f"Initialized {source_name} connector")

    def _create_session(self) -> requests.Session:
        """Create requests session; failed requests are never retried."""
        session = requests.Session()

        adapter = HTTPAdapter(max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def close(self):
        self.session.close()

    def _rate_limit(self):
        """Enforce spacing between requests from this instance."""
        now = time.time()
        elapsed = now - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _get(
        self,
        url: str,
        params: Optional[Dict] = None,
        timeout: Optional[float] = None,
        stream: bool = False,
    ) -> requests.Response:
        """
        Make GET request with rate limiting.

        Args:
            url: Request URL
            params: Query parameters
            timeout: Time budget in seconds, spacing delay included
                (defaults to the connector timeout)
            stream: Leave the body unread for line-by-line iteration

        Returns:
            Response object with a 2xx status

        Raises:
            TransportError: on connection failure, timeout, non-2xx status or
                an exhausted time budget
        """
        started = time.monotonic()
        self._rate_limit()

        if timeout is None:
            timeout = self.timeout
        else:
            timeout -= time.monotonic() - started
            if timeout <= 0:
                logger.error(f"Time budget exhausted before GET {url}")
                raise TransportError(f"GET {url} not attempted: time budget exhausted")

        logger.debug(f"HTTP GET begin: {url} params={params}")
        try:
            response = self.session.get(url, params=params, timeout=timeout, stream=stream)
            logger.debug(f"HTTP GET status: {response.status_code} for {url}")
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed for {url}: {e}")
            raise TransportError(f"GET {url} failed: {e}") from e

    @abstractmethod
    def _fetch_raw(self, **kwargs) -> Any:
        """
        Fetch one raw page from the remote index.

        Must be implemented by subclasses.
        """
        pass

    @abstractmethod
    def _transform(self, raw_data: Any, **kwargs) -> List[IndexEntry]:
        """
        Decode and filter a raw page.

        Must be implemented by subclasses.

        Args:
            raw_data: Output from _fetch_raw()
            **kwargs: Additional context (e.g., prefix)

        Returns:
            Entries in the order the index produced them
        """
        pass

    def fetch_and_transform(self, **kwargs) -> List[IndexEntry]:
        """Fetch a raw page and transform it (template method)."""
        raw_data = self._fetch_raw(**kwargs)
        entries = self._transform(raw_data, **kwargs)
        logger.debug(f"Fetched {len(entries)} entries from {self.source_name}")
        return entries


class Indexer(ABC):
    """Anything that can return one page of index entries recorded at or after `since`."""

    @abstractmethod
    def fetch(self, prefix: str, since: datetime, timeout: Optional[float] = None) -> List[IndexEntry]:
        pass


class ConnectorError(Exception):
    """Base exception for connector errors."""
    pass


class TransportError(ConnectorError):
    """Raised when the HTTP request or response stream fails."""
    pass


class DecodeError(ConnectorError):
    """Raised when an index record is not valid JSON or misses required fields."""
    pass
