"""
Runtime settings for index sync, read from the environment.

Environment knobs:
- INDEX_URL (default https://index.golang.org/index)
- INDEX_PREFIX (default "", i.e. every module)
- INDEX_CURSOR (default derived from the prefix)
- INDEX_LOOKBACK_DAYS=10, INDEX_SETTLE_MINUTES=5
- INDEX_HTTP_TIMEOUT=30, INDEX_RATE_LIMIT_PER_SEC=2
- STORAGE_BACKEND=local|s3 (default local)
- CHECKPOINT_PATH (default $DATA_ROOT/state/index_bookmarks.json)
- CHECKPOINT_KEY (default manifests/index_bookmarks.json, S3 only)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from loguru import logger

DEFAULT_INDEX_URL = "https://index.golang.org/index"


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if not v:
        return default
    try:
        parsed = float(v)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={v!r}; using {default}")
        return default
    if parsed < 0:
        logger.warning(f"Ignoring negative {name}={v!r}; using {default}")
        return default
    return parsed


def _default_checkpoint_path() -> str:
    data_root = Path(os.environ.get("DATA_ROOT", "."))
    return str(data_root / "state" / "index_bookmarks.json")


@dataclass
class SyncSettings:
    index_url: str = DEFAULT_INDEX_URL
    prefix: str = ""
    cursor: Optional[str] = None
    lookback_days: float = 10.0
    settle_minutes: float = 5.0
    http_timeout: float = 30.0
    rate_limit_per_sec: float = 2.0
    storage_backend: str = "local"
    checkpoint_path: str = field(default_factory=_default_checkpoint_path)
    checkpoint_key: str = "manifests/index_bookmarks.json"

    @property
    def lookback(self) -> timedelta:
        return timedelta(days=self.lookback_days)

    @property
    def settle(self) -> timedelta:
        return timedelta(minutes=self.settle_minutes)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        backend = (_env_str("STORAGE_BACKEND", "local") or "local").lower()
        if backend not in ("local", "s3"):
            logger.warning(f"Unknown STORAGE_BACKEND={backend!r}; using local")
            backend = "local"

        return cls(
            index_url=_env_str("INDEX_URL", DEFAULT_INDEX_URL),
            prefix=os.getenv("INDEX_PREFIX", ""),
            cursor=_env_str("INDEX_CURSOR", None),
            lookback_days=_env_float("INDEX_LOOKBACK_DAYS", 10.0),
            settle_minutes=_env_float("INDEX_SETTLE_MINUTES", 5.0),
            http_timeout=_env_float("INDEX_HTTP_TIMEOUT", 30.0),
            rate_limit_per_sec=_env_float("INDEX_RATE_LIMIT_PER_SEC", 2.0),
            storage_backend=backend,
            checkpoint_path=_env_str("CHECKPOINT_PATH", None) or _default_checkpoint_path(),
            checkpoint_key=_env_str("CHECKPOINT_KEY", "manifests/index_bookmarks.json"),
        )
