"""
Record types for the module index.

The index at index.golang.org/index returns one JSON object per line:

    {"Path": "golang.org/x/text", "Version": "v0.3.0", "Timestamp": "2019-04-10T19:08:52.997264Z"}

Timestamps are RFC 3339 with up to nanosecond precision; Python datetimes keep
microseconds, so extra fractional digits are truncated on parse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

_FRACTION_RE = re.compile(r"\.(\d+)")
_RFC3339_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: if the value is not a string or not a valid timestamp
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")

    text = value.strip()
    if not _RFC3339_RE.match(text):
        raise ValueError(f"Not an RFC 3339 timestamp: {value!r}")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Nanoseconds -> microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    return datetime.fromisoformat(text).astimezone(timezone.utc)


def format_since(ts: datetime) -> str:
    """Format a watermark for the `since` query parameter (RFC 3339, seconds)."""
    return to_utc(ts).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_utc(ts: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class IndexEntry:
    """One published module version as reported by the index."""
    path: str
    version: str
    timestamp: datetime

    @property
    def is_pseudo_version(self) -> bool:
        return "-" in self.version

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "IndexEntry":
        """
        Build an entry from a decoded index line.

        Raises:
            ValueError: if a field is missing or malformed
        """
        if not isinstance(record, dict):
            raise ValueError(f"Index record must be an object, got {type(record).__name__}")

        missing = [k for k in ("Path", "Version", "Timestamp") if k not in record]
        if missing:
            raise ValueError(f"Index record missing required keys: {missing}")

        path = record["Path"]
        version = record["Version"]
        if not isinstance(path, str) or not isinstance(version, str):
            raise ValueError("Index record Path and Version must be strings")

        return cls(path=path, version=version, timestamp=parse_timestamp(record["Timestamp"]))

    def to_record(self) -> Dict[str, str]:
        return {
            "Path": self.path,
            "Version": self.version,
            "Timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }
