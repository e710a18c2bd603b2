"""Incremental sync of newly published module versions from a module index."""

from .schemas import IndexEntry
from .connectors import ConnectorError, DecodeError, Indexer, IndexConnector, TransportError
from .storage import BookmarkManager, CheckpointError, CheckpointStore
from .sync import EmptyPageError, IndexSync, SyncCancelled, SyncError, SyncResult, collect_entries

__all__ = [
    "BookmarkManager",
    "CheckpointError",
    "CheckpointStore",
    "ConnectorError",
    "DecodeError",
    "EmptyPageError",
    "IndexConnector",
    "IndexEntry",
    "IndexSync",
    "Indexer",
    "SyncCancelled",
    "SyncError",
    "SyncResult",
    "TransportError",
    "collect_entries",
]
