"""
Storage layer for sync checkpoints (local filesystem or S3).
"""

from .s3_client import S3Client, get_s3_client
from .bookmarks import Bookmark, BookmarkManager, CheckpointError, CheckpointStore

__all__ = [
    "Bookmark",
    "BookmarkManager",
    "CheckpointError",
    "CheckpointStore",
    "S3Client",
    "get_s3_client",
]
