"""Connectors for remote module indexes."""

from .base import BaseConnector, ConnectorError, DecodeError, Indexer, TransportError
from .index_connector import IndexConnector, keep_entry

__all__ = [
    "BaseConnector",
    "ConnectorError",
    "DecodeError",
    "Indexer",
    "IndexConnector",
    "TransportError",
    "keep_entry",
]
