"""Persistence adapter, key-value stores, and the graph codec."""

from .adapter import PersistenceAdapter
from .codec import decode_graph, encode_graph
from .stores import JsonFileStore, KeyValueStore, MemoryStore
from .validation import FORMAT_VERSION, ensure_payload

__all__ = [
    "PersistenceAdapter",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "encode_graph",
    "decode_graph",
    "ensure_payload",
    "FORMAT_VERSION",
]
