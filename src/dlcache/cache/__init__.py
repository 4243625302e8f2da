"""
Cache package for downloaded content.

This package provides:
- Key derivation (keys.py): URL to filesystem-safe cache key
- Artifact store (store.py): gzip blob per key with atomic writes
- Coordinator (coordinator.py): per-key locks for single-flight fetching
"""

from dlcache.cache.coordinator import KeyedLockCoordinator
from dlcache.cache.keys import derive_cache_key, identifier_from_key
from dlcache.cache.store import ArtifactStore

__all__ = [
    "ArtifactStore",
    "KeyedLockCoordinator",
    "derive_cache_key",
    "identifier_from_key",
]
