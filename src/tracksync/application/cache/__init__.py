"""Caching layer - Cache implementations for reducing API calls."""

from tracksync.application.cache.base_cache import BaseCache, CacheEntry, InMemoryCache
from tracksync.application.cache.playlist_snapshot_cache import PlaylistSnapshotCache

__all__ = [
    "BaseCache",
    "CacheEntry",
    "InMemoryCache",
    "PlaylistSnapshotCache",
]
