"""External playlist snapshot cache.

Hey future me - Spotify's playlist GET is the call we make most (reorder verification, cover
mosaic lookups, UI refreshes) and the first one to get 429'd. Snapshots are cached for the sync
TTL (10 minutes by default). When the platform throttles us, callers fall back to get_stale() and
serve the last known snapshot instead of failing. Every local mutation that we push out MUST
invalidate the entry, otherwise we'd happily serve our own pre-mutation state back to ourselves.
"""

import time
from collections.abc import Callable

from tracksync.application.cache.base_cache import InMemoryCache
from tracksync.domain.entities import ExternalPlaylistSnapshot


class PlaylistSnapshotCache:
    """Cache of ExternalPlaylistSnapshot keyed by platform and external playlist id."""

    DEFAULT_TTL = 600  # 10 minutes
    DEFAULT_MAX_ENTRIES = 1000

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._cache: InMemoryCache[str, ExternalPlaylistSnapshot] = InMemoryCache(
            clock=clock, max_entries=max_entries
        )

    def __len__(self) -> int:
        return self._cache.get_stats()["total_entries"]

    @staticmethod
    def _make_key(platform: str, external_id: str, include_tracks: bool) -> str:
        scope = "full" if include_tracks else "meta"
        return f"{platform}:playlist:{external_id}:{scope}"

    async def get(
        self, platform: str, external_id: str, include_tracks: bool = True
    ) -> ExternalPlaylistSnapshot | None:
        """Get a fresh cached snapshot."""
        return await self._cache.get(self._make_key(platform, external_id, include_tracks))

    async def get_stale(
        self, platform: str, external_id: str, include_tracks: bool = True
    ) -> ExternalPlaylistSnapshot | None:
        """Get the last cached snapshot regardless of age."""
        return await self._cache.get_stale(
            self._make_key(platform, external_id, include_tracks)
        )

    async def put(self, platform: str, snapshot: ExternalPlaylistSnapshot) -> None:
        """Cache a snapshot under its own scope (full or metadata-only)."""
        await self._cache.set(
            self._make_key(platform, snapshot.external_id, snapshot.includes_items),
            snapshot,
            self.ttl_seconds,
        )

    async def invalidate(self, platform: str, external_id: str) -> bool:
        """Drop both scopes of one playlist.

        Returns:
            True if anything was cached
        """
        full = await self._cache.delete(self._make_key(platform, external_id, True))
        meta = await self._cache.delete(self._make_key(platform, external_id, False))
        return full or meta

    async def clear(self) -> None:
        """Drop everything."""
        await self._cache.clear()
