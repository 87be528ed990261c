"""Per-playlist locks shared by every sync engine in the process.

Hey future me - engines are cheap and get built per request (one per credential scope), so a lock
that lives on an engine protects nothing: two engines exporting the same playlist would both see
"not linked" and create two external playlists. The SyncContainer owns ONE PlaylistLocks and
hands it to every engine it builds.

Entries are refcounted and dropped as soon as nobody holds or waits on them, so the registry only
ever contains playlists that are being synced right now.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from tracksync.domain.value_objects import PlaylistId


class PlaylistLocks:
    """Registry of asyncio locks keyed by internal playlist id."""

    def __init__(self) -> None:
        self._locks: dict[PlaylistId, asyncio.Lock] = {}
        self._users: dict[PlaylistId, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, playlist_id: PlaylistId) -> bool:
        """True while some operation holds the playlist's lock."""
        lock = self._locks.get(playlist_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, playlist_id: PlaylistId) -> AsyncIterator[None]:
        """Hold the playlist's lock for the duration of the block.

        Not reentrant: an operation already holding a playlist must not
        ask for it again.
        """
        lock = self._locks.setdefault(playlist_id, asyncio.Lock())
        self._users[playlist_id] = self._users.get(playlist_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[playlist_id] - 1
            if remaining:
                self._users[playlist_id] = remaining
            else:
                del self._users[playlist_id]
                del self._locks[playlist_id]
