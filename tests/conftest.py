"""Shared fixtures for tracksync tests.

Hey future me - every test that touches the database gets its OWN SQLite file under tmp_path,
created with create_tables() (no Alembic). Tests never sleep for real: services take a `sleep`
callable and we hand them a SleepRecorder that only remembers what it was asked to wait.
"""

import os
from collections.abc import AsyncIterator, Sequence
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from tracksync.config import (
    CoverStorageSettings,
    DatabaseSettings,
    Settings,
    SpotifySettings,
    SyncSettings,
)
from tracksync.domain.entities import Artist, PlatformEntityType, PlatformId, Playlist, Track
from tracksync.domain.value_objects import ArtistId, PlaylistId, TrackId
from tracksync.infrastructure.persistence import (
    ArtistRepository,
    Database,
    PlatformIdRepository,
    PlaylistRepository,
    SessionScope,
    TrackRepository,
)


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class Catalog:
    """Seeds catalog rows (artists, tracks, playlists, platform ids) for tests."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope
        self._artists: dict[str, ArtistId] = {}
        self._counter = 0

    async def artist(self, name: str, artist_id: str | None = None) -> ArtistId:
        """Create an artist once per name and return its id."""
        if name in self._artists:
            return self._artists[name]
        aid = ArtistId(artist_id) if artist_id else ArtistId.generate()
        async with self._session_scope() as session:
            await ArtistRepository(session).add(Artist(id=aid, name=name))
        self._artists[name] = aid
        return aid

    async def track(
        self,
        title: str,
        artists: Sequence[str] = (),
        track_id: str | None = None,
        explicit: bool = False,
        spotify_id: str | None = None,
    ) -> Track:
        """Create a catalog track credited to the given artists (first is primary)."""
        self._counter += 1
        credited = [Artist(id=await self.artist(name), name=name) for name in artists]
        track = Track(
            id=TrackId(track_id or f"t-{self._counter:04d}"),
            title=title,
            duration_ms=180_000,
            explicit=explicit,
            artists=credited,
        )
        async with self._session_scope() as session:
            await TrackRepository(session).add(track)
            if spotify_id:
                await PlatformIdRepository(session).upsert(
                    PlatformId(
                        entity_type=PlatformEntityType.TRACK,
                        entity_id=track.id.value,
                        platform="spotify",
                        external_id=spotify_id,
                    )
                )
        return track

    async def playlist(
        self,
        track_ids: Sequence[TrackId] = (),
        title: str = "Road Trip",
        external_id: str | None = None,
        cover_image_url: str | None = None,
        playlist_id: str | None = None,
    ) -> Playlist:
        """Create a playlist holding the given tracks in order."""
        playlist = Playlist(
            id=PlaylistId(playlist_id) if playlist_id else PlaylistId.generate(),
            user_id="user-1",
            title=title,
            description="Songs for the drive",
            external_id=external_id,
            cover_image_url=cover_image_url,
            track_ids=list(track_ids),
        )
        async with self._session_scope() as session:
            await PlaylistRepository(session).add(playlist)
        return playlist

    async def load_playlist(self, playlist_id: PlaylistId) -> Playlist | None:
        async with self._session_scope() as session:
            return await PlaylistRepository(session).get_by_id(playlist_id)

    async def cover_url(self, playlist_id: PlaylistId) -> str | None:
        async with self._session_scope() as session:
            return await PlaylistRepository(session).get_cover_url(playlist_id)


def make_png(size: int = 48) -> bytes:
    """Random-noise PNG, big enough to pass the default 1024-byte minimum."""
    image = Image.frombytes("RGB", (size, size), os.urandom(size * size * 3))
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file and cover directory."""
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        spotify=SpotifySettings(
            client_id="client-id",
            client_secret="client-secret",
            api_base_url="https://api.spotify.test/v1",
            token_url="https://accounts.spotify.test/api/token",
        ),
        sync=SyncSettings(),
        cover=CoverStorageSettings(
            local_dir=tmp_path / "covers",
            public_base_url="https://cdn.tracksync.test/covers",
            retry_base_delay=1.0,
            db_retry_delay=1.0,
        ),
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    """Fresh database with all tables created."""
    db = Database(settings.database)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def session_scope(database: Database) -> SessionScope:
    return database.session_scope


@pytest.fixture
def catalog(session_scope: SessionScope) -> Catalog:
    return Catalog(session_scope)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def catalog_for():
    """Build a Catalog on any session factory (e.g. a SyncContainer's database)."""
    return Catalog
