"""Tests for the SQLAlchemy repositories."""

import pytest

from tracksync.domain.entities import PlatformEntityType, PlatformId, Playlist
from tracksync.domain.exceptions import EntityNotFoundException
from tracksync.domain.value_objects import ArtistId, PlaylistId, TrackId, normalize_text
from tracksync.infrastructure.persistence import (
    ArtistRepository,
    PlatformIdRepository,
    PlaylistRepository,
    TrackRepository,
)


class TestArtistRepository:
    async def test_find_by_name_is_case_insensitive(self, catalog, session_scope) -> None:
        aid = await catalog.artist("Daft Punk")

        async with session_scope() as session:
            found = await ArtistRepository(session).find_ids_by_name("  daft PUNK ")

        assert found == [aid]

    async def test_find_by_normalized_name(self, catalog, session_scope) -> None:
        aid = await catalog.artist("Beyoncé")

        async with session_scope() as session:
            repo = ArtistRepository(session)
            found = await repo.find_ids_by_normalized_name(normalize_text("BEYONCE"))
            empty = await repo.find_ids_by_normalized_name("")

        assert found == [aid]
        assert empty == []

    async def test_get_by_id(self, catalog, session_scope) -> None:
        aid = await catalog.artist("Röyksopp")

        async with session_scope() as session:
            repo = ArtistRepository(session)
            artist = await repo.get_by_id(aid)
            missing = await repo.get_by_id(ArtistId("nope"))

        assert artist is not None
        assert artist.name == "Röyksopp"
        assert missing is None


class TestTrackRepository:
    async def test_round_trip_keeps_artist_order(self, catalog, session_scope) -> None:
        track = await catalog.track("Get Lucky", ["Daft Punk", "Pharrell Williams"], explicit=True)

        async with session_scope() as session:
            loaded = await TrackRepository(session).get_by_id(track.id)

        assert loaded is not None
        assert [a.name for a in loaded.artists] == ["Daft Punk", "Pharrell Williams"]
        assert loaded.primary_artist.name == "Daft Punk"
        assert loaded.explicit is True
        assert loaded.duration_ms == 180_000

    async def test_lowest_id_wins_among_duplicates(self, catalog, session_scope) -> None:
        await catalog.track("Intro", ["B"], track_id="t-0200")
        await catalog.track("Intro", ["A"], track_id="t-0100")

        async with session_scope() as session:
            found = await TrackRepository(session).find_first_by_title("INTRO")

        assert found is not None
        assert found.id == TrackId("t-0100")

    async def test_artist_scope(self, catalog, session_scope) -> None:
        await catalog.track("Intro", ["A"], track_id="t-0100")
        await catalog.track("Intro", ["B"], track_id="t-0200")
        b_id = await catalog.artist("B")

        async with session_scope() as session:
            repo = TrackRepository(session)
            scoped = await repo.find_first_by_title("Intro", [b_id])
            nobody = await repo.find_first_by_title("Intro", [])

        assert scoped is not None
        assert scoped.id == TrackId("t-0200")
        assert nobody is None

    async def test_normalized_title(self, catalog, session_scope) -> None:
        track = await catalog.track("Señorita", ["Shawn Mendes"])

        async with session_scope() as session:
            repo = TrackRepository(session)
            found = await repo.find_first_by_normalized_title(normalize_text("senorita"))
            blank = await repo.find_first_by_normalized_title("")

        assert found is not None
        assert found.id == track.id
        assert blank is None


class TestPlatformIdRepository:
    async def test_upsert_replaces_and_lookup_omits_missing(self, catalog, session_scope) -> None:
        first = await catalog.track("One", ["A"], spotify_id="sp-old")
        second = await catalog.track("Two", ["A"])

        async with session_scope() as session:
            await PlatformIdRepository(session).upsert(
                PlatformId(
                    entity_type=PlatformEntityType.TRACK,
                    entity_id=first.id.value,
                    platform="spotify",
                    external_id="sp-new",
                )
            )

        async with session_scope() as session:
            repo = PlatformIdRepository(session)
            mapping = await repo.get_external_ids(
                PlatformEntityType.TRACK, [first.id.value, second.id.value], "spotify"
            )
            other_platform = await repo.get(PlatformEntityType.TRACK, first.id.value, "deezer")
            none_requested = await repo.get_external_ids(PlatformEntityType.TRACK, [], "spotify")

        assert mapping == {first.id.value: "sp-new"}
        assert other_platform is None
        assert none_requested == {}


class TestPlaylistRepository:
    async def test_update_renumbers_positions(self, catalog, session_scope) -> None:
        tracks = [await catalog.track(f"Song {i}", ["A"]) for i in range(4)]
        playlist = await catalog.playlist([t.id for t in tracks])

        playlist.remove_track(tracks[1].id)
        playlist.reorder([tracks[3].id, tracks[0].id, tracks[2].id])
        async with session_scope() as session:
            await PlaylistRepository(session).update(playlist)

        loaded = await catalog.load_playlist(playlist.id)
        assert loaded.track_ids == [tracks[3].id, tracks[0].id, tracks[2].id]
        assert [entry.position for entry in loaded.entries] == [0, 1, 2]

    async def test_update_does_not_touch_cover(self, catalog, session_scope) -> None:
        playlist = await catalog.playlist(cover_image_url="https://cdn.test/c.png")

        playlist.cover_image_url = "https://evil.test/x.png"
        playlist.link_external("ext-1", "https://open.spotify.test/ext-1")
        async with session_scope() as session:
            await PlaylistRepository(session).update(playlist)

        loaded = await catalog.load_playlist(playlist.id)
        assert loaded.external_id == "ext-1"
        assert loaded.cover_image_url == "https://cdn.test/c.png"

    async def test_update_unknown_playlist_raises(self, session_scope) -> None:
        ghost = Playlist(id=PlaylistId("ghost"), user_id="u", title="Ghost")
        with pytest.raises(EntityNotFoundException):
            async with session_scope() as session:
                await PlaylistRepository(session).update(ghost)

    async def test_cover_pointer_set_get_and_list(self, catalog, session_scope) -> None:
        with_cover = await catalog.playlist(cover_image_url="https://cdn.test/a.png")
        without = await catalog.playlist()

        async with session_scope() as session:
            repo = PlaylistRepository(session)
            await repo.set_cover_url(without.id, "https://cdn.test/b.png?v=1")
            await repo.set_cover_url(with_cover.id, None)

        async with session_scope() as session:
            repo = PlaylistRepository(session)
            pointers = await repo.list_cover_urls()
            current = await repo.get_cover_url(without.id)

        assert pointers == [(without.id, "https://cdn.test/b.png?v=1")]
        assert current == "https://cdn.test/b.png?v=1"

    async def test_cover_pointer_of_unknown_playlist(self, session_scope) -> None:
        async with session_scope() as session:
            repo = PlaylistRepository(session)
            with pytest.raises(EntityNotFoundException):
                await repo.get_cover_url(PlaylistId("ghost"))
            with pytest.raises(EntityNotFoundException):
                await repo.set_cover_url(PlaylistId("ghost"), "https://cdn.test/x.png")
