"""Tests for domain entities and ids."""

from datetime import UTC, datetime, timedelta

import pytest

from tracksync.domain.entities import (
    DurationUnit,
    Playlist,
    StoredCredential,
    Track,
    duration_ms_from,
)
from tracksync.domain.exceptions import ValidationException
from tracksync.domain.value_objects import PlaylistId, TrackId


def _playlist(*track_ids: str) -> Playlist:
    return Playlist(
        id=PlaylistId("p-1"),
        user_id="user-1",
        title="Focus",
        track_ids=[TrackId(t) for t in track_ids],
    )


class TestIds:
    def test_ids_of_different_kinds_never_compare_equal(self) -> None:
        assert TrackId("x") != PlaylistId("x")

    def test_ids_sort_by_value(self) -> None:
        assert sorted([TrackId("b"), TrackId("a")]) == [TrackId("a"), TrackId("b")]

    def test_empty_id_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            TrackId("  ")


class TestDuration:
    def test_seconds_are_converted_to_milliseconds(self) -> None:
        assert duration_ms_from(215.5, DurationUnit.SECONDS) == 215_500

    def test_milliseconds_pass_through(self) -> None:
        assert duration_ms_from(20_000, DurationUnit.MILLISECONDS) == 20_000

    def test_negative_duration_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            duration_ms_from(-1, DurationUnit.SECONDS)

    def test_track_rejects_out_of_range_popularity(self) -> None:
        with pytest.raises(ValueError):
            Track(id=TrackId("t-1"), title="Intro", popularity=101)


class TestPlaylist:
    """Playlist mutations keep positions contiguous and the external link unique."""

    def test_entries_have_contiguous_positions(self) -> None:
        playlist = _playlist("a", "b", "c")
        assert [e.position for e in playlist.entries] == [0, 1, 2]

    def test_add_tracks_skips_tracks_already_present(self) -> None:
        playlist = _playlist("a")
        added = playlist.add_tracks([TrackId("a"), TrackId("b"), TrackId("b")])

        assert added == [TrackId("b")]
        assert playlist.track_ids == [TrackId("a"), TrackId("b")]

    def test_remove_track_closes_the_gap(self) -> None:
        playlist = _playlist("a", "b", "c")
        position = playlist.remove_track(TrackId("b"))

        assert position == 1
        assert [(e.track_id.value, e.position) for e in playlist.entries] == [("a", 0), ("c", 1)]

    def test_remove_missing_track_raises(self) -> None:
        with pytest.raises(ValidationException):
            _playlist("a").remove_track(TrackId("zzz"))

    def test_reorder_requires_a_permutation(self) -> None:
        playlist = _playlist("a", "b", "c")
        with pytest.raises(ValidationException):
            playlist.reorder([TrackId("a"), TrackId("b")])
        with pytest.raises(ValidationException):
            playlist.reorder([TrackId("a"), TrackId("b"), TrackId("d")])

        playlist.reorder([TrackId("c"), TrackId("a"), TrackId("b")])
        assert [t.value for t in playlist.track_ids] == ["c", "a", "b"]

    def test_link_external_is_idempotent_but_exclusive(self) -> None:
        playlist = _playlist()
        playlist.link_external("ext-1", "https://open.spotify.test/playlist/ext-1")
        playlist.link_external("ext-1", "https://open.spotify.test/playlist/ext-1")

        assert playlist.is_linked
        with pytest.raises(ValidationException):
            playlist.link_external("ext-2", None)

    def test_duplicate_tracks_are_rejected(self) -> None:
        with pytest.raises(ValueError):
            _playlist("a", "a")


class TestStoredCredential:
    def test_expiry_honours_margin(self) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        credential = StoredCredential(
            access_token="tok",
            refresh_token="ref",
            expires_at=now + timedelta(seconds=30),
        )

        assert not credential.is_expired(now)
        assert credential.is_expired(now, margin=timedelta(seconds=60))
