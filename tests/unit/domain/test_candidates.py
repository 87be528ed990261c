"""Tests for typed recommendation candidates."""

import pytest

from tracksync.domain.value_objects import (
    CandidateById,
    CandidateByTitleArtist,
    TrackId,
    parse_candidate,
)


class TestParseCandidate:
    """parse_candidate() turns upstream dicts into typed candidates."""

    def test_id_present_gives_by_id_candidate(self) -> None:
        candidate = parse_candidate({"title": "Intro", "artist": "The xx", "track_id": "t-1"})

        assert isinstance(candidate, CandidateById)
        assert candidate.track_id == TrackId("t-1")
        assert candidate.title == "Intro"

    def test_id_alias_is_accepted(self) -> None:
        candidate = parse_candidate({"id": " t-9 "})
        assert isinstance(candidate, CandidateById)
        assert candidate.track_id.value == "t-9"

    def test_title_only_gives_title_artist_candidate(self) -> None:
        candidate = parse_candidate({"title": "Señorita", "artist": "Shawn Mendes", "genre": "pop"})

        assert isinstance(candidate, CandidateByTitleArtist)
        assert candidate.artist == "Shawn Mendes"
        assert candidate.genre_hint == "pop"

    def test_explicit_kind_wins_over_key_sniffing(self) -> None:
        candidate = parse_candidate(
            {"kind": "by_title_artist", "title": "Intro", "track_id": "t-1"}
        )
        assert isinstance(candidate, CandidateByTitleArtist)

    def test_by_id_kind_without_id_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="missing its track id"):
            parse_candidate({"kind": "by_id", "title": "Intro"})

    def test_neither_id_nor_title_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="neither id nor title"):
            parse_candidate({"artist": "Nobody", "title": "   "})

    def test_blank_artist_becomes_none(self) -> None:
        candidate = parse_candidate({"title": "Intro", "artist": "  "})
        assert candidate.artist is None


class TestCandidateKeys:
    def test_dedupe_key_is_normalized_title(self) -> None:
        a = CandidateByTitleArtist(title="Señorita", artist="Shawn Mendes")
        b = CandidateByTitleArtist(title="senorita!", artist="Someone Else")
        assert a.dedupe_key == b.dedupe_key == "senorita"

    def test_by_id_without_title_dedupes_on_id(self) -> None:
        assert CandidateById(track_id=TrackId("t-1")).dedupe_key == "id:t-1"

    def test_labels(self) -> None:
        assert CandidateByTitleArtist(title="Intro", artist="The xx").label == "Intro by The xx"
        assert CandidateByTitleArtist(title="Intro").label == "Intro"
        assert CandidateById(track_id=TrackId("t-1")).label == "track t-1"

    def test_empty_title_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            CandidateByTitleArtist(title=" ")
