"""Recommendation candidates handed to the reconciler by the upstream recommender.

Hey future me - a candidate is EITHER a direct catalog id (fast path, authoritative) OR a
title/artist pair that has to go through text resolution. The kind is part of the type, so
nobody ever has to dig an id out of a "title|id" string again. Use parse_candidate() at the
boundary where raw dicts come in; everything past that point works with these dataclasses.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from tracksync.domain.value_objects.ids import TrackId
from tracksync.domain.value_objects.text_normalization import normalize_text


@dataclass(frozen=True)
class CandidateById:
    """Candidate that already knows its catalog track id."""

    track_id: TrackId
    title: str | None = None
    artist: str | None = None
    kind: Literal["by_id"] = "by_id"

    @property
    def dedupe_key(self) -> str:
        """Key used to collapse duplicate candidates."""
        if self.title:
            return normalize_text(self.title)
        return f"id:{self.track_id.value}"

    @property
    def label(self) -> str:
        """Human readable label for unmatched reports."""
        if self.title:
            return _format_label(self.title, self.artist)
        return f"track {self.track_id.value}"


@dataclass(frozen=True)
class CandidateByTitleArtist:
    """Candidate described only by title and (optionally) artist."""

    title: str
    artist: str | None = None
    genre_hint: str | None = None
    kind: Literal["by_title_artist"] = "by_title_artist"

    def __post_init__(self) -> None:
        """Validate candidate."""
        if not self.title or not self.title.strip():
            raise ValueError("Candidate title cannot be empty")

    @property
    def dedupe_key(self) -> str:
        """Key used to collapse duplicate candidates."""
        return normalize_text(self.title)

    @property
    def label(self) -> str:
        """Human readable label for unmatched reports."""
        return _format_label(self.title, self.artist)


RecommendationCandidate = CandidateById | CandidateByTitleArtist


def _format_label(title: str, artist: str | None) -> str:
    if artist:
        return f"{title} by {artist}"
    return title


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_candidate(raw: Mapping[str, Any]) -> RecommendationCandidate:
    """Build a typed candidate from an upstream payload.

    Accepts ``{"title", "artist", "genre"}`` and optionally ``"track_id"``
    (or ``"id"``). An explicit ``"kind"`` field wins over key sniffing.

    Args:
        raw: Candidate mapping from the recommendation source

    Returns:
        CandidateById when an id is present, CandidateByTitleArtist otherwise

    Raises:
        ValueError: If neither an id nor a title is present
    """
    kind = raw.get("kind")
    track_id = _clean(raw.get("track_id", raw.get("id")))
    title = _clean(raw.get("title"))
    artist = _clean(raw.get("artist"))

    if kind == "by_id" or (kind is None and track_id):
        if not track_id:
            raise ValueError("by_id candidate is missing its track id")
        return CandidateById(
            track_id=TrackId.from_string(track_id), title=title, artist=artist
        )

    if not title:
        raise ValueError(f"Candidate has neither id nor title: {dict(raw)!r}")
    return CandidateByTitleArtist(
        title=title,
        artist=artist,
        genre_hint=_clean(raw.get("genre_hint", raw.get("genre"))),
    )
