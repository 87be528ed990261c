"""Resolve recommendation candidates to canonical catalog tracks.

Hey future me - resolution is a LADDER, first hit wins:

    by-id hint present  -> id lookup (authoritative, no text search unless the id is unknown)
    artist given        -> exact title + exact artist
                           normalized title + exact artist
                           exact title + normalized artist
                           normalized title + normalized artist
    always              -> exact title (any artist)
                           normalized title (any artist)

"Exact" means case-insensitive equality; "normalized" goes through normalize_text, so
"Señorita" finds "Senorita". Every stage returns the lowest-id row when several match (see
TrackRepository), which keeps repeated runs idempotent. No match is NOT an error - the
Resolution just carries track=None. Only real I/O failures raise.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from tracksync.domain.entities import Track
from tracksync.domain.ports import IArtistRepository, ITrackRepository
from tracksync.domain.value_objects import (
    ArtistId,
    CandidateById,
    CandidateByTitleArtist,
    RecommendationCandidate,
    normalize_text,
)

logger = logging.getLogger(__name__)


class MatchStage(str, Enum):
    """Which rung of the resolution ladder produced the match."""

    BY_ID = "by_id"
    EXACT_TITLE_EXACT_ARTIST = "exact_title_exact_artist"
    NORMALIZED_TITLE_EXACT_ARTIST = "normalized_title_exact_artist"
    EXACT_TITLE_NORMALIZED_ARTIST = "exact_title_normalized_artist"
    NORMALIZED_TITLE_NORMALIZED_ARTIST = "normalized_title_normalized_artist"
    EXACT_TITLE = "exact_title"
    NORMALIZED_TITLE = "normalized_title"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one candidate."""

    candidate: RecommendationCandidate
    track: Track | None = None
    stage: MatchStage | None = None

    @property
    def found(self) -> bool:
        """Check if a catalog track was matched."""
        return self.track is not None


class CatalogResolver:
    """Maps candidates onto catalog tracks using one unit of work's repositories."""

    def __init__(
        self,
        track_repository: ITrackRepository,
        artist_repository: IArtistRepository,
    ) -> None:
        """Initialize resolver.

        Args:
            track_repository: Catalog track lookups
            artist_repository: Artist lookups for artist-scoped stages
        """
        self._tracks = track_repository
        self._artists = artist_repository

    async def resolve(self, candidate: RecommendationCandidate) -> Resolution:
        """Resolve a typed candidate.

        Args:
            candidate: By-id or by-title/artist candidate

        Returns:
            Resolution with the matched track, or track=None if nothing matched
        """
        if isinstance(candidate, CandidateById):
            track = await self._tracks.get_by_id(candidate.track_id)
            if track is not None:
                return Resolution(candidate, track, MatchStage.BY_ID)
            if not candidate.title:
                logger.debug("Catalog has no track %s", candidate.track_id)
                return Resolution(candidate)
            # Stale id hint from the recommender; the title may still be in the catalog
            logger.warning(
                "Track id hint %s not in catalog, falling back to text search for %r",
                candidate.track_id,
                candidate.title,
            )

        title = candidate.title or ""
        artist = candidate.artist
        track, stage = await self._resolve_text(title, artist)
        return Resolution(candidate, track, stage)

    async def resolve_title_artist(
        self, title: str, artist: str | None = None
    ) -> Track | None:
        """Resolve a plain title/artist pair.

        Returns:
            Matched track, or None if nothing matched
        """
        resolution = await self.resolve(CandidateByTitleArtist(title=title, artist=artist))
        return resolution.track

    async def _resolve_text(
        self, title: str, artist: str | None
    ) -> tuple[Track | None, MatchStage | None]:
        normalized_title = normalize_text(title)

        if artist and artist.strip():
            exact_artist_ids = await self._artists.find_ids_by_name(artist)
            if exact_artist_ids:
                track, stage = await self._scoped(
                    title,
                    normalized_title,
                    exact_artist_ids,
                    MatchStage.EXACT_TITLE_EXACT_ARTIST,
                    MatchStage.NORMALIZED_TITLE_EXACT_ARTIST,
                )
                if track is not None:
                    return track, stage

            normalized_artist_ids = await self._artists.find_ids_by_normalized_name(
                normalize_text(artist)
            )
            # Same id set as the exact lookup would only repeat the queries above
            if normalized_artist_ids and set(normalized_artist_ids) != set(exact_artist_ids):
                track, stage = await self._scoped(
                    title,
                    normalized_title,
                    normalized_artist_ids,
                    MatchStage.EXACT_TITLE_NORMALIZED_ARTIST,
                    MatchStage.NORMALIZED_TITLE_NORMALIZED_ARTIST,
                )
                if track is not None:
                    return track, stage

            logger.debug("No artist-scoped match for %r by %r, trying title only", title, artist)

        track, stage = await self._scoped(
            title,
            normalized_title,
            None,
            MatchStage.EXACT_TITLE,
            MatchStage.NORMALIZED_TITLE,
        )
        return track, stage

    async def _scoped(
        self,
        title: str,
        normalized_title: str,
        artist_ids: list[ArtistId] | None,
        exact_stage: MatchStage,
        normalized_stage: MatchStage,
    ) -> tuple[Track | None, MatchStage | None]:
        track = await self._tracks.find_first_by_title(title, artist_ids)
        if track is not None:
            return track, exact_stage
        track = await self._tracks.find_first_by_normalized_title(normalized_title, artist_ids)
        if track is not None:
            return track, normalized_stage
        return None, None
