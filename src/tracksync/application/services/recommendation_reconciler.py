"""Turn a recommender's candidate list into catalog tracks."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.application.services.catalog_resolver import CatalogResolver
from tracksync.domain.entities import Track
from tracksync.domain.exceptions import ValidationException
from tracksync.domain.value_objects import RecommendationCandidate, TrackId
from tracksync.infrastructure.persistence import (
    ArtistRepository,
    SessionScope,
    TrackRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 24

ResolverFactory = Callable[[AsyncSession], CatalogResolver]


def default_resolver_factory(session: AsyncSession) -> CatalogResolver:
    """Build a resolver on the SQLAlchemy repositories of one session."""
    return CatalogResolver(TrackRepository(session), ArtistRepository(session))


@dataclass
class ReconciliationResult:
    """Tracks found for a recommendation plus everything that didn't make it.

    unmatched holds "title by artist" labels of candidates the catalog could
    not resolve (or whose lookup failed). filtered_explicit holds labels of
    candidates that resolved to explicit tracks while explicit content was
    being avoided.
    """

    tracks: list[Track] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    filtered_explicit: list[str] = field(default_factory=list)

    @property
    def track_ids(self) -> list[TrackId]:
        """Ids of the resolved tracks, in output order."""
        return [track.id for track in self.tracks]


# Hey future me - the reconciler is PARTIAL-FAILURE TOLERANT on purpose. One candidate whose lookup
# blows up gets logged and listed as unmatched; the other 23 still make it into the playlist.
# Order of checks per candidate: limit reached? -> duplicate normalized title? -> resolve ->
# same track already taken? -> explicit filter. Candidates after the limit are never looked at,
# so they don't show up in unmatched either.
class RecommendationReconciler:
    """Drives candidates through the CatalogResolver with dedupe and a cap."""

    def __init__(
        self,
        session_scope: SessionScope,
        resolver_factory: ResolverFactory = default_resolver_factory,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        """Initialize reconciler.

        Args:
            session_scope: Unit-of-work factory; one read session per reconcile call
            resolver_factory: Builds a CatalogResolver for a session
            default_limit: Cap used when reconcile() gets no explicit limit
        """
        self._session_scope = session_scope
        self._resolver_factory = resolver_factory
        self._default_limit = default_limit

    async def reconcile(
        self,
        candidates: Sequence[RecommendationCandidate],
        limit: int | None = None,
        avoid_explicit: bool = False,
    ) -> ReconciliationResult:
        """Resolve candidates in order until ``limit`` tracks are found.

        Args:
            candidates: Candidates in recommender order (earlier = preferred)
            limit: Maximum number of tracks to return (default from settings)
            avoid_explicit: Skip tracks flagged explicit

        Returns:
            ReconciliationResult with tracks, unmatched and filtered_explicit

        Raises:
            ValidationException: If limit is negative
        """
        cap = self._default_limit if limit is None else limit
        if cap < 0:
            raise ValidationException(f"Reconciliation limit cannot be negative: {cap}")

        result = ReconciliationResult()
        if not candidates or cap == 0:
            return result

        seen_keys: set[str] = set()
        seen_tracks: set[TrackId] = set()

        async with self._session_scope() as session:
            resolver = self._resolver_factory(session)

            for candidate in candidates:
                if len(result.tracks) >= cap:
                    break

                key = candidate.dedupe_key
                if key in seen_keys:
                    logger.debug("Skipping duplicate candidate %s", candidate.label)
                    continue
                seen_keys.add(key)

                try:
                    resolution = await resolver.resolve(candidate)
                except Exception:
                    logger.exception("Lookup failed for candidate %s", candidate.label)
                    result.unmatched.append(candidate.label)
                    continue

                track = resolution.track
                if track is None:
                    result.unmatched.append(candidate.label)
                    continue
                if track.id in seen_tracks:
                    logger.debug(
                        "Candidate %s resolved to already selected track %s",
                        candidate.label,
                        track.id,
                    )
                    continue
                if avoid_explicit and track.explicit:
                    result.filtered_explicit.append(candidate.label)
                    continue

                seen_tracks.add(track.id)
                result.tracks.append(track)

        logger.info(
            "Reconciled %d candidates: %d tracks, %d unmatched, %d explicit filtered",
            len(candidates),
            len(result.tracks),
            len(result.unmatched),
            len(result.filtered_explicit),
        )
        return result
