"""Tests for RecommendationReconciler."""

import pytest

from tracksync.application.services import (
    CatalogResolver,
    RecommendationReconciler,
    Resolution,
)
from tracksync.domain.exceptions import ValidationException
from tracksync.domain.value_objects import CandidateById, CandidateByTitleArtist
from tracksync.infrastructure.persistence import ArtistRepository, TrackRepository


def _c(title: str, artist: str | None = None) -> CandidateByTitleArtist:
    return CandidateByTitleArtist(title=title, artist=artist)


@pytest.fixture
def reconciler(session_scope) -> RecommendationReconciler:
    return RecommendationReconciler(session_scope, default_limit=24)


class TestReconcile:
    async def test_keeps_recommender_order(self, catalog, reconciler) -> None:
        a = await catalog.track("Angels", ["The xx"])
        b = await catalog.track("Intro", ["The xx"])

        result = await reconciler.reconcile([_c("Intro", "The xx"), _c("Angels", "The xx")])

        assert result.track_ids == [b.id, a.id]
        assert result.unmatched == []

    async def test_stops_at_limit_without_reporting_the_rest(self, catalog, reconciler) -> None:
        for title in ("One", "Two", "Three"):
            await catalog.track(title, ["Metallica"])

        result = await reconciler.reconcile(
            [_c("One"), _c("Two"), _c("Missing"), _c("Three")], limit=2
        )

        assert [t.title for t in result.tracks] == ["One", "Two"]
        assert result.unmatched == []

    async def test_duplicate_titles_collapse(self, catalog, reconciler) -> None:
        await catalog.track("Senorita", ["Shawn Mendes"])

        result = await reconciler.reconcile(
            [_c("Señorita", "Shawn Mendes"), _c("senorita!", "Camila Cabello")]
        )

        assert len(result.tracks) == 1

    async def test_different_candidates_resolving_to_same_track(self, catalog, reconciler) -> None:
        track = await catalog.track("Intro", ["The xx"])

        result = await reconciler.reconcile(
            [CandidateById(track_id=track.id), _c("Intro", "The xx")]
        )

        assert result.track_ids == [track.id]

    async def test_unmatched_candidates_are_labelled(self, catalog, reconciler) -> None:
        await catalog.track("Intro", ["The xx"])

        result = await reconciler.reconcile([_c("Intro"), _c("Nope", "Nobody")])

        assert len(result.tracks) == 1
        assert result.unmatched == ["Nope by Nobody"]

    async def test_avoid_explicit_filters_and_reports(self, catalog, reconciler) -> None:
        clean = await catalog.track("Clean Song", ["Artist"])
        await catalog.track("Dirty Song", ["Artist"], explicit=True)

        result = await reconciler.reconcile(
            [_c("Dirty Song", "Artist"), _c("Clean Song", "Artist")], avoid_explicit=True
        )

        assert result.track_ids == [clean.id]
        assert result.filtered_explicit == ["Dirty Song by Artist"]

    async def test_explicit_tracks_kept_by_default(self, catalog, reconciler) -> None:
        await catalog.track("Dirty Song", ["Artist"], explicit=True)

        result = await reconciler.reconcile([_c("Dirty Song")])

        assert len(result.tracks) == 1
        assert result.filtered_explicit == []

    async def test_default_limit_applies(self, catalog, session_scope) -> None:
        for i in range(5):
            await catalog.track(f"Song {i}", ["Band"])
        reconciler = RecommendationReconciler(session_scope, default_limit=3)

        result = await reconciler.reconcile([_c(f"Song {i}") for i in range(5)])

        assert len(result.tracks) == 3

    async def test_zero_limit_and_empty_input(self, catalog, reconciler) -> None:
        await catalog.track("Intro", ["The xx"])

        assert (await reconciler.reconcile([_c("Intro")], limit=0)).tracks == []
        assert (await reconciler.reconcile([])).tracks == []

    async def test_negative_limit_is_rejected(self, reconciler) -> None:
        with pytest.raises(ValidationException):
            await reconciler.reconcile([_c("Intro")], limit=-1)


class _FlakyResolver:
    """Resolver that blows up for one title and delegates the rest."""

    def __init__(self, inner: CatalogResolver, broken_title: str) -> None:
        self._inner = inner
        self._broken_title = broken_title

    async def resolve(self, candidate) -> Resolution:
        if candidate.title == self._broken_title:
            raise RuntimeError("lookup exploded")
        return await self._inner.resolve(candidate)


async def test_one_failing_lookup_does_not_sink_the_batch(catalog, session_scope) -> None:
    await catalog.track("Good", ["Band"])
    await catalog.track("Also Good", ["Band"])

    def factory(session):
        inner = CatalogResolver(TrackRepository(session), ArtistRepository(session))
        return _FlakyResolver(inner, "Broken")

    reconciler = RecommendationReconciler(session_scope, resolver_factory=factory)
    result = await reconciler.reconcile([_c("Good"), _c("Broken", "Band"), _c("Also Good")])

    assert [t.title for t in result.tracks] == ["Good", "Also Good"]
    assert result.unmatched == ["Broken by Band"]
