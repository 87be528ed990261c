"""Keep external (streaming platform) playlists in step with our own.

Hey future me - the ONE rule of this module: the internal database is the source of truth and
its write is committed BEFORE we talk to the platform. Every public operation is

    1. load / mutate the playlist locally and commit (with_db_retry against SQLite locks)
    2. push the change to the platform, best effort
    3. return a SyncReport saying what made it out and what didn't

A failed push never rolls back step 1. Callers decide what to do with a report: show it, retry
later, or call report.raise_for_error().

Every mutating operation holds the playlist's entry in PlaylistLocks from its local read to its
last push. Pass the same registry to every engine (SyncContainer does), otherwise two engines can
both see "not linked" and create two external playlists.

Pushes are throttled on purpose. Adds go out sequentially in batches of sync.batch_size (100 is
Spotify's per-request max) with batch_delay_seconds between them. Removes go out in small
concurrent groups (remove_concurrency batches in parallel), groups sequential with the same
delay. 250 tracks = 3 add calls (100/100/50) and 2 sleeps.
"""

import asyncio
import base64
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

import httpx

from tracksync.application.cache import PlaylistSnapshotCache
from tracksync.application.services.cover_image_service import CoverImagePersistence
from tracksync.application.services.playlist_locks import PlaylistLocks
from tracksync.application.services.token_manager import PlatformTokenManager
from tracksync.config import CoverStorageSettings, SyncSettings
from tracksync.domain.entities import (
    ExternalPlaylistSnapshot,
    PlatformEntityType,
    Playlist,
)
from tracksync.domain.exceptions import (
    AuthenticationError,
    AuthExpiredError,
    ConfigurationError,
    DomainException,
    EntityNotFoundException,
    ExternalServiceError,
    PartialSyncFailureError,
    RateLimitExceededError,
    ValidationException,
    VerificationFailedError,
)
from tracksync.domain.ports import IStreamingPlatformClient
from tracksync.domain.value_objects import PlaylistId, TrackId, sanitize_platform_text
from tracksync.infrastructure.integrations.image_tools import (
    ImageFetcher,
    encode_jpeg_for_upload,
)
from tracksync.infrastructure.observability import correlation_scope
from tracksync.infrastructure.persistence import (
    PlatformIdRepository,
    PlaylistRepository,
    SessionScope,
    with_db_retry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors a platform push can end with; anything else is a bug and propagates
PUSH_ERRORS = (DomainException, httpx.HTTPError)


class SyncOperation(str, Enum):
    """Public sync operations (used in reports and logs)."""

    CREATE = "create"
    EXPORT = "export"
    ADD_TRACKS = "add_tracks"
    REORDER = "reorder"
    REMOVE_TRACK = "remove_track"
    UPLOAD_COVER = "upload_cover"


class ReorderStrategy(str, Enum):
    """How a new order is pushed to the platform.

    REPLACE removes every item and re-adds the desired list; it always ends
    in the exact order, at the cost of 2+ calls per 100 items. MOVE issues
    one range move per out-of-place item and only works when the platform
    already holds exactly the desired items. AUTO picks MOVE when it is
    possible and needs at most sync.max_move_operations calls.
    """

    REPLACE = "replace"
    MOVE = "move"
    AUTO = "auto"


def _as_domain_error(error: BaseException) -> DomainException:
    if isinstance(error, DomainException):
        return error
    return ExternalServiceError(f"Network error talking to the platform: {error}")


@dataclass
class SyncReport:
    """What a sync operation pushed out, and where it stopped.

    succeeded/failed count items (tracks, or 1 for create/cover operations).
    skipped counts items that were deliberately not pushed: tracks already
    present, tracks without a platform mapping, or everything when the
    playlist isn't linked to an external playlist yet.
    """

    operation: SyncOperation
    playlist_id: PlaylistId
    external_id: str | None = None
    external_url: str | None = None
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    removed: int = 0
    stage: str | None = None
    attempts: int = 0
    error: DomainException | None = None
    strategy: ReorderStrategy | None = None
    cover_url: str | None = None
    used_fallback: bool = False
    orphaned_external_id: str | None = None

    @property
    def ok(self) -> bool:
        """True if nothing failed."""
        return self.error is None

    @property
    def retry_after(self) -> float | None:
        """Retry hint when a rate limit stopped the sync."""
        if isinstance(self.error, RateLimitExceededError):
            return self.error.retry_after
        return None

    def record_failure(
        self, stage: str, error: BaseException, failed: int = 0
    ) -> None:
        """Mark the report failed at a stage."""
        self.stage = stage
        self.error = _as_domain_error(error)
        self.failed += failed

    def raise_for_error(self) -> None:
        """Raise the failure, wrapped as PartialSyncFailureError if some items made it."""
        if self.error is None:
            return
        if self.succeeded and self.failed:
            raise PartialSyncFailureError(
                stage=self.stage or self.operation.value,
                succeeded=self.succeeded,
                failed=self.failed,
                cause=self.error,
            ) from self.error
        raise self.error


def _chunks(items: Sequence[T], size: int) -> list[list[T]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def plan_moves(current: Sequence[str], desired: Sequence[str]) -> list[tuple[int, int]]:
    """Single-item moves that turn ``current`` into ``desired``.

    Both lists must hold the same items. Each move is
    ``(range_start, insert_before)`` in the platform's reorder semantics,
    applied in sequence.
    """
    working = list(current)
    moves: list[tuple[int, int]] = []
    for index, item in enumerate(desired):
        if working[index] == item:
            continue
        source = working.index(item, index)
        moves.append((source, index))
        working.insert(index, working.pop(source))
    return moves


class PlaylistSyncEngine:
    """Pushes internal playlist state to one streaming platform."""

    def __init__(
        self,
        session_scope: SessionScope,
        platform: IStreamingPlatformClient,
        token_manager: PlatformTokenManager,
        settings: SyncSettings,
        snapshot_cache: PlaylistSnapshotCache | None = None,
        cover_persistence: CoverImagePersistence | None = None,
        image_fetcher: ImageFetcher | None = None,
        cover_settings: CoverStorageSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        playlist_locks: PlaylistLocks | None = None,
    ) -> None:
        """Initialize sync engine.

        Args:
            session_scope: Unit-of-work factory
            platform: Streaming platform client
            token_manager: Token source for the credential scope this engine syncs with
            settings: Batch sizes, delays, limits
            snapshot_cache: Read cache for external playlists (created if omitted)
            cover_persistence: Durable cover storage; covers are only pushed, not stored, without it
            image_fetcher: Fetches cover sources for upload
            cover_settings: Upload size limits
            sleep: Async sleep (injectable for tests)
            playlist_locks: Lock registry shared with every other engine touching the same
                playlists (a private one if omitted)
        """
        self._session_scope = session_scope
        self._platform = platform
        self._tokens = token_manager
        self._settings = settings
        # Both define __len__, so an empty shared instance is falsy: test against None
        self._cache = (
            snapshot_cache
            if snapshot_cache is not None
            else PlaylistSnapshotCache(
                settings.playlist_cache_ttl_seconds,
                max_entries=settings.playlist_cache_max_entries,
            )
        )
        self._covers = cover_persistence
        self._fetcher = image_fetcher
        self._cover_settings = cover_settings or CoverStorageSettings()
        self._sleep = sleep
        self._locks = playlist_locks if playlist_locks is not None else PlaylistLocks()

    @property
    def platform_name(self) -> str:
        """Name of the platform this engine syncs to."""
        return self._platform.platform_name

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def create_external_playlist(
        self, playlist_id: PlaylistId, owner_id: str | None = None
    ) -> SyncReport:
        """Create the external playlist and link it (no-op if already linked).

        Args:
            playlist_id: Internal playlist
            owner_id: Platform user owning the new playlist (None = token owner)

        Returns:
            SyncReport; succeeded=1 when a playlist was created
        """
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist = await self._load_playlist(playlist_id)
                report = SyncReport(
                    SyncOperation.CREATE,
                    playlist_id,
                    external_id=playlist.external_id,
                    external_url=playlist.external_url,
                )
                if playlist.is_linked:
                    logger.info(
                        "Playlist %s already linked to %s, not creating another",
                        playlist_id,
                        playlist.external_id,
                    )
                    report.skipped = 1
                    return self._finish(report)
                if await self._create(playlist, owner_id, report) is not None:
                    report.succeeded = 1
                return self._finish(report)

    # Listen up, export is IDEMPOTENT. First call: create + add everything + cover. Any later call
    # finds external_id set and only re-syncs the track order - never a second external playlist.
    async def export_playlist(
        self,
        playlist_id: PlaylistId,
        owner_id: str | None = None,
        cover_source: str | None = None,
    ) -> SyncReport:
        """Create-or-update the external copy of a playlist.

        Args:
            playlist_id: Internal playlist
            owner_id: Platform user owning a newly created playlist
            cover_source: Optional cover image (URL or data URL) to upload

        Returns:
            SyncReport of the export
        """
        with correlation_scope("export"):
            async with self._locks.hold(playlist_id):
                playlist = await self._load_playlist(playlist_id)
                report = SyncReport(
                    SyncOperation.EXPORT,
                    playlist_id,
                    external_id=playlist.external_id,
                    external_url=playlist.external_url,
                )

                if playlist.is_linked:
                    logger.info(
                        "Playlist %s already exported as %s, syncing order",
                        playlist_id,
                        playlist.external_id,
                    )
                    await self._sync_order(playlist, ReorderStrategy.AUTO, report)
                else:
                    external_id = await self._create(playlist, owner_id, report)
                    if external_id is None:
                        return self._finish(report)
                    external_ids, unmapped = await self._external_track_ids(
                        playlist.track_ids
                    )
                    report.skipped += len(unmapped)
                    await self._push_add(external_id, external_ids, report)
                    await self._cache.invalidate(self.platform_name, external_id)

                if cover_source and report.ok and report.external_id:
                    chosen = await self._push_cover(report.external_id, cover_source, report)
                    if chosen:
                        await self._persist_cover(playlist_id, chosen, report)
                return self._finish(report)

    async def add_tracks(
        self, playlist_id: PlaylistId, track_ids: Sequence[TrackId]
    ) -> SyncReport:
        """Append tracks locally, then to the external playlist.

        Tracks already in the playlist are skipped (playlists hold each
        track once).
        """
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist, added = await self._apply_local(
                    playlist_id, lambda p: p.add_tracks(list(track_ids))
                )
                report = SyncReport(
                    SyncOperation.ADD_TRACKS, playlist_id, external_id=playlist.external_id
                )
                report.skipped = len(track_ids) - len(added)
                if not added:
                    return self._finish(report)
                if playlist.external_id is None:
                    report.skipped += len(added)
                    return self._finish(report)

                external_ids, unmapped = await self._external_track_ids(added)
                report.skipped += len(unmapped)
                await self._push_add(playlist.external_id, external_ids, report)
                await self._cache.invalidate(self.platform_name, playlist.external_id)
                return self._finish(report)

    async def reorder(
        self,
        playlist_id: PlaylistId,
        ordered_track_ids: Sequence[TrackId],
        strategy: ReorderStrategy = ReorderStrategy.AUTO,
    ) -> SyncReport:
        """Reorder locally, then make the external order match exactly.

        Raises:
            ValidationException: If the new order is not a permutation of the playlist
        """
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist, _ = await self._apply_local(
                    playlist_id, lambda p: p.reorder(list(ordered_track_ids))
                )
                report = SyncReport(
                    SyncOperation.REORDER, playlist_id, external_id=playlist.external_id
                )
                if not playlist.is_linked:
                    report.skipped = len(playlist.track_ids)
                    return self._finish(report)
                await self._sync_order(playlist, strategy, report)
                return self._finish(report)

    async def sync_order(
        self,
        playlist_id: PlaylistId,
        strategy: ReorderStrategy = ReorderStrategy.AUTO,
    ) -> SyncReport:
        """Re-push the current internal order without changing it (drift repair)."""
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist = await self._load_playlist(playlist_id)
                report = SyncReport(
                    SyncOperation.REORDER, playlist_id, external_id=playlist.external_id
                )
                if not playlist.is_linked:
                    report.skipped = len(playlist.track_ids)
                    return self._finish(report)
                await self._sync_order(playlist, strategy, report)
                return self._finish(report)

    # Yo, the local delete ALWAYS happens. The external removal is a courtesy: no link or no
    # platform mapping for the track means we simply skip it.
    async def remove_track(self, playlist_id: PlaylistId, track_id: TrackId) -> SyncReport:
        """Remove a track locally (positions close up), then from the external playlist.

        Raises:
            ValidationException: If the track is not in the playlist
        """
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist, _position = await self._apply_local(
                    playlist_id, lambda p: p.remove_track(track_id)
                )
                report = SyncReport(
                    SyncOperation.REMOVE_TRACK, playlist_id, external_id=playlist.external_id
                )
                if playlist.external_id is None:
                    report.skipped = 1
                    return self._finish(report)

                external_ids, _unmapped = await self._external_track_ids([track_id])
                if not external_ids:
                    logger.info(
                        "Track %s was never synced to %s, skipping external removal",
                        track_id,
                        self.platform_name,
                    )
                    report.skipped = 1
                    return self._finish(report)

                external_id = playlist.external_id
                report.attempts += 1
                try:
                    await self._call(
                        lambda token: self._platform.remove_tracks(
                            token, external_id, external_ids
                        )
                    )
                except PUSH_ERRORS as e:
                    report.record_failure("remove_items", e, failed=1)
                else:
                    report.succeeded = 1
                await self._cache.invalidate(self.platform_name, external_id)
                return self._finish(report)

    async def upload_cover(self, playlist_id: PlaylistId, image_source: str) -> SyncReport:
        """Upload a cover to the external playlist and persist it durably.

        If the platform rejects the image, the platform-generated mosaic is
        persisted instead. Unlinked playlists only get the durable copy.
        """
        with correlation_scope("sync"):
            async with self._locks.hold(playlist_id):
                playlist = await self._load_playlist(playlist_id)
                report = SyncReport(
                    SyncOperation.UPLOAD_COVER, playlist_id, external_id=playlist.external_id
                )
                if playlist.external_id is None:
                    report.skipped = 1
                    chosen: str | None = image_source
                else:
                    chosen = await self._push_cover(playlist.external_id, image_source, report)
                if chosen:
                    await self._persist_cover(playlist_id, chosen, report)
                return self._finish(report)

    async def get_external_snapshot(
        self, playlist_id: PlaylistId, include_tracks: bool = True
    ) -> ExternalPlaylistSnapshot:
        """Read the external playlist through the snapshot cache.

        A rate-limited read falls back to the last cached snapshot, however
        old, when there is one.

        Raises:
            ValidationException: If the playlist is not linked
            RateLimitExceededError: If throttled and nothing is cached
        """
        playlist = await self._load_playlist(playlist_id)
        if playlist.external_id is None:
            raise ValidationException(
                f"Playlist {playlist_id} is not linked to a {self.platform_name} playlist"
            )
        return await self._fetch_snapshot(
            playlist.external_id, include_tracks=include_tracks, use_cache=True
        )

    # =========================================================================
    # LOCAL STATE
    # =========================================================================

    @with_db_retry()
    async def _load_playlist(self, playlist_id: PlaylistId) -> Playlist:
        async with self._session_scope() as session:
            playlist = await PlaylistRepository(session).get_by_id(playlist_id)
        if playlist is None:
            raise EntityNotFoundException("Playlist", playlist_id.value)
        return playlist

    @with_db_retry()
    async def _apply_local(
        self, playlist_id: PlaylistId, mutate: Callable[[Playlist], T]
    ) -> tuple[Playlist, T]:
        async with self._session_scope() as session:
            repository = PlaylistRepository(session)
            playlist = await repository.get_by_id(playlist_id)
            if playlist is None:
                raise EntityNotFoundException("Playlist", playlist_id.value)
            outcome = mutate(playlist)
            await repository.update(playlist)
        logger.debug("Committed local change to playlist %s", playlist_id)
        return playlist, outcome

    async def _link_local(self, playlist_id: PlaylistId, external_id: str, url: str | None) -> None:
        await self._apply_local(playlist_id, lambda p: p.link_external(external_id, url))

    async def _external_track_ids(
        self, track_ids: Sequence[TrackId]
    ) -> tuple[list[str], list[TrackId]]:
        async with self._session_scope() as session:
            mapping = await PlatformIdRepository(session).get_external_ids(
                PlatformEntityType.TRACK,
                [track_id.value for track_id in track_ids],
                self.platform_name,
            )
        mapped = [mapping[t.value] for t in track_ids if t.value in mapping]
        unmapped = [t for t in track_ids if t.value not in mapping]
        if unmapped:
            logger.info(
                "%d track(s) have no %s id and will not be synced",
                len(unmapped),
                self.platform_name,
            )
        return mapped, unmapped

    # =========================================================================
    # PLATFORM PUSHES
    # =========================================================================

    # Hey future me - a 401 gets exactly ONE token refresh and ONE retry. AuthExpiredError means the
    # refresh itself is dead, so that one goes straight up.
    async def _call(self, operation: Callable[[str], Awaitable[T]]) -> T:
        token = await self._tokens.get_token()
        try:
            return await operation(token)
        except AuthExpiredError:
            raise
        except AuthenticationError:
            logger.warning(
                "%s rejected the access token for %s, refreshing once",
                self.platform_name,
                self._tokens.scope_name,
            )
            token = await self._tokens.force_refresh(rejected_token=token)
            return await operation(token)

    # Listen up, the remote create cannot be undone through the platform port. If linking it locally
    # fails (someone linked the playlist elsewhere, or deleted it, while we were creating) the new
    # external playlist is orphaned. Report it loudly and don't push anything into it.
    async def _create(
        self, playlist: Playlist, owner_id: str | None, report: SyncReport
    ) -> str | None:
        """Create and link the external playlist.

        Returns:
            The new external id, or None if the create or the link failed
            (the report says which)
        """
        title = sanitize_platform_text(
            playlist.title, self._settings.title_max_length, self._settings.default_title
        )
        description = sanitize_platform_text(
            playlist.description, self._settings.description_max_length
        )
        report.attempts += 1
        try:
            ref = await self._call(
                lambda token: self._platform.create_playlist(
                    token, owner_id, title, description, playlist.is_public
                )
            )
        except PUSH_ERRORS as e:
            report.record_failure("create", e, failed=1)
            return None

        logger.info(
            "Created %s playlist %s for playlist %s",
            self.platform_name,
            ref.external_id,
            playlist.id,
        )
        try:
            await self._link_local(playlist.id, ref.external_id, ref.external_url)
        except (ValidationException, EntityNotFoundException) as e:
            logger.warning(
                "Could not link playlist %s to new %s playlist %s, which is now orphaned: %s",
                playlist.id,
                self.platform_name,
                ref.external_id,
                e,
            )
            report.orphaned_external_id = ref.external_id
            report.record_failure("link", e, failed=1)
            return None
        report.external_id = ref.external_id
        report.external_url = ref.external_url
        return ref.external_id

    async def _push_add(
        self, external_id: str, external_track_ids: Sequence[str], report: SyncReport
    ) -> bool:
        batches = _chunks(external_track_ids, self._settings.batch_size)
        added = 0
        for index, batch in enumerate(batches):
            if index:
                await self._sleep(self._settings.batch_delay_seconds)
            report.attempts += 1
            try:
                await self._call(
                    lambda token, batch=batch: self._platform.add_tracks(
                        token, external_id, batch
                    )
                )
            except PUSH_ERRORS as e:
                report.succeeded += added
                report.record_failure("add_items", e, failed=len(external_track_ids) - added)
                logger.warning(
                    "Adding to %s stopped at batch %d/%d: %s",
                    external_id,
                    index + 1,
                    len(batches),
                    e,
                )
                return False
            added += len(batch)
            logger.debug(
                "Added batch %d/%d (%d items) to %s",
                index + 1,
                len(batches),
                len(batch),
                external_id,
            )
        report.succeeded += added
        return True

    async def _push_remove(
        self, external_id: str, external_track_ids: Sequence[str], report: SyncReport
    ) -> bool:
        batches = _chunks(external_track_ids, self._settings.batch_size)
        groups = _chunks(batches, self._settings.remove_concurrency)
        removed = 0
        for index, group in enumerate(groups):
            if index:
                await self._sleep(self._settings.batch_delay_seconds)
            report.attempts += len(group)
            results = await asyncio.gather(
                *(
                    self._call(
                        lambda token, batch=batch: self._platform.remove_tracks(
                            token, external_id, batch
                        )
                    )
                    for batch in group
                ),
                return_exceptions=True,
            )
            first_error: BaseException | None = None
            for batch, outcome in zip(group, results, strict=True):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, PUSH_ERRORS):
                        raise outcome
                    first_error = first_error or outcome
                else:
                    removed += len(batch)
            if first_error is not None:
                report.removed += removed
                report.record_failure(
                    "remove_items", first_error, failed=len(external_track_ids) - removed
                )
                return False
        report.removed += removed
        return True

    async def _sync_order(
        self, playlist: Playlist, strategy: ReorderStrategy, report: SyncReport
    ) -> None:
        external_id = playlist.external_id
        if external_id is None:
            raise ValidationException(
                f"Playlist {playlist.id} is not linked to a {self.platform_name} playlist"
            )
        desired, unmapped = await self._external_track_ids(playlist.track_ids)
        report.skipped += len(unmapped)

        try:
            current = await self._fetch_snapshot(external_id, include_tracks=True, use_cache=False)
        except PUSH_ERRORS as e:
            report.record_failure("fetch_playlist", e)
            return

        current_ids = list(current.item_ids)
        chosen = self._choose_strategy(strategy, current_ids, desired)
        report.strategy = chosen
        logger.info(
            "Syncing order of %s: %d desired, %d on platform, strategy %s",
            external_id,
            len(desired),
            len(current_ids),
            chosen.value,
        )

        if chosen is ReorderStrategy.MOVE:
            pushed = await self._push_moves(external_id, current_ids, desired, current, report)
        else:
            pushed = await self._push_replace(external_id, current_ids, desired, report)
        await self._cache.invalidate(self.platform_name, external_id)

        if pushed and self._settings.verify_reorder:
            await self._verify_order(external_id, desired, report)

    def _choose_strategy(
        self, requested: ReorderStrategy, current: list[str], desired: list[str]
    ) -> ReorderStrategy:
        if requested is ReorderStrategy.REPLACE:
            return ReorderStrategy.REPLACE
        is_permutation = len(set(desired)) == len(desired) and Counter(current) == Counter(desired)
        if not is_permutation:
            if requested is ReorderStrategy.MOVE:
                logger.info("Platform items differ from the desired set, falling back to replace")
            return ReorderStrategy.REPLACE
        if requested is ReorderStrategy.MOVE:
            return ReorderStrategy.MOVE
        moves = plan_moves(current, desired)
        if len(moves) <= self._settings.max_move_operations:
            return ReorderStrategy.MOVE
        return ReorderStrategy.REPLACE

    async def _push_replace(
        self,
        external_id: str,
        current_ids: list[str],
        desired: list[str],
        report: SyncReport,
    ) -> bool:
        # Removal deletes every occurrence of a URI, so each id only needs sending once
        to_remove = list(dict.fromkeys(current_ids))
        if not await self._push_remove(external_id, to_remove, report):
            return False
        if to_remove and desired:
            await self._sleep(self._settings.batch_delay_seconds)
        return await self._push_add(external_id, desired, report)

    async def _push_moves(
        self,
        external_id: str,
        current_ids: list[str],
        desired: list[str],
        current: ExternalPlaylistSnapshot,
        report: SyncReport,
    ) -> bool:
        moves = plan_moves(current_ids, desired)
        snapshot_id = current.snapshot_id
        for done, (range_start, insert_before) in enumerate(moves):
            report.attempts += 1
            try:
                snapshot_id = (
                    await self._call(
                        lambda token, start=range_start, before=insert_before, snap=snapshot_id: (
                            self._platform.move_items(token, external_id, start, before, 1, snap)
                        )
                    )
                    or snapshot_id
                )
            except PUSH_ERRORS as e:
                report.record_failure("move_items", e, failed=len(moves) - done)
                return False
        report.succeeded += len(desired)
        return True

    async def _verify_order(
        self, external_id: str, desired: list[str], report: SyncReport
    ) -> None:
        try:
            snapshot = await self._fetch_snapshot(external_id, include_tracks=True, use_cache=False)
        except PUSH_ERRORS as e:
            report.record_failure("verify_order", e)
            return
        if list(snapshot.item_ids) != desired:
            first_mismatch = next(
                (
                    i
                    for i, (got, want) in enumerate(zip(snapshot.item_ids, desired, strict=False))
                    if got != want
                ),
                min(len(snapshot.item_ids), len(desired)),
            )
            report.record_failure(
                "verify_order",
                VerificationFailedError(
                    "verify_order",
                    1,
                    f"platform has {len(snapshot.item_ids)} items, expected {len(desired)}; "
                    f"first difference at position {first_mismatch}",
                ),
            )
            return
        logger.info("Verified order of %s (%d items)", external_id, len(desired))

    async def _fetch_snapshot(
        self, external_id: str, include_tracks: bool, use_cache: bool
    ) -> ExternalPlaylistSnapshot:
        if use_cache:
            cached = await self._cache.get(self.platform_name, external_id, include_tracks)
            if cached is not None:
                return cached
        try:
            snapshot = await self._call(
                lambda token: self._platform.get_playlist(token, external_id, include_tracks)
            )
        except RateLimitExceededError as e:
            stale = (
                await self._cache.get_stale(self.platform_name, external_id, include_tracks)
                if use_cache
                else None
            )
            if stale is None:
                raise
            logger.warning(
                "Rate limited reading %s (retry after %ss), serving cached snapshot",
                external_id,
                e.retry_after,
            )
            return stale
        await self._cache.put(self.platform_name, snapshot)
        return snapshot

    # =========================================================================
    # COVERS
    # =========================================================================

    async def _encode_cover(self, image_source: str) -> str:
        if self._fetcher is None:
            raise ConfigurationError("Cover upload needs an ImageFetcher")
        image = await self._fetcher.fetch(image_source)
        jpeg = await encode_jpeg_for_upload(
            image.data,
            max_bytes=self._cover_settings.max_platform_upload_bytes,
            warn_bytes=self._cover_settings.warn_platform_upload_bytes,
        )
        return base64.b64encode(jpeg).decode("ascii")

    # Listen up, a brand new playlist needs a moment before the platform accepts a cover, hence the
    # delay up front. If the upload fails anyway, the platform has usually composited its own
    # mosaic from the first tracks by the time the grace period is over - that becomes the cover.
    async def _push_cover(
        self, external_id: str, image_source: str, report: SyncReport
    ) -> str | None:
        await self._sleep(self._settings.cover_upload_delay_seconds)
        report.attempts += 1
        try:
            encoded = await self._encode_cover(image_source)
            await self._call(
                lambda token: self._platform.upload_cover_image(token, external_id, encoded)
            )
        except (ValueError, *PUSH_ERRORS) as e:
            logger.warning(
                "Cover upload to %s failed, falling back to the platform mosaic: %s",
                external_id,
                e,
            )
        else:
            report.succeeded += 1
            await self._cache.invalidate(self.platform_name, external_id)
            return image_source

        await self._sleep(self._settings.mosaic_grace_seconds)
        try:
            snapshot = await self._fetch_snapshot(
                external_id, include_tracks=False, use_cache=False
            )
        except PUSH_ERRORS as e:
            report.record_failure("mosaic_fetch", e, failed=1)
            return None
        if not snapshot.image_urls:
            report.record_failure(
                "mosaic_fetch",
                ExternalServiceError(
                    f"{self.platform_name} has no generated cover for {external_id}"
                ),
                failed=1,
            )
            return None
        report.used_fallback = True
        return snapshot.image_urls[0]

    async def _persist_cover(
        self, playlist_id: PlaylistId, source: str, report: SyncReport
    ) -> None:
        if self._covers is None:
            report.cover_url = source
            return
        result = await self._covers.save(source, playlist_id)
        report.cover_url = result.final_url
        if not result.success and result.error is not None:
            report.record_failure("cover_persist", result.error)

    # =========================================================================
    # REPORTING
    # =========================================================================

    def _finish(self, report: SyncReport) -> SyncReport:
        if report.error is None:
            logger.info(
                "%s of playlist %s: %d succeeded, %d skipped",
                report.operation.value,
                report.playlist_id,
                report.succeeded,
                report.skipped,
            )
        else:
            logger.warning(
                "%s of playlist %s stopped at %s: %d succeeded, %d failed (%s)",
                report.operation.value,
                report.playlist_id,
                report.stage,
                report.succeeded,
                report.failed,
                report.error,
            )
        return report
