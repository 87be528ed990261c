"""Durable, verified storage of playlist cover images.

Hey future me - covers used to get LOST: temporary CDN URLs expired, "successful" uploads left
zero-byte objects behind, and the playlist row ended up pointing at nothing. This service never
trusts a write it hasn't read back:

    DOWNLOADING -> VERIFYING_SOURCE -> UPLOADING -> VERIFYING_UPLOAD -> DB_UPDATING -> VERIFYING_DB

- A bad SOURCE (HTTP error, 3-byte body, HTML error page) restarts the download up to max_retries;
  re-uploading garbage can't fix it.
- A bad UPLOAD only retries the upload (same bytes, same filename, partial object deleted first).
- The DB write is one write-then-read-back loop in separate sessions. If it never verifies, the
  previous cover URL is put back and the orphaned blob is deleted.

The playlist's cover_image_url only ever moves to a URL whose object passed verification.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx
from sqlalchemy.exc import SQLAlchemyError

from tracksync.config import CoverStorageSettings
from tracksync.domain.exceptions import (
    DomainException,
    EntityNotFoundException,
    ExternalServiceError,
    VerificationFailedError,
)
from tracksync.domain.ports import IBlobStorage
from tracksync.domain.value_objects import (
    ImageFormat,
    PlaylistId,
    check_image_payload,
    sniff_image_format,
)
from tracksync.infrastructure.integrations.image_tools import FetchedImage, ImageFetcher
from tracksync.infrastructure.observability import correlation_scope
from tracksync.infrastructure.persistence import PlaylistRepository, SessionScope

logger = logging.getLogger(__name__)


class CoverStage(str, Enum):
    """Pipeline stage a cover save reached (or failed in)."""

    DOWNLOADING = "downloading"
    VERIFYING_SOURCE = "verifying_source"
    UPLOADING = "uploading"
    VERIFYING_UPLOAD = "verifying_upload"
    DB_UPDATING = "db_updating"
    VERIFYING_DB = "verifying_db"
    DONE = "done"


@dataclass
class CoverSaveResult:
    """Outcome of CoverImagePersistence.save()."""

    success: bool
    final_url: str | None
    stage: CoverStage
    attempts: int = 0
    errors: list[str] = field(default_factory=list)
    previous_url: str | None = None
    error: DomainException | None = None

    def raise_for_error(self) -> None:
        """Raise the failure, if any."""
        if self.error is not None:
            raise self.error


@dataclass
class CoverAuditReport:
    """Result of re-verifying every durable cover pointer."""

    checked: int = 0
    valid: int = 0
    nulled: list[PlaylistId] = field(default_factory=list)


def strip_version(url: str | None) -> str | None:
    """Drop the cache-busting ``v`` query parameter for comparisons."""
    if url is None:
        return None
    base, _, query = url.partition("?")
    params = [p for p in query.split("&") if p and not p.startswith("v=")]
    return f"{base}?{'&'.join(params)}" if params else base


class CoverImagePersistence:
    """Saves cover images to durable storage and points the playlist at them."""

    def __init__(
        self,
        session_scope: SessionScope,
        storage: IBlobStorage,
        fetcher: ImageFetcher,
        settings: CoverStorageSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize cover persistence.

        Args:
            session_scope: Unit-of-work factory
            storage: Durable blob storage for cover files
            fetcher: Downloads source images (HTTP or data URL)
            settings: Thresholds, retry counts and delays
            sleep: Async sleep (injectable for tests)
            clock: Wall clock in seconds, used for filenames and URL versions
        """
        self._session_scope = session_scope
        self._storage = storage
        self._fetcher = fetcher
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    async def save(self, source_url: str, playlist_id: PlaylistId | str) -> CoverSaveResult:
        """Persist a cover for a playlist.

        Args:
            source_url: HTTP(S) URL, base64 data URL, or a URL already in durable storage
            playlist_id: Playlist to attach the cover to

        Returns:
            CoverSaveResult; on failure the playlist keeps its previous cover

        Raises:
            EntityNotFoundException: If the playlist doesn't exist
        """
        pid = (
            playlist_id
            if isinstance(playlist_id, PlaylistId)
            else PlaylistId.from_string(playlist_id)
        )
        with correlation_scope("cover"):
            previous_url = await self._read_cover_url(pid)
            logger.info("Saving cover for playlist %s (previous: %s)", pid, previous_url)

            if self._storage.filename_from_url(source_url) is not None:
                return await self._record_durable(pid, source_url, previous_url)

            errors: list[str] = []
            downloaded = await self._download(source_url, errors)
            if isinstance(downloaded, CoverSaveResult):
                downloaded.previous_url = previous_url
                return downloaded
            image, image_format, download_attempts = downloaded

            filename = self._generate_filename(image_format)
            uploaded = await self._upload(image.data, filename, image_format, errors)
            if isinstance(uploaded, CoverSaveResult):
                uploaded.previous_url = previous_url
                return uploaded
            public_url, upload_attempts = uploaded

            versioned = self._versioned(public_url)
            try:
                result = await self._write_verified(pid, versioned, previous_url, errors)
            except EntityNotFoundException:
                # Playlist deleted while we were uploading: nothing will ever point at the blob
                logger.warning(
                    "Playlist %s disappeared during cover save, deleting %s", pid, filename
                )
                await self._delete_logged(filename)
                raise
            result.attempts += download_attempts + upload_attempts
            if not result.success:
                await self._delete_logged(filename)
            return result

    async def verify_stored_url(self, url: str) -> str | None:
        """Re-check the object behind a durable URL.

        Returns:
            None if the object exists and passes verification, otherwise the reason.
            URLs outside durable storage are reported as such.
        """
        filename = self._storage.filename_from_url(url)
        if filename is None:
            return "not a durable storage URL"
        data = await self._storage.read(filename)
        if data is None:
            return f"stored object {filename} is missing"
        return check_image_payload(data, self._settings.min_bytes)

    async def audit_covers(self) -> CoverAuditReport:
        """Re-verify every durable cover pointer, nulling the broken ones.

        Pointers to external URLs are not checked.
        """
        report = CoverAuditReport()
        with correlation_scope("cover-audit"):
            async with self._session_scope() as session:
                pointers = await PlaylistRepository(session).list_cover_urls()

            for pid, url in pointers:
                if self._storage.filename_from_url(url) is None:
                    continue
                report.checked += 1
                reason = await self.verify_stored_url(url)
                if reason is None:
                    report.valid += 1
                    continue

                async with self._session_scope() as session:
                    repo = PlaylistRepository(session)
                    # Only null what we verified; a concurrent save may have moved it already
                    if await repo.get_cover_url(pid) == url:
                        await repo.set_cover_url(pid, None)
                        report.nulled.append(pid)
                        logger.warning(
                            "Nulled broken cover of playlist %s (%s): %s", pid, url, reason
                        )

            logger.info(
                "Cover audit: %d checked, %d valid, %d nulled",
                report.checked,
                report.valid,
                len(report.nulled),
            )
        return report

    # =========================================================================
    # STAGES
    # =========================================================================

    async def _record_durable(
        self, pid: PlaylistId, url: str, previous_url: str | None
    ) -> CoverSaveResult:
        reason = await self.verify_stored_url(url)
        if reason is not None:
            error = VerificationFailedError(CoverStage.VERIFYING_SOURCE.value, 1, reason)
            logger.error("Durable cover %s failed verification: %s", url, reason)
            return CoverSaveResult(
                success=False,
                final_url=previous_url,
                stage=CoverStage.VERIFYING_SOURCE,
                attempts=1,
                errors=[reason],
                previous_url=previous_url,
                error=error,
            )

        if strip_version(previous_url) == strip_version(url):
            logger.debug("Cover of playlist %s already points at %s", pid, url)
            return CoverSaveResult(
                success=True,
                final_url=previous_url,
                stage=CoverStage.DONE,
                attempts=0,
                previous_url=previous_url,
            )

        return await self._write_verified(pid, url, previous_url, [])

    async def _download(
        self, source_url: str, errors: list[str]
    ) -> tuple[FetchedImage, ImageFormat, int] | CoverSaveResult:
        # Inline data can't change between attempts, so it gets exactly one
        max_attempts = 1 if source_url.startswith("data:") else self._settings.max_retries
        stage = CoverStage.DOWNLOADING

        for attempt in range(1, max_attempts + 1):
            stage = CoverStage.DOWNLOADING
            try:
                image = await self._fetcher.fetch(source_url)
            except (ValueError, ExternalServiceError, httpx.HTTPError) as e:
                errors.append(f"download attempt {attempt}: {e}")
                logger.warning("Cover download attempt %d/%d failed: %s", attempt, max_attempts, e)
            else:
                stage = CoverStage.VERIFYING_SOURCE
                reason = check_image_payload(image.data, self._settings.min_bytes)
                image_format = sniff_image_format(image.data)
                if reason is None and image_format is not None:
                    return image, image_format, attempt
                errors.append(f"source verification attempt {attempt}: {reason}")
                logger.warning(
                    "Cover source rejected (attempt %d/%d): %s", attempt, max_attempts, reason
                )
            if attempt < max_attempts:
                await self._backoff(attempt)

        error = VerificationFailedError(stage.value, max_attempts, errors[-1])
        return CoverSaveResult(
            success=False,
            final_url=None,
            stage=stage,
            attempts=max_attempts,
            errors=errors,
            error=error,
        )

    async def _upload(
        self,
        data: bytes,
        filename: str,
        image_format: ImageFormat,
        errors: list[str],
    ) -> tuple[str, int] | CoverSaveResult:
        max_attempts = self._settings.max_retries
        stage = CoverStage.UPLOADING

        for attempt in range(1, max_attempts + 1):
            stage = CoverStage.UPLOADING
            try:
                url = await self._storage.upload(data, filename, image_format.content_type)
                stage = CoverStage.VERIFYING_UPLOAD
                stored = await self._storage.read(filename)
            except (OSError, ExternalServiceError, httpx.HTTPError) as e:
                errors.append(f"{stage.value} attempt {attempt}: {e}")
                logger.warning(
                    "Cover %s attempt %d/%d failed: %s", stage.value, attempt, max_attempts, e
                )
            else:
                reason = self._compare_stored(data, stored)
                if reason is None:
                    logger.info("Cover stored and verified as %s (%d bytes)", filename, len(data))
                    return url, attempt
                errors.append(f"upload verification attempt {attempt}: {reason}")
                logger.warning("Stored cover %s failed verification: %s", filename, reason)

            await self._delete_logged(filename)
            if attempt < max_attempts:
                await self._backoff(attempt)

        error = VerificationFailedError(stage.value, max_attempts, errors[-1])
        return CoverSaveResult(
            success=False,
            final_url=None,
            stage=stage,
            attempts=max_attempts,
            errors=errors,
            error=error,
        )

    def _compare_stored(self, expected: bytes, stored: bytes | None) -> str | None:
        if stored is None:
            return "stored object is missing"
        if len(stored) != len(expected):
            return f"stored size {len(stored)} != uploaded size {len(expected)}"
        return check_image_payload(stored, self._settings.min_bytes)

    async def _write_verified(
        self,
        pid: PlaylistId,
        url: str,
        previous_url: str | None,
        errors: list[str],
    ) -> CoverSaveResult:
        max_attempts = self._settings.db_max_attempts
        stage = CoverStage.DB_UPDATING

        for attempt in range(1, max_attempts + 1):
            stage = CoverStage.DB_UPDATING
            try:
                await self._write_cover_url(pid, url)
                stage = CoverStage.VERIFYING_DB
                stored = await self._read_cover_url(pid)
            except SQLAlchemyError as e:
                errors.append(f"{stage.value} attempt {attempt}: {e}")
                logger.warning(
                    "Cover DB %s attempt %d/%d failed: %s", stage.value, attempt, max_attempts, e
                )
            else:
                if stored == url:
                    logger.info("Playlist %s cover set to %s", pid, url)
                    return CoverSaveResult(
                        success=True,
                        final_url=url,
                        stage=CoverStage.DONE,
                        attempts=attempt,
                        errors=errors,
                        previous_url=previous_url,
                    )
                errors.append(f"db read-back attempt {attempt}: found {stored!r}")
                logger.warning("Cover read-back mismatch for playlist %s: %r", pid, stored)
            if attempt < max_attempts:
                await self._sleep(self._settings.db_retry_delay * attempt)

        await self._restore(pid, previous_url)
        error = VerificationFailedError(stage.value, max_attempts, errors[-1])
        return CoverSaveResult(
            success=False,
            final_url=previous_url,
            stage=stage,
            attempts=max_attempts,
            errors=errors,
            previous_url=previous_url,
            error=error,
        )

    async def _restore(self, pid: PlaylistId, previous_url: str | None) -> None:
        try:
            if await self._read_cover_url(pid) != previous_url:
                await self._write_cover_url(pid, previous_url)
                logger.warning("Restored previous cover of playlist %s", pid)
        except SQLAlchemyError:
            logger.exception("Could not restore previous cover of playlist %s", pid)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _read_cover_url(self, pid: PlaylistId) -> str | None:
        async with self._session_scope() as session:
            return await PlaylistRepository(session).get_cover_url(pid)

    async def _write_cover_url(self, pid: PlaylistId, url: str | None) -> None:
        async with self._session_scope() as session:
            await PlaylistRepository(session).set_cover_url(pid, url)

    async def _delete_logged(self, filename: str) -> None:
        try:
            await self._storage.delete(filename)
        except (OSError, ExternalServiceError, httpx.HTTPError) as e:
            logger.warning("Could not delete cover object %s: %s", filename, e)

    async def _backoff(self, attempt: int) -> None:
        await self._sleep(self._settings.retry_base_delay * (2 ** (attempt - 1)))

    def _generate_filename(self, image_format: ImageFormat) -> str:
        return f"cover-{int(self._clock() * 1000)}-{secrets.token_hex(8)}.{image_format.extension}"

    def _versioned(self, url: str) -> str:
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}v={int(self._clock())}"
