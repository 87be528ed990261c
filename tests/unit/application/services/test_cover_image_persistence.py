"""Tests for CoverImagePersistence.

Hey future me - the regression that started all of this: a "successful" save of a 3-byte body
that left the playlist pointing at garbage. test_tiny_payload_never_reaches_the_database pins it.
"""

import base64
from pathlib import Path

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from tracksync.application.services import CoverImagePersistence, CoverStage
from tracksync.application.services.cover_image_service import strip_version
from tracksync.domain.exceptions import EntityNotFoundException, VerificationFailedError
from tracksync.domain.value_objects import PlaylistId
from tracksync.infrastructure.integrations import HttpClientPool, ImageFetcher, LocalBlobStorage

BASE = "https://cdn.tracksync.test/covers"
NOW = 1_700_000_000.0


class TruncatingStorage(LocalBlobStorage):
    """Local storage whose first N uploads silently store half the bytes."""

    def __init__(self, base_dir: Path, public_base_url: str, bad_uploads: int) -> None:
        super().__init__(base_dir, public_base_url)
        self.bad_uploads = bad_uploads
        self.deleted: list[str] = []

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        if self.bad_uploads:
            self.bad_uploads -= 1
            data = data[: len(data) // 2]
        return await super().upload(data, filename, content_type)

    async def delete(self, filename: str) -> bool:
        self.deleted.append(filename)
        return await super().delete(filename)


@pytest.fixture
def image_server(png_bytes):
    """Routes for the fake image host; flaky.png fails twice before answering."""
    hits: dict[str, int] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        hits[path] = hits.get(path, 0) + 1
        if path == "/good.png":
            return httpx.Response(200, content=png_bytes)
        if path == "/tiny.png":
            return httpx.Response(200, content=b"\xff\xd8\xff")
        if path == "/error.html":
            return httpx.Response(200, content=b"<html>" + b"x" * 4096)
        if path == "/flaky.png":
            if hits[path] <= 2:
                return httpx.Response(503)
            return httpx.Response(200, content=png_bytes)
        return httpx.Response(404)

    return handler, hits


@pytest.fixture
def fetcher(image_server) -> ImageFetcher:
    handler, _hits = image_server
    return ImageFetcher(HttpClientPool(transport=httpx.MockTransport(handler)))


@pytest.fixture
def storage(settings) -> LocalBlobStorage:
    return LocalBlobStorage(settings.cover.local_dir, BASE)


@pytest.fixture
def covers(session_scope, storage, fetcher, settings, sleep_recorder) -> CoverImagePersistence:
    return CoverImagePersistence(
        session_scope, storage, fetcher, settings.cover, sleep=sleep_recorder, clock=lambda: NOW
    )


def _stored_files(settings) -> list[Path]:
    directory = settings.cover.local_dir
    return sorted(directory.iterdir()) if directory.exists() else []


class TestSave:
    async def test_download_upload_and_pointer_are_all_verified(
        self, catalog, covers, settings, png_bytes
    ) -> None:
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/good.png", playlist.id)

        assert result.success
        assert result.stage is CoverStage.DONE
        assert result.final_url.startswith(f"{BASE}/cover-1700000000000-")
        assert result.final_url.endswith(".png?v=1700000000")
        assert result.attempts == 3
        assert await catalog.cover_url(playlist.id) == result.final_url
        [stored] = _stored_files(settings)
        assert stored.read_bytes() == png_bytes

    async def test_playlist_id_may_be_a_string(self, catalog, covers) -> None:
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/good.png", playlist.id.value)

        assert result.success

    async def test_tiny_payload_never_reaches_the_database(
        self, catalog, covers, settings, sleep_recorder
    ) -> None:
        playlist = await catalog.playlist(cover_image_url="https://old.test/cover.jpg")

        result = await covers.save("https://img.test/tiny.png", playlist.id)

        assert not result.success
        assert result.stage is CoverStage.VERIFYING_SOURCE
        assert result.attempts == settings.cover.max_retries
        assert result.final_url is None
        assert result.previous_url == "https://old.test/cover.jpg"
        assert isinstance(result.error, VerificationFailedError)
        assert "too small" in result.error.detail
        assert sleep_recorder.calls == [1.0, 2.0, 4.0, 8.0]
        assert await catalog.cover_url(playlist.id) == "https://old.test/cover.jpg"
        assert _stored_files(settings) == []
        with pytest.raises(VerificationFailedError):
            result.raise_for_error()

    async def test_html_error_page_is_rejected(self, catalog, covers) -> None:
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/error.html", playlist.id)

        assert not result.success
        assert "signature" in result.errors[-1]

    async def test_http_errors_exhaust_retries_in_download_stage(
        self, catalog, covers, image_server
    ) -> None:
        _handler, hits = image_server
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/missing.png", playlist.id)

        assert not result.success
        assert result.stage is CoverStage.DOWNLOADING
        assert hits["/missing.png"] == 5

    async def test_flaky_source_recovers(self, catalog, covers, sleep_recorder) -> None:
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/flaky.png", playlist.id)

        assert result.success
        assert sleep_recorder.calls == [1.0, 2.0]

    async def test_data_url_gets_a_single_attempt(
        self, catalog, covers, sleep_recorder, png_bytes
    ) -> None:
        playlist = await catalog.playlist()

        bad = await covers.save(
            "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff").decode(), playlist.id
        )
        good = await covers.save(
            "data:image/png;base64," + base64.b64encode(png_bytes).decode(), playlist.id
        )

        assert not bad.success
        assert bad.attempts == 1
        assert good.success
        assert sleep_recorder.calls == []

    async def test_unknown_playlist_raises(self, covers) -> None:
        with pytest.raises(EntityNotFoundException):
            await covers.save("https://img.test/good.png", PlaylistId("nope"))


class TestDurableSources:
    async def test_same_durable_url_is_a_no_op(self, catalog, covers, storage, png_bytes) -> None:
        url = await storage.upload(png_bytes, "cover-existing.png", "image/png")
        playlist = await catalog.playlist(cover_image_url=f"{url}?v=123")

        result = await covers.save(url, playlist.id)

        assert result.success
        assert result.attempts == 0
        assert result.final_url == f"{url}?v=123"
        assert await catalog.cover_url(playlist.id) == f"{url}?v=123"

    async def test_other_durable_url_is_recorded_without_reupload(
        self, catalog, covers, storage, settings, png_bytes
    ) -> None:
        url = await storage.upload(png_bytes, "cover-shared.png", "image/png")
        playlist = await catalog.playlist()

        result = await covers.save(url, playlist.id)

        assert result.success
        assert await catalog.cover_url(playlist.id) == url
        assert len(_stored_files(settings)) == 1

    async def test_missing_durable_object_is_rejected(self, catalog, covers) -> None:
        playlist = await catalog.playlist(cover_image_url="https://old.test/a.jpg")

        result = await covers.save(f"{BASE}/cover-gone.png", playlist.id)

        assert not result.success
        assert result.stage is CoverStage.VERIFYING_SOURCE
        assert await catalog.cover_url(playlist.id) == "https://old.test/a.jpg"


class TestUploadAndDatabaseFailures:
    async def test_bad_upload_is_deleted_and_retried(
        self, catalog, session_scope, fetcher, settings, sleep_recorder, png_bytes
    ) -> None:
        storage = TruncatingStorage(settings.cover.local_dir, BASE, bad_uploads=1)
        covers = CoverImagePersistence(
            session_scope, storage, fetcher, settings.cover, sleep=sleep_recorder, clock=lambda: NOW
        )
        playlist = await catalog.playlist()

        result = await covers.save("https://img.test/good.png", playlist.id)

        assert result.success
        assert len(storage.deleted) == 1
        assert sleep_recorder.calls == [1.0]
        [stored] = _stored_files(settings)
        assert stored.read_bytes() == png_bytes

    async def test_db_failure_restores_previous_and_removes_blob(
        self, catalog, covers, settings, sleep_recorder, mocker
    ) -> None:
        playlist = await catalog.playlist(cover_image_url="https://old.test/a.jpg")
        mocker.patch.object(
            covers,
            "_write_cover_url",
            side_effect=OperationalError("UPDATE playlists", {}, Exception("disk I/O error")),
        )

        result = await covers.save("https://img.test/good.png", playlist.id)

        assert not result.success
        assert result.stage is CoverStage.DB_UPDATING
        assert result.final_url == "https://old.test/a.jpg"
        assert sleep_recorder.calls == [1.0, 2.0]
        assert await catalog.cover_url(playlist.id) == "https://old.test/a.jpg"
        assert _stored_files(settings) == []

    async def test_playlist_deleted_mid_save_removes_blob(
        self, catalog, covers, settings, mocker
    ) -> None:
        playlist = await catalog.playlist()
        mocker.patch.object(
            covers,
            "_write_cover_url",
            side_effect=EntityNotFoundException("Playlist", playlist.id.value),
        )

        with pytest.raises(EntityNotFoundException):
            await covers.save("https://img.test/good.png", playlist.id)

        assert _stored_files(settings) == []


class TestAudit:
    async def test_broken_durable_pointers_are_nulled(
        self, catalog, covers, storage, png_bytes
    ) -> None:
        good_url = await storage.upload(png_bytes, "cover-good.png", "image/png")
        await storage.upload(b"\x89PNG" + b"\x00" * 10, "cover-tiny.png", "image/png")
        healthy = await catalog.playlist(cover_image_url=f"{good_url}?v=1")
        tiny = await catalog.playlist(cover_image_url=f"{BASE}/cover-tiny.png?v=1")
        missing = await catalog.playlist(cover_image_url=f"{BASE}/cover-missing.png")
        external = await catalog.playlist(cover_image_url="https://mosaic.spotify.test/x.jpg")

        report = await covers.audit_covers()

        assert report.checked == 3
        assert report.valid == 1
        assert sorted(report.nulled) == sorted([tiny.id, missing.id])
        assert await catalog.cover_url(healthy.id) == f"{good_url}?v=1"
        assert await catalog.cover_url(tiny.id) is None
        assert await catalog.cover_url(missing.id) is None
        assert await catalog.cover_url(external.id) == "https://mosaic.spotify.test/x.jpg"

    async def test_verify_stored_url_reasons(self, covers, storage, png_bytes) -> None:
        url = await storage.upload(png_bytes, "cover-ok.png", "image/png")

        assert await covers.verify_stored_url(url) is None
        assert await covers.verify_stored_url("https://elsewhere.test/a.png") == (
            "not a durable storage URL"
        )
        assert "missing" in await covers.verify_stored_url(f"{BASE}/cover-nope.png")


class TestStripVersion:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://a.test/c.png?v=1", "https://a.test/c.png"),
            ("https://a.test/c.png?x=1&v=2", "https://a.test/c.png?x=1"),
            ("https://a.test/c.png", "https://a.test/c.png"),
            (None, None),
        ],
    )
    def test_strip_version(self, url, expected) -> None:
        assert strip_version(url) == expected
