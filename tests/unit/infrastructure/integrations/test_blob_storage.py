"""Tests for the cover blob storage backends."""

import httpx
import pytest

from tracksync.domain.exceptions import ExternalServiceError, ValidationException
from tracksync.infrastructure.integrations import (
    FallbackBlobStorage,
    HttpClientPool,
    LocalBlobStorage,
    SupabaseBlobStorage,
)

SUPABASE = "https://proj.supabase.test"


class FakeBucket:
    """In-memory Supabase Storage REST endpoint."""

    def __init__(self, fail_uploads: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_uploads = fail_uploads
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prefix = "/storage/v1/object/covers/"
        name = request.url.path.removeprefix(prefix)
        if request.method == "POST":
            if self.fail_uploads:
                return httpx.Response(500, text="bucket on fire")
            self.objects[name] = request.content
            return httpx.Response(200, json={"Key": f"covers/{name}"})
        if request.method == "GET":
            if name not in self.objects:
                # Older deployments answer a missing object with 400
                return httpx.Response(400, json={"statusCode": "404", "error": "not_found"})
            return httpx.Response(200, content=self.objects[name])
        if request.method == "DELETE":
            if self.objects.pop(name, None) is None:
                return httpx.Response(404)
            return httpx.Response(200, json={})
        return httpx.Response(405)


def _supabase(bucket: FakeBucket) -> SupabaseBlobStorage:
    pool = HttpClientPool(transport=httpx.MockTransport(bucket))
    return SupabaseBlobStorage(SUPABASE, "service-key", "covers", pool)


class TestLocalBlobStorage:
    async def test_upload_read_delete(self, tmp_path) -> None:
        storage = LocalBlobStorage(tmp_path / "covers", "https://cdn.test/covers/")

        url = await storage.upload(b"bytes", "cover-1.png", "image/png")

        assert url == "https://cdn.test/covers/cover-1.png"
        assert (tmp_path / "covers" / "cover-1.png").read_bytes() == b"bytes"
        assert await storage.read("cover-1.png") == b"bytes"
        assert await storage.delete("cover-1.png") is True
        assert await storage.read("cover-1.png") is None
        assert await storage.delete("cover-1.png") is False

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://cdn.test/covers/cover-1.png", "cover-1.png"),
            ("https://cdn.test/covers/cover-1.png?v=170", "cover-1.png"),
            ("https://cdn.test/covers/nested/cover-1.png", None),
            ("https://cdn.test/covers/", None),
            ("https://elsewhere.test/covers/cover-1.png", None),
        ],
    )
    def test_filename_from_url(self, tmp_path, url, expected) -> None:
        storage = LocalBlobStorage(tmp_path, "https://cdn.test/covers")

        assert storage.filename_from_url(url) == expected

    def test_relative_public_prefix(self, tmp_path) -> None:
        storage = LocalBlobStorage(tmp_path)

        assert storage.get_public_url("a.png") == "/covers/a.png"
        assert storage.filename_from_url("/covers/a.png?v=2") == "a.png"

    @pytest.mark.parametrize("filename", ["", "../etc/passwd", "a/b.png", ".hidden", "a\\b.png"])
    async def test_path_like_filenames_are_rejected(self, tmp_path, filename) -> None:
        storage = LocalBlobStorage(tmp_path)

        with pytest.raises(ValidationException):
            await storage.upload(b"x", filename, "image/png")


class TestSupabaseBlobStorage:
    async def test_upload_read_delete(self) -> None:
        bucket = FakeBucket()
        storage = _supabase(bucket)

        url = await storage.upload(b"data", "cover-1.png", "image/png")

        assert url == f"{SUPABASE}/storage/v1/object/public/covers/cover-1.png"
        upload = bucket.requests[0]
        assert upload.headers["Authorization"] == "Bearer service-key"
        assert upload.headers["apikey"] == "service-key"
        assert upload.headers["x-upsert"] == "true"
        assert upload.headers["Content-Type"] == "image/png"
        assert await storage.read("cover-1.png") == b"data"
        assert await storage.delete("cover-1.png") is True
        assert await storage.read("cover-1.png") is None
        assert await storage.delete("cover-1.png") is False

    async def test_failed_upload_raises(self) -> None:
        storage = _supabase(FakeBucket(fail_uploads=True))

        with pytest.raises(ExternalServiceError) as exc_info:
            await storage.upload(b"data", "cover-1.png", "image/png")

        assert exc_info.value.status_code == 500

    def test_filename_from_public_url(self) -> None:
        storage = _supabase(FakeBucket())

        public = f"{SUPABASE}/storage/v1/object/public/covers/cover-1.png?v=9"
        assert storage.filename_from_url(public) == "cover-1.png"
        assert storage.filename_from_url(f"{SUPABASE}/storage/v1/object/covers/x.png") is None


class TestFallbackBlobStorage:
    async def test_upload_falls_back_to_local(self, tmp_path) -> None:
        local = LocalBlobStorage(tmp_path, "https://cdn.test/covers")
        primary = _supabase(FakeBucket(fail_uploads=True))
        storage = FallbackBlobStorage(primary=primary, fallback=local)

        url = await storage.upload(b"data", "cover-1.png", "image/png")

        assert url == "https://cdn.test/covers/cover-1.png"
        assert storage.filename_from_url(url) == "cover-1.png"
        assert await storage.read("cover-1.png") == b"data"
        assert await storage.delete("cover-1.png") is True
        assert await local.read("cover-1.png") is None

    async def test_primary_wins_when_healthy(self, tmp_path) -> None:
        bucket = FakeBucket()
        local = LocalBlobStorage(tmp_path, "https://cdn.test/covers")
        storage = FallbackBlobStorage(primary=_supabase(bucket), fallback=local)

        url = await storage.upload(b"data", "cover-2.png", "image/png")

        assert url.startswith(f"{SUPABASE}/storage/v1/object/public/covers/")
        assert bucket.objects == {"cover-2.png": b"data"}
        assert await local.read("cover-2.png") is None
