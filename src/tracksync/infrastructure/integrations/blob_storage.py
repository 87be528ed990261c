"""Durable blob storage backends for playlist cover images.

Two backends implement IBlobStorage:

- LocalBlobStorage: files under a directory, served from a public URL prefix
- SupabaseBlobStorage: Supabase Storage bucket via its REST API (httpx)

FallbackBlobStorage wraps a cloud backend and writes to local disk when the
cloud upload fails, so a flaky bucket never costs us a cover.
"""

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlsplit

import httpx

from tracksync.domain.exceptions import ExternalServiceError, ValidationException
from tracksync.domain.ports import IBlobStorage
from tracksync.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)


def _check_filename(filename: str) -> None:
    # Covers are flat objects; anything path-like is a bug or an attack
    if not filename or "/" in filename or "\\" in filename or filename.startswith("."):
        raise ValidationException(f"Invalid blob filename: {filename!r}")


def _strip_query(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme:
        return f"{parts.scheme}://{parts.netloc}{parts.path}"
    return parts.path


class LocalBlobStorage(IBlobStorage):
    """Cover storage on the local filesystem.

    Disk I/O runs in the default thread pool so the event loop never blocks
    on a slow volume.
    """

    def __init__(self, base_dir: Path, public_base_url: str = "/covers") -> None:
        self.base_dir = Path(base_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, filename: str) -> Path:
        _check_filename(filename)
        return self.base_dir / filename

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        path = self._path(filename)

        def _write() -> None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored %s locally (%d bytes, %s)", filename, len(data), content_type)
        return self.get_public_url(filename)

    def get_public_url(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    async def read(self, filename: str) -> bytes | None:
        path = self._path(filename)
        if not await asyncio.to_thread(path.is_file):
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, filename: str) -> bool:
        path = self._path(filename)

        def _unlink() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        deleted = await asyncio.to_thread(_unlink)
        if deleted:
            logger.debug("Deleted local cover %s", filename)
        return deleted

    def filename_from_url(self, url: str) -> str | None:
        prefix = f"{self.public_base_url}/"
        path = _strip_query(url)
        if not path.startswith(prefix):
            return None
        filename = path[len(prefix) :]
        if not filename or "/" in filename:
            return None
        return filename


# Hey future me - Supabase Storage REST in four calls:
#   upload: POST   {url}/storage/v1/object/{bucket}/{name}  (x-upsert: true overwrites)
#   read:   GET    {url}/storage/v1/object/{bucket}/{name}
#   delete: DELETE {url}/storage/v1/object/{bucket}/{name}
#   public: {url}/storage/v1/object/public/{bucket}/{name}  (bucket must be public)
# A missing object comes back as 404, or as 400 with statusCode "404" in the body on older
# deployments, so read/delete treat both as "not there".
class SupabaseBlobStorage(IBlobStorage):
    """Cover storage in a Supabase Storage bucket."""

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        bucket: str,
        http_pool: HttpClientPool,
        timeout: float = 30.0,
    ) -> None:
        self.supabase_url = supabase_url.rstrip("/")
        self.bucket = bucket
        self._api_key = api_key
        self._http_pool = http_pool
        self._timeout = timeout

    def _object_url(self, filename: str) -> str:
        _check_filename(filename)
        return f"{self.supabase_url}/storage/v1/object/{self.bucket}/{filename}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "apikey": self._api_key}

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        client = await self._http_pool.get_client()
        response = await client.post(
            self._object_url(filename),
            content=data,
            headers={**self._headers(), "Content-Type": content_type, "x-upsert": "true"},
            timeout=self._timeout,
        )
        if not response.is_success:
            raise ExternalServiceError(
                f"Supabase upload of {filename} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                platform_message=response.text[:200],
            )
        logger.debug("Uploaded %s to bucket %s (%d bytes)", filename, self.bucket, len(data))
        return self.get_public_url(filename)

    def get_public_url(self, filename: str) -> str:
        return f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/{filename}"

    async def read(self, filename: str) -> bytes | None:
        client = await self._http_pool.get_client()
        response = await client.get(
            self._object_url(filename), headers=self._headers(), timeout=self._timeout
        )
        if response.status_code in (400, 404):
            return None
        if not response.is_success:
            raise ExternalServiceError(
                f"Supabase read of {filename} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                platform_message=response.text[:200],
            )
        return response.content

    async def delete(self, filename: str) -> bool:
        client = await self._http_pool.get_client()
        response = await client.delete(
            self._object_url(filename), headers=self._headers(), timeout=self._timeout
        )
        if response.status_code in (400, 404):
            return False
        if not response.is_success:
            raise ExternalServiceError(
                f"Supabase delete of {filename} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                platform_message=response.text[:200],
            )
        return True

    def filename_from_url(self, url: str) -> str | None:
        prefix = f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/"
        path = _strip_query(url)
        if not path.startswith(prefix):
            return None
        filename = path[len(prefix) :]
        if not filename or "/" in filename:
            return None
        return filename


class FallbackBlobStorage(IBlobStorage):
    """Primary (cloud) storage with a local fallback for uploads.

    Reads and deletes go to whichever backend holds the object; the URL
    decides that, so callers should resolve filenames via filename_from_url.
    """

    def __init__(self, primary: IBlobStorage, fallback: IBlobStorage) -> None:
        self.primary = primary
        self.fallback = fallback

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        try:
            return await self.primary.upload(data, filename, content_type)
        except (ExternalServiceError, httpx.HTTPError) as e:
            logger.warning(
                "Primary cover storage failed for %s, falling back to local: %s", filename, e
            )
            return await self.fallback.upload(data, filename, content_type)

    def get_public_url(self, filename: str) -> str:
        return self.primary.get_public_url(filename)

    async def read(self, filename: str) -> bytes | None:
        data = await self.primary.read(filename)
        if data is not None:
            return data
        return await self.fallback.read(filename)

    async def delete(self, filename: str) -> bool:
        deleted_primary = await self.primary.delete(filename)
        deleted_fallback = await self.fallback.delete(filename)
        return deleted_primary or deleted_fallback

    def filename_from_url(self, url: str) -> str | None:
        return self.primary.filename_from_url(url) or self.fallback.filename_from_url(url)


__all__ = ["FallbackBlobStorage", "LocalBlobStorage", "SupabaseBlobStorage"]
