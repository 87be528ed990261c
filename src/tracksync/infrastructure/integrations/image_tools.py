"""Image download and re-encoding helpers for the cover pipeline."""

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from io import BytesIO

from PIL import Image

from tracksync.domain.exceptions import ExternalServiceError
from tracksync.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:image/([a-zA-Z]+);base64,(.+)$", re.DOTALL)

# Quality ladder for the platform upload; each step trades detail for bytes
JPEG_QUALITY_STEPS = (90, 80, 70, 60, 50, 40)
MIN_EDGE_PIXELS = 160


@dataclass(frozen=True)
class FetchedImage:
    """Raw image bytes plus whatever the source claimed they were."""

    data: bytes
    declared_type: str | None = None


def decode_data_url(source: str) -> FetchedImage:
    """Decode a base64 ``data:image/...`` URL.

    Raises:
        ValueError: If the string is not a base64 image data URL
    """
    match = DATA_URL_PATTERN.match(source.strip())
    if not match:
        raise ValueError("Not a base64 image data URL")
    try:
        data = base64.b64decode(match.group(2), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload in data URL: {e}") from e
    return FetchedImage(data=data, declared_type=f"image/{match.group(1).lower()}")


class ImageFetcher:
    """Fetches cover bytes from an HTTP(S) URL or an inline data URL."""

    def __init__(
        self,
        http_pool: HttpClientPool,
        user_agent: str = "Tracksync-CoverBot/1.0",
        timeout: float = 30.0,
    ) -> None:
        self._http_pool = http_pool
        self._user_agent = user_agent
        self._timeout = timeout

    async def fetch(self, source: str) -> FetchedImage:
        """Get the bytes behind a cover source.

        Raises:
            ValueError: If the source is neither an http(s) URL nor a data URL
            ExternalServiceError: If the HTTP download returns an error status
            httpx.HTTPError: On transport failures
        """
        if source.startswith("data:"):
            return decode_data_url(source)
        if not source.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported cover source: {source[:60]}")

        client = await self._http_pool.get_client()
        response = await client.get(
            source,
            headers={"User-Agent": self._user_agent},
            timeout=self._timeout,
        )
        if not response.is_success:
            raise ExternalServiceError(
                f"Cover download failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return FetchedImage(
            data=response.content,
            declared_type=response.headers.get("Content-Type"),
        )


# Hey future me, Spotify caps cover uploads at 256 KB of JPEG (before base64) and is noticeably
# flakier above ~80 KB. We walk down the quality ladder first and only then start shrinking the
# image, because a 640px cover at quality 60 still looks fine in the app. Pillow is CPU-bound,
# so the whole thing runs in a worker thread.
def _encode_jpeg_sync(data: bytes, max_bytes: int) -> bytes:
    with Image.open(BytesIO(data)) as source:
        img = source.convert("RGB") if source.mode != "RGB" else source.copy()

    while True:
        for quality in JPEG_QUALITY_STEPS:
            output = BytesIO()
            img.save(output, format="JPEG", quality=quality, optimize=True)
            encoded = output.getvalue()
            if len(encoded) <= max_bytes:
                return encoded

        width, height = img.size
        if min(width, height) <= MIN_EDGE_PIXELS:
            raise ValueError(
                f"Cannot encode cover below {max_bytes} bytes (still {len(encoded)} bytes "
                f"at {width}x{height})"
            )
        img = img.resize(
            (max(1, int(width * 0.75)), max(1, int(height * 0.75))),
            Image.Resampling.LANCZOS,
        )


async def encode_jpeg_for_upload(
    data: bytes, max_bytes: int, warn_bytes: int | None = None
) -> bytes:
    """Re-encode any supported image as a JPEG no larger than max_bytes.

    Args:
        data: Source image bytes (PNG, JPEG or WebP)
        max_bytes: Hard size limit of the upload target
        warn_bytes: Log a warning when the result is above this size

    Returns:
        JPEG bytes

    Raises:
        ValueError: If the bytes are not a decodable image or cannot be made small enough
    """
    # Truncated or corrupt files pass Image.open() (it only reads the header) and blow up later
    # in load() with a plain OSError; a few Pillow plugins report broken chunks as SyntaxError.
    # UnidentifiedImageError is an OSError too.
    try:
        encoded = await asyncio.to_thread(_encode_jpeg_sync, data, max_bytes)
    except (OSError, SyntaxError, Image.DecompressionBombError) as e:
        raise ValueError(f"Not a decodable image: {e}") from e

    if warn_bytes is not None and len(encoded) > warn_bytes:
        logger.warning(
            "Cover JPEG is %d bytes (above %d); platform uploads this large often fail",
            len(encoded),
            warn_bytes,
        )
    return encoded


__all__ = [
    "FetchedImage",
    "ImageFetcher",
    "decode_data_url",
    "encode_jpeg_for_upload",
]
