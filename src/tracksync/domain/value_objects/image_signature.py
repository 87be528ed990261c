"""Magic-byte checks for image payloads.

Hey future me - broken image URLs love to answer 200 with an HTML error page or a 3-byte body.
Checking size AND signature before trusting bytes catches both. Only PNG, JPEG and WebP are
accepted because that's what the cover pipeline can store and the platform can display.
"""

from enum import Enum

PNG_SIGNATURE = b"\x89PNG"
JPEG_SIGNATURE = b"\xff\xd8"
RIFF_SIGNATURE = b"RIFF"
WEBP_MARKER = b"WEBP"


class ImageFormat(str, Enum):
    """Recognized image formats."""

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def content_type(self) -> str:
        """MIME type for this format."""
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        """File extension (without dot) for this format."""
        return "jpg" if self is ImageFormat.JPEG else self.value


def sniff_image_format(data: bytes) -> ImageFormat | None:
    """Detect the image format from leading bytes.

    Returns:
        Detected format, or None if the signature is not recognized
    """
    if data.startswith(PNG_SIGNATURE):
        return ImageFormat.PNG
    if data.startswith(JPEG_SIGNATURE):
        return ImageFormat.JPEG
    if data.startswith(RIFF_SIGNATURE) and data[8:12] == WEBP_MARKER:
        return ImageFormat.WEBP
    return None


def check_image_payload(data: bytes, min_bytes: int) -> str | None:
    """Validate an image payload.

    Args:
        data: Raw bytes
        min_bytes: Smallest acceptable payload

    Returns:
        None if the payload looks like a real image, otherwise a reason string
    """
    if len(data) < min_bytes:
        return f"payload too small ({len(data)} bytes < {min_bytes})"
    if sniff_image_format(data) is None:
        return f"unrecognized image signature {data[:12].hex()}"
    return None
