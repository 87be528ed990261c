"""External integrations (Spotify, cover storage, image fetching)."""

from tracksync.infrastructure.integrations.blob_storage import (
    FallbackBlobStorage,
    LocalBlobStorage,
    SupabaseBlobStorage,
)
from tracksync.infrastructure.integrations.http_pool import HttpClientPool
from tracksync.infrastructure.integrations.image_tools import (
    FetchedImage,
    ImageFetcher,
    decode_data_url,
    encode_jpeg_for_upload,
)
from tracksync.infrastructure.integrations.spotify_client import SpotifyClient, track_uri

__all__ = [
    "FallbackBlobStorage",
    "FetchedImage",
    "HttpClientPool",
    "ImageFetcher",
    "LocalBlobStorage",
    "SpotifyClient",
    "SupabaseBlobStorage",
    "decode_data_url",
    "encode_jpeg_for_upload",
    "track_uri",
]
