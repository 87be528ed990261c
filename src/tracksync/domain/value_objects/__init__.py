"""Domain value objects."""

from tracksync.domain.value_objects.candidates import (
    CandidateById,
    CandidateByTitleArtist,
    RecommendationCandidate,
    parse_candidate,
)
from tracksync.domain.value_objects.ids import (
    AlbumId,
    ArtistId,
    EntityId,
    PlaylistId,
    TrackId,
)
from tracksync.domain.value_objects.image_signature import (
    ImageFormat,
    check_image_payload,
    sniff_image_format,
)
from tracksync.domain.value_objects.text_normalization import (
    ascii_fold,
    normalize_text,
    sanitize_platform_text,
)

__all__ = [
    "AlbumId",
    "ArtistId",
    "CandidateById",
    "CandidateByTitleArtist",
    "EntityId",
    "ImageFormat",
    "PlaylistId",
    "RecommendationCandidate",
    "TrackId",
    "ascii_fold",
    "check_image_payload",
    "normalize_text",
    "parse_candidate",
    "sanitize_platform_text",
    "sniff_image_format",
]
