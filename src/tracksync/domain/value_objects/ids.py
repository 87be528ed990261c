"""Typed identifiers for domain entities."""

import uuid
from dataclasses import dataclass
from typing import Self


# Hey future me, ids are opaque strings wrapped in frozen dataclasses so a PlaylistId can never be
# passed where a TrackId is expected. They sort by their string value, which is what the resolver's
# "lowest id wins" tie-break relies on. Don't add int parsing here - ids are opaque on purpose.
@dataclass(frozen=True, order=True)
class EntityId:
    """Base class for string entity identifiers."""

    value: str

    def __post_init__(self) -> None:
        """Validate identifier."""
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError(f"{type(self).__name__} cannot be empty")

    @classmethod
    def generate(cls) -> Self:
        """Generate a new random identifier."""
        return cls(str(uuid.uuid4()))

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create identifier from its string form."""
        return cls(value.strip())

    def __str__(self) -> str:
        return self.value


class TrackId(EntityId):
    """Track identifier."""


class ArtistId(EntityId):
    """Artist identifier."""


class AlbumId(EntityId):
    """Album identifier."""


class PlaylistId(EntityId):
    """Playlist identifier."""
