"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from tracksync.domain.entities import (
    Artist,
    ExternalPlaylistRef,
    ExternalPlaylistSnapshot,
    PlatformEntityType,
    PlatformId,
    Playlist,
    StoredCredential,
    TokenGrant,
    Track,
)
from tracksync.domain.value_objects import ArtistId, PlaylistId, TrackId


class IArtistRepository(ABC):
    """Repository interface for Artist entities."""

    @abstractmethod
    async def add(self, artist: Artist) -> None:
        """Add a new artist."""
        pass

    @abstractmethod
    async def get_by_id(self, artist_id: ArtistId) -> Artist | None:
        """Get an artist by ID."""
        pass

    @abstractmethod
    async def find_ids_by_name(self, name: str) -> list[ArtistId]:
        """Find artists whose name matches case-insensitively, ordered by id."""
        pass

    @abstractmethod
    async def find_ids_by_normalized_name(self, normalized_name: str) -> list[ArtistId]:
        """Find artists by normalized name key, ordered by id."""
        pass


# Hey future me, the two find_first_* methods are the whole resolver contract. They MUST return
# the lowest-id row when several match, otherwise repeated resolution runs stop being idempotent.
# artist_ids=None means "any artist"; an EMPTY list means "no artist qualifies" -> no match.
class ITrackRepository(ABC):
    """Repository interface for catalog Track entities."""

    @abstractmethod
    async def add(self, track: Track) -> None:
        """Add a new track with its ordered artist credits."""
        pass

    @abstractmethod
    async def get_by_id(self, track_id: TrackId) -> Track | None:
        """Get a track by ID."""
        pass

    @abstractmethod
    async def find_first_by_title(
        self, title: str, artist_ids: Sequence[ArtistId] | None = None
    ) -> Track | None:
        """Case-insensitive exact title match, optionally artist-scoped."""
        pass

    @abstractmethod
    async def find_first_by_normalized_title(
        self, normalized_title: str, artist_ids: Sequence[ArtistId] | None = None
    ) -> Track | None:
        """Normalized-title match, optionally artist-scoped."""
        pass


class IPlatformIdRepository(ABC):
    """Repository interface for external platform id mappings."""

    @abstractmethod
    async def upsert(self, platform_id: PlatformId) -> None:
        """Create or replace the mapping for (entity_type, entity_id, platform)."""
        pass

    @abstractmethod
    async def get(
        self, entity_type: PlatformEntityType, entity_id: str, platform: str
    ) -> PlatformId | None:
        """Get the mapping for one entity on one platform."""
        pass

    @abstractmethod
    async def get_external_ids(
        self,
        entity_type: PlatformEntityType,
        entity_ids: Sequence[str],
        platform: str,
    ) -> dict[str, str]:
        """Map entity ids to external ids (entities without a mapping are omitted)."""
        pass


class IPlaylistRepository(ABC):
    """Repository interface for Playlist entities."""

    @abstractmethod
    async def add(self, playlist: Playlist) -> None:
        """Add a new playlist with its tracks."""
        pass

    @abstractmethod
    async def get_by_id(self, playlist_id: PlaylistId) -> Playlist | None:
        """Get a playlist with its ordered track ids."""
        pass

    @abstractmethod
    async def update(self, playlist: Playlist) -> None:
        """Persist metadata and track order of an existing playlist."""
        pass

    @abstractmethod
    async def get_cover_url(self, playlist_id: PlaylistId) -> str | None:
        """Read the stored cover pointer."""
        pass

    @abstractmethod
    async def set_cover_url(self, playlist_id: PlaylistId, url: str | None) -> None:
        """Write the cover pointer."""
        pass

    @abstractmethod
    async def list_cover_urls(self) -> list[tuple[PlaylistId, str]]:
        """List every playlist that has a cover pointer."""
        pass


class ICredentialStore(ABC):
    """Where a platform credential lives (per-user row or service account)."""

    @property
    @abstractmethod
    def scope_name(self) -> str:
        """Label used in logs, e.g. "user:42" or "service"."""
        pass

    @abstractmethod
    async def load(self) -> StoredCredential | None:
        """Load the current credential, or None if none is configured."""
        pass

    @abstractmethod
    async def save(self, credential: StoredCredential) -> None:
        """Persist a refreshed credential."""
        pass

    @abstractmethod
    async def mark_invalid(self, reason: str) -> None:
        """Record that the refresh token is dead and re-auth is required."""
        pass


class ITokenRefresher(ABC):
    """Performs the refresh-token grant against the platform."""

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            TokenRefreshException: If the platform rejects the refresh token
        """
        pass


class IStreamingPlatformClient(ABC):
    """Port for the external streaming platform's playlist API."""

    platform_name: str

    @abstractmethod
    async def create_playlist(
        self,
        access_token: str,
        owner_id: str | None,
        title: str,
        description: str,
        is_public: bool,
    ) -> ExternalPlaylistRef:
        """Create an external playlist."""
        pass

    @abstractmethod
    async def add_tracks(
        self, access_token: str, external_id: str, external_track_ids: Sequence[str]
    ) -> str | None:
        """Append tracks (one request, at most the platform's item limit).

        Returns:
            New snapshot id if the platform reports one
        """
        pass

    @abstractmethod
    async def remove_tracks(
        self, access_token: str, external_id: str, external_track_ids: Sequence[str]
    ) -> str | None:
        """Remove every occurrence of the given tracks (one request)."""
        pass

    @abstractmethod
    async def move_items(
        self,
        access_token: str,
        external_id: str,
        range_start: int,
        insert_before: int,
        range_length: int = 1,
        snapshot_id: str | None = None,
    ) -> str | None:
        """Move a contiguous range of items to a new position."""
        pass

    @abstractmethod
    async def get_playlist(
        self, access_token: str, external_id: str, include_tracks: bool = True
    ) -> ExternalPlaylistSnapshot:
        """Fetch playlist metadata (and all items when include_tracks)."""
        pass

    @abstractmethod
    async def upload_cover_image(
        self, access_token: str, external_id: str, base64_jpeg: str
    ) -> None:
        """Replace the playlist cover with a base64-encoded JPEG."""
        pass


class IBlobStorage(ABC):
    """Durable, name-addressed blob storage for cover images."""

    @abstractmethod
    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        """Store bytes (overwriting) and return the public URL."""
        pass

    @abstractmethod
    def get_public_url(self, filename: str) -> str:
        """Public URL for a stored filename."""
        pass

    @abstractmethod
    async def read(self, filename: str) -> bytes | None:
        """Read stored bytes back, or None if the object doesn't exist."""
        pass

    @abstractmethod
    async def delete(self, filename: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        pass

    @abstractmethod
    def filename_from_url(self, url: str) -> str | None:
        """Return the stored filename if url points into this storage, else None."""
        pass


__all__ = [
    "IArtistRepository",
    "IBlobStorage",
    "ICredentialStore",
    "IPlatformIdRepository",
    "IPlaylistRepository",
    "IStreamingPlatformClient",
    "ITokenRefresher",
    "ITrackRepository",
]
