"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from tracksync.domain.exceptions import ValidationException
from tracksync.domain.value_objects import ArtistId, PlaylistId, TrackId


class DurationUnit(str, Enum):
    """Unit a source system reports track durations in."""

    MILLISECONDS = "ms"
    SECONDS = "s"


# Hey future me, durations are ALWAYS stored in milliseconds. Importers must say which unit their
# source uses - there is deliberately no "if value < 30000 it's probably seconds" guessing, because
# a 20-second jingle in ms and a 5-hour mix in s are indistinguishable by magnitude.
def duration_ms_from(value: int | float, unit: DurationUnit) -> int:
    """Convert a source duration to canonical milliseconds.

    Raises:
        ValueError: If the value is negative
    """
    if value < 0:
        raise ValueError("Duration cannot be negative")
    if unit is DurationUnit.SECONDS:
        return round(value * 1000)
    return round(value)


@dataclass
class Artist:
    """Artist entity."""

    id: ArtistId
    name: str

    def __post_init__(self) -> None:
        """Validate artist data."""
        if not self.name or not self.name.strip():
            raise ValueError("Artist name cannot be empty")


# Listen, Track belongs to the CATALOG. Importers create tracks; the sync engine only reads them.
# artists is ordered - artists[0] is the primary (first-listed) artist.
@dataclass
class Track:
    """Track entity representing a canonical catalog track."""

    id: TrackId
    title: str
    duration_ms: int = 0
    explicit: bool = False
    popularity: int = 0
    preview_url: str | None = None
    artists: list[Artist] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        """Validate track data."""
        if not self.title or not self.title.strip():
            raise ValueError("Track title cannot be empty")
        if self.duration_ms < 0:
            raise ValueError("Duration cannot be negative")
        if not 0 <= self.popularity <= 100:
            raise ValueError("Popularity must be between 0 and 100")

    @property
    def primary_artist(self) -> Artist | None:
        """First-listed artist, if any."""
        return self.artists[0] if self.artists else None

    @property
    def duration(self) -> timedelta:
        """Duration as a timedelta."""
        return timedelta(milliseconds=self.duration_ms)


class PlatformEntityType(str, Enum):
    """Kinds of catalog entities that can carry platform ids."""

    TRACK = "track"
    ARTIST = "artist"
    ALBUM = "album"


@dataclass(frozen=True)
class PlatformId:
    """Mapping of a catalog entity to its identifier on one external platform.

    At most one PlatformId exists per (entity_type, entity_id, platform).
    """

    entity_type: PlatformEntityType
    entity_id: str
    platform: str
    external_id: str
    external_url: str | None = None

    def __post_init__(self) -> None:
        """Validate mapping."""
        if not self.external_id:
            raise ValueError("External id cannot be empty")
        if not self.platform:
            raise ValueError("Platform name cannot be empty")


@dataclass(frozen=True)
class PlaylistTrack:
    """Ordered membership of a track in a playlist (0-based position)."""

    playlist_id: PlaylistId
    track_id: TrackId
    position: int


# Yo, Playlist keeps track_ids as an ordered list - the list index IS the position, so positions
# are contiguous by construction. Always mutate through the methods below; they enforce the
# at-most-one-external-id rule and the "reorder must be a permutation" rule.
@dataclass
class Playlist:
    """Playlist entity owned by a user."""

    id: PlaylistId
    user_id: str
    title: str
    description: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    cover_image_url: str | None = None
    is_public: bool = True
    track_ids: list[TrackId] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        """Validate playlist data."""
        if not self.title or not self.title.strip():
            raise ValueError("Playlist title cannot be empty")
        if len(set(self.track_ids)) != len(self.track_ids):
            raise ValueError("Playlist cannot contain the same track twice")

    @property
    def is_linked(self) -> bool:
        """Check if the playlist exists on the external platform."""
        return self.external_id is not None

    @property
    def entries(self) -> list[PlaylistTrack]:
        """Playlist membership rows in position order."""
        return [
            PlaylistTrack(playlist_id=self.id, track_id=track_id, position=position)
            for position, track_id in enumerate(self.track_ids)
        ]

    def link_external(self, external_id: str, external_url: str | None) -> None:
        """Attach the external playlist id.

        Raises:
            ValidationException: If already linked to a different external playlist
        """
        if self.external_id and self.external_id != external_id:
            raise ValidationException(
                f"Playlist {self.id} is already linked to external playlist {self.external_id}"
            )
        self.external_id = external_id
        self.external_url = external_url
        self.updated_at = datetime.now(UTC)

    def add_tracks(self, track_ids: list[TrackId]) -> list[TrackId]:
        """Append tracks that are not already present.

        Returns:
            The tracks that were actually appended, in order
        """
        added: list[TrackId] = []
        for track_id in track_ids:
            if track_id not in self.track_ids:
                self.track_ids.append(track_id)
                added.append(track_id)
        if added:
            self.updated_at = datetime.now(UTC)
        return added

    def remove_track(self, track_id: TrackId) -> int:
        """Remove a track, closing the gap in positions.

        Returns:
            The position the track occupied

        Raises:
            ValidationException: If the track is not in the playlist
        """
        try:
            position = self.track_ids.index(track_id)
        except ValueError as e:
            raise ValidationException(
                f"Track {track_id} is not in playlist {self.id}"
            ) from e
        del self.track_ids[position]
        self.updated_at = datetime.now(UTC)
        return position

    def reorder(self, ordered_track_ids: list[TrackId]) -> None:
        """Replace the track order with a permutation of the current tracks.

        Raises:
            ValidationException: If the new order is not a permutation
        """
        if len(ordered_track_ids) != len(self.track_ids) or set(
            ordered_track_ids
        ) != set(self.track_ids):
            raise ValidationException(
                f"New order for playlist {self.id} is not a permutation of its tracks"
            )
        self.track_ids = list(ordered_track_ids)
        self.updated_at = datetime.now(UTC)


@dataclass(frozen=True)
class ExternalPlaylistRef:
    """Identity of a playlist on the external platform."""

    external_id: str
    external_url: str | None = None


@dataclass(frozen=True)
class ExternalPlaylistSnapshot:
    """Point-in-time view of an external playlist.

    item_ids holds the external track id of every item in order (items without
    a track id, e.g. local files, are skipped). total is the platform's count.
    """

    external_id: str
    name: str | None = None
    external_url: str | None = None
    item_ids: tuple[str, ...] = ()
    image_urls: tuple[str, ...] = ()
    total: int = 0
    snapshot_id: str | None = None
    includes_items: bool = True


@dataclass(frozen=True)
class TokenGrant:
    """Result of a refresh-token exchange."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None


@dataclass
class StoredCredential:
    """A bearer credential with its refresh token and absolute expiry."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime
    scope: str | None = None

    def is_expired(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        """Check if the token must be refreshed before use."""
        return now + margin >= self.expires_at


__all__ = [
    "Artist",
    "DurationUnit",
    "ExternalPlaylistRef",
    "ExternalPlaylistSnapshot",
    "PlatformEntityType",
    "PlatformId",
    "Playlist",
    "PlaylistTrack",
    "StoredCredential",
    "TokenGrant",
    "Track",
    "duration_ms_from",
]
