"""Infrastructure persistence layer."""

from .credential_store import DatabaseCredentialStore
from .database import Database, SessionScope
from .models import (
    AlbumModel,
    ArtistModel,
    Base,
    PlatformCredentialModel,
    PlatformIdModel,
    PlaylistModel,
    PlaylistTrackModel,
    TrackArtistModel,
    TrackModel,
)
from .repositories import (
    ArtistRepository,
    PlatformIdRepository,
    PlaylistRepository,
    TrackRepository,
)
from .retry import is_lock_error, with_db_retry

__all__ = [
    # Database
    "Database",
    "SessionScope",
    "Base",
    # Models
    "AlbumModel",
    "ArtistModel",
    "PlatformCredentialModel",
    "PlatformIdModel",
    "PlaylistModel",
    "PlaylistTrackModel",
    "TrackArtistModel",
    "TrackModel",
    # Repositories
    "ArtistRepository",
    "DatabaseCredentialStore",
    "PlatformIdRepository",
    "PlaylistRepository",
    "TrackRepository",
    # Retry
    "is_lock_error",
    "with_db_retry",
]
