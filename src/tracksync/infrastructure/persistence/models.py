"""SQLAlchemy ORM models for tracksync."""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from tracksync.domain.value_objects import normalize_text


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - naive datetimes cause comparison bugs the moment two servers disagree on local time.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Stored UTC datetimes come back naive.
# ALWAYS pass DB datetimes through this before comparing with datetime.now(UTC), or you get the
# "can't compare offset-naive and offset-aware datetimes" TypeError.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, normalized_name is DERIVED from name via @validates - never set it by hand. It's what
# lets the resolver do "normalized artist" matching as an indexed equality lookup instead of
# loading the whole artist table into Python.
class ArtistModel(Base):
    """SQLAlchemy model for catalog artists."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    @validates("name")
    def _sync_normalized_name(self, _key: str, value: str) -> str:
        self.normalized_name = normalize_text(value)
        return value

    __table_args__ = (Index("ix_artists_name_lower", sa.func.lower(name)),)


class AlbumModel(Base):
    """SQLAlchemy model for catalog albums."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    cover_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


# Hey future me, duration_ms is THE canonical unit. No seconds, no guessing. Importers convert
# with duration_ms_from() before a row ever gets here.
class TrackModel(Base):
    """SQLAlchemy model for catalog tracks."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_title: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    album_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("albums.id", ondelete="SET NULL"), nullable=True
    )
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    explicit: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    popularity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    preview_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    artist_links: Mapped[list["TrackArtistModel"]] = relationship(
        "TrackArtistModel",
        back_populates="track",
        cascade="all, delete-orphan",
        order_by="TrackArtistModel.position",
    )

    @validates("title")
    def _sync_normalized_title(self, _key: str, value: str) -> str:
        self.normalized_title = normalize_text(value)
        return value

    __table_args__ = (Index("ix_tracks_title_lower", sa.func.lower(title)),)


class TrackArtistModel(Base):
    """Ordered Track-Artist credit (position 0 is the primary artist)."""

    __tablename__ = "track_artists"

    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_primary: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )

    track: Mapped["TrackModel"] = relationship(
        "TrackModel", back_populates="artist_links"
    )
    artist: Mapped["ArtistModel"] = relationship("ArtistModel", lazy="joined")

    __table_args__ = (Index("ix_track_artists_artist", "artist_id"),)


class PlatformIdModel(Base):
    """External identifier of a catalog entity on one platform."""

    __tablename__ = "platform_ids"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    # 'track', 'artist' or 'album' (plain string for SQLite compatibility)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "platform", name="uq_platform_ids_entity"
        ),
        Index("ix_platform_ids_external", "platform", "external_id"),
    )


# Hey future me - cover_image_url may carry a "?v=<timestamp>" cache buster. Compare covers with
# the suffix stripped when deciding "is this already our durable URL".
class PlaylistModel(Base):
    """SQLAlchemy model for user playlists."""

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    external_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cover_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_public: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="1", default=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    playlist_tracks: Mapped[list["PlaylistTrackModel"]] = relationship(
        "PlaylistTrackModel",
        back_populates="playlist",
        cascade="all, delete-orphan",
        order_by="PlaylistTrackModel.position",
    )


class PlaylistTrackModel(Base):
    """Association table for Playlist-Track relationship."""

    __tablename__ = "playlist_tracks"

    playlist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("playlists.id", ondelete="CASCADE"), primary_key=True
    )
    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    added_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    playlist: Mapped["PlaylistModel"] = relationship(
        "PlaylistModel", back_populates="playlist_tracks"
    )

    __table_args__ = (Index("ix_playlist_tracks_position", "playlist_id", "position"),)


# Yo, one row per credential scope: "user:<user_id>" for end users, "service" for the shared
# service account. is_valid flips to False when the refresh token dies so we stop retrying it.
class PlatformCredentialModel(Base):
    """OAuth credential for one platform scope."""

    __tablename__ = "platform_credentials"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False, default="spotify")
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    scopes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_valid: Mapped[bool] = mapped_column(default=True, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_refreshed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def is_expired(self) -> bool:
        """Check if token is expired (past expiration time)."""
        return utc_now() >= ensure_utc_aware(self.token_expires_at)
