"""initial_tracksync_schema

Revision ID: a1c0001trk01
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hey future me - this is the whole catalog + sync schema in one go:
- artists / albums / tracks / track_artists: the local catalog the resolver searches
- platform_ids: external ids per catalog entity and platform
- playlists / playlist_tracks: user playlists, linked to the platform via external_id
- platform_credentials: OAuth tokens per credential scope ("user:<id>" or "service")

normalized_name / normalized_title are derived columns (see models.py @validates). If you ever
change normalize_text(), write a data migration that recomputes them or the resolver's
normalized stages silently stop matching old rows!
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1c0001trk01"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create catalog, playlist and credential tables."""
    op.create_table(
        "artists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_artists_normalized_name", "artists", ["normalized_name"])
    op.create_index("ix_artists_name_lower", "artists", [sa.text("lower(name)")])

    op.create_table(
        "albums",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("cover_url", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "tracks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("normalized_title", sa.String(255), nullable=False),
        sa.Column(
            "album_id",
            sa.String(36),
            sa.ForeignKey("albums.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("explicit", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("popularity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("preview_url", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tracks_normalized_title", "tracks", ["normalized_title"])
    op.create_index("ix_tracks_title_lower", "tracks", [sa.text("lower(title)")])

    op.create_table(
        "track_artists",
        sa.Column(
            "track_id",
            sa.String(36),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default="0"),
    )
    op.create_index("ix_track_artists_artist", "track_artists", ["artist_id"])

    op.create_table(
        "platform_ids",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("external_url", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "entity_type", "entity_id", "platform", name="uq_platform_ids_entity"
        ),
    )
    op.create_index(
        "ix_platform_ids_external", "platform_ids", ["platform", "external_id"]
    )

    op.create_table(
        "playlists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("external_url", sa.String(512), nullable=True),
        sa.Column("cover_image_url", sa.String(1024), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_playlists_user_id", "playlists", ["user_id"])
    op.create_index(
        "ix_playlists_external_id", "playlists", ["external_id"], unique=True
    )

    op.create_table(
        "playlist_tracks",
        sa.Column(
            "playlist_id",
            sa.String(36),
            sa.ForeignKey("playlists.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "track_id",
            sa.String(36),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("added_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_playlist_tracks_position", "playlist_tracks", ["playlist_id", "position"]
    )

    op.create_table(
        "platform_credentials",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("platform", sa.String(50), nullable=False, server_default="spotify"),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop everything (reverse FK order)."""
    op.drop_table("platform_credentials")
    op.drop_index("ix_playlist_tracks_position", table_name="playlist_tracks")
    op.drop_table("playlist_tracks")
    op.drop_index("ix_playlists_external_id", table_name="playlists")
    op.drop_index("ix_playlists_user_id", table_name="playlists")
    op.drop_table("playlists")
    op.drop_index("ix_platform_ids_external", table_name="platform_ids")
    op.drop_table("platform_ids")
    op.drop_index("ix_track_artists_artist", table_name="track_artists")
    op.drop_table("track_artists")
    op.drop_index("ix_tracks_title_lower", table_name="tracks")
    op.drop_index("ix_tracks_normalized_title", table_name="tracks")
    op.drop_table("tracks")
    op.drop_table("albums")
    op.drop_index("ix_artists_name_lower", table_name="artists")
    op.drop_index("ix_artists_normalized_name", table_name="artists")
    op.drop_table("artists")
