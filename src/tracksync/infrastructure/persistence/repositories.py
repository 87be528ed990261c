"""Repository implementations for domain entities."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tracksync.domain.entities import (
    Artist,
    PlatformEntityType,
    PlatformId,
    Playlist,
    Track,
)
from tracksync.domain.exceptions import EntityNotFoundException
from tracksync.domain.ports import (
    IArtistRepository,
    IPlatformIdRepository,
    IPlaylistRepository,
    ITrackRepository,
)
from tracksync.domain.value_objects import ArtistId, PlaylistId, TrackId

from .models import (
    ArtistModel,
    PlatformIdModel,
    PlaylistModel,
    PlaylistTrackModel,
    TrackArtistModel,
    TrackModel,
)


class ArtistRepository(IArtistRepository):
    """SQLAlchemy implementation of Artist repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, artist: Artist) -> None:
        """Add a new artist."""
        self.session.add(ArtistModel(id=artist.id.value, name=artist.name))
        await self.session.flush()

    async def get_by_id(self, artist_id: ArtistId) -> Artist | None:
        """Get an artist by ID."""
        model = await self.session.get(ArtistModel, artist_id.value)
        if model is None:
            return None
        return Artist(id=ArtistId.from_string(model.id), name=model.name)

    async def find_ids_by_name(self, name: str) -> list[ArtistId]:
        """Find artists whose name matches case-insensitively, ordered by id."""
        stmt = (
            select(ArtistModel.id)
            .where(func.lower(ArtistModel.name) == name.strip().lower())
            .order_by(ArtistModel.id)
        )
        result = await self.session.execute(stmt)
        return [ArtistId.from_string(row) for row in result.scalars().all()]

    async def find_ids_by_normalized_name(self, normalized_name: str) -> list[ArtistId]:
        """Find artists by normalized name key, ordered by id."""
        if not normalized_name:
            return []
        stmt = (
            select(ArtistModel.id)
            .where(ArtistModel.normalized_name == normalized_name)
            .order_by(ArtistModel.id)
        )
        result = await self.session.execute(stmt)
        return [ArtistId.from_string(row) for row in result.scalars().all()]


# Hey future me, every finder here ends with .order_by(TrackModel.id).limit(1). That's the
# deterministic tie-break: two "Intro" tracks in the catalog -> always the same one comes back.
# Don't "improve" this to order by popularity, it breaks idempotent re-resolution.
class TrackRepository(ITrackRepository):
    """SQLAlchemy implementation of catalog Track repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, track: Track) -> None:
        """Add a new track; artists must already exist (artists[0] is primary)."""
        model = TrackModel(
            id=track.id.value,
            title=track.title,
            duration_ms=track.duration_ms,
            explicit=track.explicit,
            popularity=track.popularity,
            preview_url=track.preview_url,
            created_at=track.created_at,
        )
        model.artist_links = [
            TrackArtistModel(
                artist_id=artist.id.value, position=position, is_primary=position == 0
            )
            for position, artist in enumerate(track.artists)
        ]
        self.session.add(model)
        await self.session.flush()

    # populate_existing: rows added earlier in the same session must not keep unloaded
    # relationships around, a lazy load under asyncio raises MissingGreenlet
    def _base_query(self) -> Select[tuple[TrackModel]]:
        return (
            select(TrackModel)
            .options(
                selectinload(TrackModel.artist_links).joinedload(
                    TrackArtistModel.artist
                )
            )
            .execution_options(populate_existing=True)
        )

    async def get_by_id(self, track_id: TrackId) -> Track | None:
        """Get a track by ID."""
        stmt = self._base_query().where(TrackModel.id == track_id.value)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_first_by_title(
        self, title: str, artist_ids: Sequence[ArtistId] | None = None
    ) -> Track | None:
        """Case-insensitive exact title match, optionally artist-scoped."""
        stmt = self._base_query().where(
            func.lower(TrackModel.title) == title.strip().lower()
        )
        return await self._first(stmt, artist_ids)

    async def find_first_by_normalized_title(
        self, normalized_title: str, artist_ids: Sequence[ArtistId] | None = None
    ) -> Track | None:
        """Normalized-title match, optionally artist-scoped."""
        if not normalized_title:
            return None
        stmt = self._base_query().where(TrackModel.normalized_title == normalized_title)
        return await self._first(stmt, artist_ids)

    async def _first(
        self,
        stmt: Select[tuple[TrackModel]],
        artist_ids: Sequence[ArtistId] | None,
    ) -> Track | None:
        if artist_ids is not None:
            if not artist_ids:
                return None
            credited = select(TrackArtistModel.track_id).where(
                TrackArtistModel.artist_id.in_([a.value for a in artist_ids])
            )
            stmt = stmt.where(TrackModel.id.in_(credited))
        stmt = stmt.order_by(TrackModel.id).limit(1)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    @staticmethod
    def _to_entity(model: TrackModel) -> Track:
        return Track(
            id=TrackId.from_string(model.id),
            title=model.title,
            duration_ms=model.duration_ms,
            explicit=model.explicit,
            popularity=model.popularity,
            preview_url=model.preview_url,
            artists=[
                Artist(id=ArtistId.from_string(link.artist.id), name=link.artist.name)
                for link in model.artist_links
            ],
            created_at=model.created_at,
        )


class PlatformIdRepository(IPlatformIdRepository):
    """SQLAlchemy implementation of platform id mappings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def _get_model(
        self, entity_type: PlatformEntityType, entity_id: str, platform: str
    ) -> PlatformIdModel | None:
        stmt = select(PlatformIdModel).where(
            PlatformIdModel.entity_type == entity_type.value,
            PlatformIdModel.entity_id == entity_id,
            PlatformIdModel.platform == platform,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, platform_id: PlatformId) -> None:
        """Create or replace the mapping for (entity_type, entity_id, platform)."""
        model = await self._get_model(
            platform_id.entity_type, platform_id.entity_id, platform_id.platform
        )
        if model is None:
            self.session.add(
                PlatformIdModel(
                    entity_type=platform_id.entity_type.value,
                    entity_id=platform_id.entity_id,
                    platform=platform_id.platform,
                    external_id=platform_id.external_id,
                    external_url=platform_id.external_url,
                )
            )
        else:
            model.external_id = platform_id.external_id
            model.external_url = platform_id.external_url
        await self.session.flush()

    async def get(
        self, entity_type: PlatformEntityType, entity_id: str, platform: str
    ) -> PlatformId | None:
        """Get the mapping for one entity on one platform."""
        model = await self._get_model(entity_type, entity_id, platform)
        if model is None:
            return None
        return PlatformId(
            entity_type=PlatformEntityType(model.entity_type),
            entity_id=model.entity_id,
            platform=model.platform,
            external_id=model.external_id,
            external_url=model.external_url,
        )

    async def get_external_ids(
        self,
        entity_type: PlatformEntityType,
        entity_ids: Sequence[str],
        platform: str,
    ) -> dict[str, str]:
        """Map entity ids to external ids (entities without a mapping are omitted)."""
        if not entity_ids:
            return {}
        stmt = select(PlatformIdModel.entity_id, PlatformIdModel.external_id).where(
            PlatformIdModel.entity_type == entity_type.value,
            PlatformIdModel.platform == platform,
            PlatformIdModel.entity_id.in_(list(entity_ids)),
        )
        result = await self.session.execute(stmt)
        return {entity_id: external_id for entity_id, external_id in result.all()}


class PlaylistRepository(IPlaylistRepository):
    """SQLAlchemy implementation of Playlist repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, playlist: Playlist) -> None:
        """Add a new playlist."""
        model = PlaylistModel(
            id=playlist.id.value,
            user_id=playlist.user_id,
            title=playlist.title,
            description=playlist.description,
            external_id=playlist.external_id,
            external_url=playlist.external_url,
            cover_image_url=playlist.cover_image_url,
            is_public=playlist.is_public,
            created_at=playlist.created_at,
            updated_at=playlist.updated_at,
        )
        model.playlist_tracks = [
            PlaylistTrackModel(track_id=track_id.value, position=position)
            for position, track_id in enumerate(playlist.track_ids)
        ]
        self.session.add(model)
        await self.session.flush()

    async def _get_model(self, playlist_id: PlaylistId) -> PlaylistModel | None:
        stmt = (
            select(PlaylistModel)
            .where(PlaylistModel.id == playlist_id.value)
            .options(selectinload(PlaylistModel.playlist_tracks))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, playlist_id: PlaylistId) -> Playlist | None:
        """Get a playlist by ID with its tracks in position order."""
        model = await self._get_model(playlist_id)
        if model is None:
            return None
        return Playlist(
            id=PlaylistId.from_string(model.id),
            user_id=model.user_id,
            title=model.title,
            description=model.description,
            external_id=model.external_id,
            external_url=model.external_url,
            cover_image_url=model.cover_image_url,
            is_public=model.is_public,
            track_ids=[TrackId.from_string(pt.track_id) for pt in model.playlist_tracks],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    # Listen up, update() rebuilds membership from playlist.track_ids, so positions come out 0..n-1
    # every time (gaps after a delete are closed here). Existing rows are re-used and renumbered,
    # dropped tracks fall out via delete-orphan. Don't delete+re-insert rows with the same
    # (playlist_id, track_id) key in one session - the identity map rejects the duplicate identity.
    # cover_image_url is NOT written here: only the verified set_cover_url path may touch it.
    async def update(self, playlist: Playlist) -> None:
        """Persist metadata and track order of an existing playlist."""
        model = await self._get_model(playlist.id)
        if model is None:
            raise EntityNotFoundException("Playlist", playlist.id.value)

        model.title = playlist.title
        model.description = playlist.description
        model.external_id = playlist.external_id
        model.external_url = playlist.external_url
        model.is_public = playlist.is_public
        model.updated_at = playlist.updated_at

        existing = {pt.track_id: pt for pt in model.playlist_tracks}
        links: list[PlaylistTrackModel] = []
        for position, track_id in enumerate(playlist.track_ids):
            link = existing.pop(track_id.value, None)
            if link is None:
                link = PlaylistTrackModel(
                    playlist_id=playlist.id.value, track_id=track_id.value
                )
            link.position = position
            links.append(link)
        model.playlist_tracks = links
        await self.session.flush()

    async def get_cover_url(self, playlist_id: PlaylistId) -> str | None:
        """Read the stored cover pointer straight from the database."""
        stmt = select(PlaylistModel.id, PlaylistModel.cover_image_url).where(
            PlaylistModel.id == playlist_id.value
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise EntityNotFoundException("Playlist", playlist_id.value)
        return row.cover_image_url

    async def set_cover_url(self, playlist_id: PlaylistId, url: str | None) -> None:
        """Write the cover pointer."""
        stmt = (
            update(PlaylistModel)
            .where(PlaylistModel.id == playlist_id.value)
            .values(cover_image_url=url)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Playlist", playlist_id.value)

    async def list_cover_urls(self) -> list[tuple[PlaylistId, str]]:
        """List every playlist that has a cover pointer, ordered by id."""
        stmt = (
            select(PlaylistModel.id, PlaylistModel.cover_image_url)
            .where(PlaylistModel.cover_image_url.is_not(None))
            .order_by(PlaylistModel.id)
        )
        result = await self.session.execute(stmt)
        return [(PlaylistId.from_string(pid), url) for pid, url in result.all()]
