"""Composition root: build and tear down every collaborator from Settings.

Hey future me - nothing in tracksync is a module-level singleton. The SyncContainer owns the DB
engine, the HTTP pool, the rate limiter, the snapshot cache, the per-playlist lock registry and
one PlatformTokenManager per credential scope, and close() releases them. Engines themselves are
built per call and hold nothing of their own; two engines for two users still serialize on the
same playlist because they share the container's PlaylistLocks. The surrounding application
creates ONE container at startup; tests create their own.

Usage:
    async with await SyncContainer.create() as container:
        result = await container.reconcile(candidates)
        report = await container.sync_engine(user_id="42").export_playlist(playlist_id)
"""

import logging
from collections.abc import Sequence
from types import TracebackType

import httpx

from tracksync.application.cache import PlaylistSnapshotCache
from tracksync.application.services import (
    CoverImagePersistence,
    PlatformTokenManager,
    PlaylistLocks,
    PlaylistSyncEngine,
    ReconciliationResult,
    RecommendationReconciler,
    ServiceAccountCredentialStore,
)
from tracksync.config import CoverStorageSettings, Settings, get_settings
from tracksync.domain.exceptions import ConfigurationError
from tracksync.domain.ports import IBlobStorage
from tracksync.domain.value_objects import RecommendationCandidate
from tracksync.infrastructure.integrations import (
    FallbackBlobStorage,
    HttpClientPool,
    ImageFetcher,
    LocalBlobStorage,
    SpotifyClient,
    SupabaseBlobStorage,
)
from tracksync.infrastructure.observability import configure_logging
from tracksync.infrastructure.persistence import Database, DatabaseCredentialStore
from tracksync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


# SQLite needs its directory to exist and be writable (it creates -journal/-wal files next to the
# .db). Checking here gives a clear error at startup instead of a cryptic one on first query.
def _validate_sqlite_path(settings: Settings) -> None:
    """Validate SQLite database path accessibility before engine creation."""
    db_path = settings.get_sqlite_db_path()
    if db_path is None:
        return
    try:
        if str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "Update DATABASE__URL or adjust directory permissions."
        ) from exc


def build_cover_storage(settings: CoverStorageSettings, http_pool: HttpClientPool) -> IBlobStorage:
    """Create the configured cover storage backend.

    Raises:
        ConfigurationError: If Supabase is selected without URL or key
    """
    local = LocalBlobStorage(settings.local_dir, settings.public_base_url)
    if settings.backend == "local":
        return local

    if not settings.supabase_url or not settings.supabase_key:
        raise ConfigurationError(
            "Supabase cover storage selected but COVER__SUPABASE_URL or "
            "COVER__SUPABASE_KEY is empty"
        )
    supabase = SupabaseBlobStorage(
        supabase_url=settings.supabase_url,
        api_key=settings.supabase_key,
        bucket=settings.bucket,
        http_pool=http_pool,
        timeout=settings.download_timeout,
    )
    if settings.fallback_to_local:
        return FallbackBlobStorage(primary=supabase, fallback=local)
    return supabase


class SyncContainer:
    """Owns every long-lived collaborator of the sync engine."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        http_pool: HttpClientPool,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Wire collaborators (use SyncContainer.create() for the full startup)."""
        self.settings = settings
        self.database = database
        self.http_pool = http_pool
        self.rate_limiter = rate_limiter
        self.spotify = SpotifyClient(settings.spotify, http_pool, rate_limiter)
        self.snapshot_cache = PlaylistSnapshotCache(
            settings.sync.playlist_cache_ttl_seconds,
            max_entries=settings.sync.playlist_cache_max_entries,
        )
        self.playlist_locks = PlaylistLocks()
        self.cover_storage = build_cover_storage(settings.cover, http_pool)
        self.image_fetcher = ImageFetcher(
            http_pool,
            user_agent=settings.cover.user_agent,
            timeout=settings.cover.download_timeout,
        )
        self.covers = CoverImagePersistence(
            database.session_scope,
            self.cover_storage,
            self.image_fetcher,
            settings.cover,
        )
        self.reconciler = RecommendationReconciler(
            database.session_scope, default_limit=settings.sync.default_limit
        )
        self._token_managers: dict[str, PlatformTokenManager] = {}

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        setup_logging: bool = True,
        create_tables: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SyncContainer":
        """Start up: logging, database, HTTP pool and rate limiter.

        Args:
            settings: Settings to use (default: get_settings())
            setup_logging: Call configure_logging() from settings
            create_tables: Create tables directly (tests / first run without Alembic)
            transport: Custom httpx transport (tests)
        """
        settings = settings or get_settings()
        if setup_logging:
            configure_logging(
                log_level=settings.log_level,
                json_format=settings.log_json_format,
                app_name=settings.app_name,
            )
        _validate_sqlite_path(settings)

        database = Database(settings.database)
        if create_tables:
            await database.create_tables()

        http_pool = HttpClientPool(timeout=settings.spotify.request_timeout, transport=transport)
        container = cls(settings, database, http_pool, RateLimiter.for_spotify())
        logger.info("Sync container ready (%s)", settings.app_name)
        return container

    def token_manager(self, user_id: str | None = None) -> PlatformTokenManager:
        """Token manager for a user, or for the shared service account when user_id is None.

        Raises:
            ConfigurationError: If Spotify client credentials are missing, or the
                service account is requested without a service token
        """
        key = f"user:{user_id}" if user_id is not None else "service"
        manager = self._token_managers.get(key)
        if manager is not None:
            return manager

        spotify = self.settings.spotify
        if not spotify.client_id:
            raise ConfigurationError("SPOTIFY__CLIENT_ID is required to refresh platform tokens")
        if user_id is None:
            if not (spotify.service_refresh_token or spotify.service_access_token):
                raise ConfigurationError(
                    "Service account sync needs SPOTIFY__SERVICE_REFRESH_TOKEN"
                )
            store = ServiceAccountCredentialStore.from_settings(spotify)
        else:
            store = DatabaseCredentialStore.for_user(
                self.database.session_scope, user_id, platform=self.spotify.platform_name
            )

        manager = PlatformTokenManager(
            store,
            self.spotify,
            refresh_margin_seconds=self.settings.sync.token_refresh_margin_seconds,
        )
        self._token_managers[key] = manager
        return manager

    def sync_engine(self, user_id: str | None = None) -> PlaylistSyncEngine:
        """Sync engine acting with a user's credential (or the service account)."""
        return PlaylistSyncEngine(
            self.database.session_scope,
            self.spotify,
            self.token_manager(user_id),
            self.settings.sync,
            snapshot_cache=self.snapshot_cache,
            cover_persistence=self.covers,
            image_fetcher=self.image_fetcher,
            cover_settings=self.settings.cover,
            playlist_locks=self.playlist_locks,
        )

    async def reconcile(
        self,
        candidates: Sequence[RecommendationCandidate],
        limit: int | None = None,
        avoid_explicit: bool = False,
    ) -> ReconciliationResult:
        """Shortcut for reconciler.reconcile()."""
        return await self.reconciler.reconcile(candidates, limit, avoid_explicit)

    async def close(self) -> None:
        """Release HTTP connections and the DB pool."""
        await self.http_pool.close()
        await self.database.close()
        logger.info("Sync container closed")

    async def __aenter__(self) -> "SyncContainer":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
