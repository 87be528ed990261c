"""Application services - resolution, reconciliation, token management and sync."""

from tracksync.application.services.catalog_resolver import (
    CatalogResolver,
    MatchStage,
    Resolution,
)
from tracksync.application.services.cover_image_service import (
    CoverAuditReport,
    CoverImagePersistence,
    CoverSaveResult,
    CoverStage,
)
from tracksync.application.services.playlist_locks import PlaylistLocks
from tracksync.application.services.playlist_sync_service import (
    PlaylistSyncEngine,
    ReorderStrategy,
    SyncOperation,
    SyncReport,
    plan_moves,
)
from tracksync.application.services.recommendation_reconciler import (
    ReconciliationResult,
    RecommendationReconciler,
)
from tracksync.application.services.token_manager import (
    PlatformTokenManager,
    ServiceAccountCredentialStore,
    TokenState,
)

__all__ = [
    "CatalogResolver",
    "CoverAuditReport",
    "CoverImagePersistence",
    "CoverSaveResult",
    "CoverStage",
    "MatchStage",
    "PlatformTokenManager",
    "PlaylistLocks",
    "PlaylistSyncEngine",
    "ReconciliationResult",
    "RecommendationReconciler",
    "ReorderStrategy",
    "Resolution",
    "ServiceAccountCredentialStore",
    "SyncOperation",
    "SyncReport",
    "TokenState",
    "plan_moves",
]
