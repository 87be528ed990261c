"""Bearer-token management for the streaming platform.

Hey future me - one PlatformTokenManager per credential SCOPE (a user, or the shared service
account). It's an object owned by whoever built it (SyncContainer, or a test), never a module
global, so a user's token can't leak into the service account's syncs.

Lifecycle:
    UNINITIALIZED --load--> READY --time passes--> EXPIRED --refresh ok--> READY
                                                          \\--refresh dead--> FAILED

get_token() is the hot path: a cached, unexpired token comes back with NO I/O. When it has
expired, exactly ONE refresh runs no matter how many coroutines ask at once: the first caller
starts an asyncio.Task, everyone else awaits the same task.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum

import httpx

from tracksync.config import SpotifySettings
from tracksync.domain.entities import StoredCredential
from tracksync.domain.exceptions import (
    AuthExpiredError,
    ExternalServiceError,
    RateLimitExceededError,
    TokenRefreshException,
)
from tracksync.domain.ports import ICredentialStore, ITokenRefresher

logger = logging.getLogger(__name__)

# Used as expiry when a stored access token has no known lifetime, forcing a refresh first
_ALREADY_EXPIRED = datetime(1970, 1, 1, tzinfo=UTC)


class TokenState(str, Enum):
    """Where the manager's credential is in its lifecycle."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    EXPIRED = "expired"
    FAILED = "failed"


class ServiceAccountCredentialStore(ICredentialStore):
    """In-process credential of the shared service account.

    Seeded from settings (SPOTIFY__SERVICE_REFRESH_TOKEN and optionally
    SPOTIFY__SERVICE_ACCESS_TOKEN). Refreshed tokens live in memory for the
    lifetime of this object.
    """

    def __init__(
        self,
        refresh_token: str | None,
        access_token: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        self._credential: StoredCredential | None = None
        if refresh_token or access_token:
            self._credential = StoredCredential(
                access_token=access_token or "",
                refresh_token=refresh_token or None,
                expires_at=expires_at if (access_token and expires_at) else _ALREADY_EXPIRED,
            )
        self._invalid_reason: str | None = None

    @classmethod
    def from_settings(cls, settings: SpotifySettings) -> "ServiceAccountCredentialStore":
        """Build the store from Spotify settings."""
        return cls(
            refresh_token=settings.service_refresh_token or None,
            access_token=settings.service_access_token or None,
        )

    @property
    def scope_name(self) -> str:
        return "service"

    @property
    def invalid_reason(self) -> str | None:
        """Why the credential was invalidated, if it was."""
        return self._invalid_reason

    async def load(self) -> StoredCredential | None:
        if self._invalid_reason is not None:
            return None
        return self._credential

    async def save(self, credential: StoredCredential) -> None:
        self._credential = credential
        self._invalid_reason = None

    async def mark_invalid(self, reason: str) -> None:
        self._invalid_reason = reason
        logger.warning("Service account credential marked invalid: %s", reason)


class PlatformTokenManager:
    """Hands out a valid access token for one credential scope."""

    def __init__(
        self,
        store: ICredentialStore,
        refresher: ITokenRefresher,
        refresh_margin_seconds: int = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize token manager.

        Args:
            store: Where the credential is loaded from and saved to
            refresher: Performs the refresh-token grant
            refresh_margin_seconds: Refresh this long before the real expiry
            clock: Current time (injectable for tests)
        """
        self._store = store
        self._refresher = refresher
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._clock = clock
        self._credential: StoredCredential | None = None
        self._refresh_task: asyncio.Task[str] | None = None
        self._state = TokenState.UNINITIALIZED

    @property
    def scope_name(self) -> str:
        """Credential scope label for logs."""
        return self._store.scope_name

    @property
    def state(self) -> TokenState:
        """Current lifecycle state."""
        if self._state is TokenState.READY and self._credential is not None:
            if self._credential.is_expired(self._clock(), self._margin):
                return TokenState.EXPIRED
        return self._state

    async def get_token(self) -> str:
        """Return a valid access token, refreshing first if it has expired.

        Returns:
            Bearer access token

        Raises:
            AuthExpiredError: If no credential is configured or the refresh failed
            RateLimitExceededError: If the token endpoint throttled the refresh
        """
        if self._credential is None:
            loaded = await self._store.load()
            # A refresh may have finished while we were loading; never overwrite its result
            if self._credential is None:
                self._credential = loaded

        credential = self._credential
        if credential is None:
            self._state = TokenState.FAILED
            raise AuthExpiredError(
                f"No platform credential available for {self._store.scope_name}, "
                "re-authentication required"
            )

        if self._refresh_task is None and not credential.is_expired(
            self._clock(), self._margin
        ):
            self._state = TokenState.READY
            return credential.access_token

        return await self._refresh_shared(credential)

    async def force_refresh(self, rejected_token: str | None = None) -> str:
        """Refresh after the platform rejected a token (HTTP 401).

        If the rejected token has already been replaced by a concurrent
        refresh, the current token is returned without another refresh.

        Args:
            rejected_token: The token the platform just rejected

        Returns:
            New access token
        """
        credential = self._credential or await self._store.load()
        if credential is None:
            self._state = TokenState.FAILED
            raise AuthExpiredError(
                f"No platform credential available for {self._store.scope_name}"
            )
        if (
            rejected_token is not None
            and self._refresh_task is None
            and credential.access_token != rejected_token
            and not credential.is_expired(self._clock(), self._margin)
        ):
            return credential.access_token
        self._credential = credential
        return await self._refresh_shared(credential)

    def reset(self) -> None:
        """Forget the cached credential; the next get_token() reloads from the store."""
        self._credential = None
        self._state = TokenState.UNINITIALIZED

    # Listen up, asyncio.shield keeps the shared refresh alive if ONE waiter gets cancelled -
    # the other waiters still need its result. The task is cleared by whoever observes it done.
    async def _refresh_shared(self, credential: StoredCredential) -> str:
        task = self._refresh_task
        if task is None:
            self._state = TokenState.EXPIRED
            task = asyncio.create_task(self._refresh(credential))
            self._refresh_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._refresh_task is task:
                self._refresh_task = None

    async def _refresh(self, credential: StoredCredential) -> str:
        if not credential.refresh_token:
            self._state = TokenState.FAILED
            raise AuthExpiredError(
                f"Access token for {self._store.scope_name} expired and no refresh token is stored"
            )

        logger.info("Refreshing platform token for %s", self._store.scope_name)
        try:
            grant = await self._refresher.refresh_access_token(credential.refresh_token)
        except TokenRefreshException as e:
            if e.requires_reauth:
                # Dead refresh token: stop using it until someone stores a new one
                self._state = TokenState.FAILED
                self._credential = None
                await self._store.mark_invalid(e.message)
            else:
                self._state = TokenState.EXPIRED
            raise
        except RateLimitExceededError:
            self._state = TokenState.EXPIRED
            raise
        except (ExternalServiceError, httpx.HTTPError) as e:
            self._state = TokenState.EXPIRED
            raise AuthExpiredError(
                f"Token refresh for {self._store.scope_name} failed: {e}"
            ) from e

        refreshed = StoredCredential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=self._clock() + timedelta(seconds=grant.expires_in),
            scope=grant.scope or credential.scope,
        )
        await self._store.save(refreshed)
        self._credential = refreshed
        self._state = TokenState.READY
        logger.info(
            "Platform token for %s refreshed, valid for %ds",
            self._store.scope_name,
            grant.expires_in,
        )
        return refreshed.access_token
