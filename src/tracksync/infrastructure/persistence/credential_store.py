"""Database-backed credential store for per-user platform tokens."""

import logging

from sqlalchemy import select

from tracksync.domain.entities import StoredCredential
from tracksync.domain.ports import ICredentialStore

from .database import SessionScope
from .models import PlatformCredentialModel, ensure_utc_aware, utc_now

logger = logging.getLogger(__name__)


# Hey future me, each load/save opens its OWN short session. The token manager can be called from
# the middle of a sync that has no session at all, and a refresh must be committed even if the
# surrounding work later fails. A row with is_valid=False loads as None -> AuthExpiredError until
# the user re-authenticates and save() writes a fresh, valid row.
class DatabaseCredentialStore(ICredentialStore):
    """Credential row in platform_credentials, keyed by scope id."""

    def __init__(
        self,
        session_scope: SessionScope,
        credential_id: str,
        platform: str = "spotify",
    ) -> None:
        """Initialize store.

        Args:
            session_scope: Unit-of-work factory (Database.session_scope)
            credential_id: Row id, e.g. "spotify:user:42"
            platform: Platform name stored with the row
        """
        self._session_scope = session_scope
        self._credential_id = credential_id
        self._platform = platform

    @classmethod
    def for_user(
        cls, session_scope: SessionScope, user_id: str, platform: str = "spotify"
    ) -> "DatabaseCredentialStore":
        """Store for one end user's credential."""
        return cls(session_scope, f"{platform}:user:{user_id}", platform)

    @property
    def scope_name(self) -> str:
        """Label used in logs."""
        return self._credential_id

    async def load(self) -> StoredCredential | None:
        """Load the credential, or None if missing or invalidated."""
        async with self._session_scope() as session:
            model = await session.get(PlatformCredentialModel, self._credential_id)
            if model is None or not model.is_valid:
                return None
            return StoredCredential(
                access_token=model.access_token,
                refresh_token=model.refresh_token,
                expires_at=ensure_utc_aware(model.token_expires_at),
                scope=model.scopes,
            )

    async def save(self, credential: StoredCredential) -> None:
        """Insert or update the credential row and mark it valid."""
        async with self._session_scope() as session:
            model = await session.get(PlatformCredentialModel, self._credential_id)
            if model is None:
                model = PlatformCredentialModel(
                    id=self._credential_id, platform=self._platform
                )
                session.add(model)
            model.access_token = credential.access_token
            model.refresh_token = credential.refresh_token
            model.token_expires_at = credential.expires_at
            model.scopes = credential.scope
            model.is_valid = True
            model.last_error = None
            model.last_error_at = None
            model.last_refreshed_at = utc_now()

    async def mark_invalid(self, reason: str) -> None:
        """Flag the credential as requiring re-authentication."""
        async with self._session_scope() as session:
            result = await session.execute(
                select(PlatformCredentialModel).where(
                    PlatformCredentialModel.id == self._credential_id
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return
            model.is_valid = False
            model.last_error = reason
            model.last_error_at = utc_now()
        logger.warning("Credential %s marked invalid: %s", self._credential_id, reason)
