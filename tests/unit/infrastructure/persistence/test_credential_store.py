"""Tests for DatabaseCredentialStore."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from tracksync.domain.entities import StoredCredential
from tracksync.infrastructure.persistence import DatabaseCredentialStore
from tracksync.infrastructure.persistence.models import PlatformCredentialModel


def _credential(access: str = "tok-1", refresh: str | None = "refresh-1") -> StoredCredential:
    return StoredCredential(
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime(2030, 1, 1, 12, 0, tzinfo=UTC),
        scope="playlist-modify-public",
    )


class TestDatabaseCredentialStore:
    async def test_missing_row_loads_as_none(self, session_scope) -> None:
        store = DatabaseCredentialStore.for_user(session_scope, "42")

        assert await store.load() is None
        assert store.scope_name == "spotify:user:42"

    async def test_save_then_load(self, session_scope) -> None:
        store = DatabaseCredentialStore.for_user(session_scope, "42")

        await store.save(_credential())
        loaded = await store.load()

        assert loaded == _credential()
        assert loaded.expires_at.tzinfo is not None

    async def test_save_overwrites(self, session_scope) -> None:
        store = DatabaseCredentialStore.for_user(session_scope, "42")
        await store.save(_credential())

        await store.save(_credential(access="tok-2", refresh="refresh-2"))

        loaded = await store.load()
        assert loaded.access_token == "tok-2"
        assert loaded.refresh_token == "refresh-2"

    async def test_invalid_row_loads_as_none_until_saved_again(self, session_scope) -> None:
        store = DatabaseCredentialStore.for_user(session_scope, "42")
        await store.save(_credential())

        await store.mark_invalid("invalid_grant")

        assert await store.load() is None
        async with session_scope() as session:
            row = (
                await session.execute(
                    select(PlatformCredentialModel).where(
                        PlatformCredentialModel.id == "spotify:user:42"
                    )
                )
            ).scalar_one()
            assert row.is_valid is False
            assert row.last_error == "invalid_grant"

        await store.save(_credential(access="tok-3"))
        assert (await store.load()).access_token == "tok-3"

    async def test_mark_invalid_without_row_is_a_no_op(self, session_scope) -> None:
        store = DatabaseCredentialStore.for_user(session_scope, "nobody")

        await store.mark_invalid("whatever")

        assert await store.load() is None

    async def test_users_are_isolated(self, session_scope) -> None:
        alice = DatabaseCredentialStore.for_user(session_scope, "alice")
        bob = DatabaseCredentialStore.for_user(session_scope, "bob")

        await alice.save(_credential(access="alice-token"))

        assert (await alice.load()).access_token == "alice-token"
        assert await bob.load() is None

    async def test_expiry_survives_round_trip(self, session_scope) -> None:
        store = DatabaseCredentialStore(session_scope, "service", platform="spotify")
        soon = datetime.now(UTC) + timedelta(seconds=30)
        await store.save(
            StoredCredential(access_token="a", refresh_token="r", expires_at=soon)
        )

        loaded = await store.load()

        assert loaded.is_expired(datetime.now(UTC), margin=timedelta(seconds=60))
        assert not loaded.is_expired(datetime.now(UTC))
