"""SQLAlchemy user store tests (aiosqlite)."""

import pyotp
import pytest

from gatekeeper.app.db.base import Base
from gatekeeper.app.db.session import create_engine_for_url, create_session_factory
from gatekeeper.app.models import user  # noqa: F401
from gatekeeper.app.schemas.user import UserRole
from gatekeeper.app.services.container import build_services
from gatekeeper.app.services.user_store import (
    SqlAlchemyUserStore,
    UserStoreError,
    find_by_email,
    find_by_username,
)

from conftest import RecordingNotifier, make_user


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'users.db'}"


async def _store(url):
    engine = create_engine_for_url(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, SqlAlchemyUserStore(create_session_factory(engine))


@pytest.mark.asyncio
async def test_create_get_update(database_url) -> None:
    engine, store = await _store(database_url)
    try:
        created = await store.create(make_user("alice", "alice@example.com", "pw"))
        assert created.role is UserRole.USER

        updated = await store.update(
            created.id,
            {"trusted_devices": ["dev-1"], "role": UserRole.ADMIN, "id": "hijack"},
        )
        assert updated.id == created.id
        assert updated.trusted_devices == ["dev-1"]
        assert updated.role is UserRole.ADMIN

        appended = await store.update(created.id, {"trusted_devices": [*updated.trusted_devices, "dev-2"]})
        assert appended.trusted_devices == ["dev-1", "dev-2"]

        assert (await store.get(created.id)).trusted_devices == ["dev-1", "dev-2"]
        assert await store.get("missing") is None
        assert await store.update("missing", {"full_name": "x"}) is None
        assert (await find_by_email(store, "ALICE@example.com")).id == created.id
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_duplicate_create_is_refused(database_url) -> None:
    engine, store = await _store(database_url)
    try:
        await store.create(make_user("alice", "alice@example.com", "pw"))
        with pytest.raises(UserStoreError):
            await store.create(make_user("alice2", "alice@example.com", "pw"))
        assert len(await store.list()) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_registration_handshake_persists(database_url, test_settings) -> None:
    """Approval and first-login 2FA state survive in the database."""
    engine, store = await _store(database_url)
    services = build_services(test_settings, store, notifier=RecordingNotifier())
    try:
        submitted = await services.registration.submit(
            "erin@example.org", "Erin", "analytics", "192.0.2.1"
        )
        approved = await services.registration.approve(submitted.request_id, "admin-1")
        user_id = approved.user.id

        setup = (await services.registration.handle_first_login(user_id)).totp_setup
        done = await services.registration.complete_two_factor_setup(
            user_id, pyotp.TOTP(setup.secret).now()
        )
        assert done.success

        row = await store.get(user_id)
        assert row.two_factor_verified
        assert row.totp_secret == setup.secret
        assert len(row.backup_code_digests) == 10
    finally:
        await services.dispatcher.drain()
        await engine.dispose()


@pytest.mark.asyncio
async def test_lookups_query_by_column(database_url, monkeypatch) -> None:
    """Email and username lookups are single queries, never a table scan."""
    engine, store = await _store(database_url)
    try:
        created = await store.create(make_user("Hank", "Hank@Example.org", "pw"))

        async def no_scan():
            raise AssertionError("list() must not be used for lookups")

        monkeypatch.setattr(store, "list", no_scan)
        assert (await find_by_email(store, " hank@example.ORG ")).id == created.id
        assert (await find_by_username(store, "HANK")).id == created.id
        assert await find_by_email(store, "nobody@example.org") is None

        with pytest.raises(UserStoreError):
            await store.create(make_user("hank", "other@example.org", "pw"))
    finally:
        await engine.dispose()
