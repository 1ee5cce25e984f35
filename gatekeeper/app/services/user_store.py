# gatekeeper/app/services/user_store.py
"""
Persistent user storage.

The flows depend only on the UserStore protocol. Two implementations:
- InMemoryUserStore: process-local dict, used in tests and demos
- SqlAlchemyUserStore: async SQLAlchemy against the `users` table
"""
import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatekeeper.app.models.user import User
from gatekeeper.app.schemas.user import UserAccount

# Fields a patch may never touch
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class UserStore(Protocol):
    async def get(self, user_id: str) -> Optional[UserAccount]: ...

    async def update(
        self, user_id: str, patch: Mapping[str, Any]
    ) -> Optional[UserAccount]: ...

    async def create(self, user: UserAccount) -> UserAccount: ...

    async def list(self) -> List[UserAccount]: ...


class UserStoreError(Exception):
    """Raised when a write would break a uniqueness constraint."""


def _clean_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned = {k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS}
    cleaned["updated_at"] = datetime.now(timezone.utc)
    return cleaned


async def find_by_email(store: UserStore, email: str) -> Optional[UserAccount]:
    """
    Case-insensitive email lookup.

    Uses the store's own `get_by_email` when it has one, otherwise scans
    the protocol's list().
    """
    target = email.strip().lower()
    lookup = getattr(store, "get_by_email", None)
    if lookup is not None:
        return await lookup(target)
    for user in await store.list():
        if user.email.lower() == target:
            return user
    return None


async def find_by_username(store: UserStore, username: str) -> Optional[UserAccount]:
    target = username.lower()
    lookup = getattr(store, "get_by_username", None)
    if lookup is not None:
        return await lookup(target)
    for user in await store.list():
        if user.username.lower() == target:
            return user
    return None


class InMemoryUserStore:
    def __init__(self, users: Iterable[UserAccount] = ()) -> None:
        self._users: Dict[str, UserAccount] = {u.id: u.model_copy(deep=True) for u in users}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Optional[UserAccount]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    async def update(
        self, user_id: str, patch: Mapping[str, Any]
    ) -> Optional[UserAccount]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = user.model_copy(update=_clean_patch(patch), deep=True)
            self._users[user_id] = updated
            return updated.model_copy(deep=True)

    async def create(self, user: UserAccount) -> UserAccount:
        async with self._lock:
            for existing in self._users.values():
                if existing.id == user.id:
                    raise UserStoreError("user id already exists")
                if existing.email.lower() == user.email.lower():
                    raise UserStoreError("email already registered")
                if existing.username.lower() == user.username.lower():
                    raise UserStoreError("username already taken")
            self._users[user.id] = user.model_copy(deep=True)
            return user.model_copy(deep=True)

    async def list(self) -> List[UserAccount]:
        async with self._lock:
            return [u.model_copy(deep=True) for u in self._users.values()]


class SqlAlchemyUserStore:
    """UserStore backed by the `users` table. One session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_account(row: User) -> UserAccount:
        return UserAccount.model_validate(row)

    async def get(self, user_id: str) -> Optional[UserAccount]:
        async with self._session_factory() as db:
            row = await db.get(User, user_id)
            return self._to_account(row) if row else None

    async def update(
        self, user_id: str, patch: Mapping[str, Any]
    ) -> Optional[UserAccount]:
        async with self._session_factory() as db:
            row = await db.get(User, user_id)
            if row is None:
                return None
            for key, value in _clean_patch(patch).items():
                if isinstance(value, Enum):
                    value = value.value
                # JSON columns need a fresh list to register the change
                if isinstance(value, list):
                    value = list(value)
                setattr(row, key, value)
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return self._to_account(row)

    async def create(self, user: UserAccount) -> UserAccount:
        async with self._session_factory() as db:
            result = await db.execute(
                select(User).where(
                    (func.lower(User.email) == user.email.lower())
                    | (func.lower(User.username) == user.username.lower())
                )
            )
            if result.scalars().first() is not None:
                raise UserStoreError("email or username already registered")

            row = User(
                id=user.id,
                username=user.username,
                email=user.email,
                full_name=user.full_name,
                password_digest=user.password_digest,
                role=user.role.value,
                approval_status=user.approval_status.value,
                approval_date=user.approval_date,
                require_two_factor=user.require_two_factor,
                two_factor_verified=user.two_factor_verified,
                totp_secret=user.totp_secret,
                backup_code_digests=list(user.backup_code_digests),
                trusted_devices=list(user.trusted_devices),
                created_at=user.created_at,
                updated_at=user.updated_at,
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return self._to_account(row)

    async def get_by_email(self, email: str) -> Optional[UserAccount]:
        return await self._get_one(func.lower(User.email) == email.lower())

    async def get_by_username(self, username: str) -> Optional[UserAccount]:
        return await self._get_one(func.lower(User.username) == username.lower())

    async def _get_one(self, condition) -> Optional[UserAccount]:
        async with self._session_factory() as db:
            result = await db.execute(select(User).where(condition))
            row = result.scalars().first()
            return self._to_account(row) if row else None

    async def list(self) -> List[UserAccount]:
        async with self._session_factory() as db:
            result = await db.execute(select(User).order_by(User.created_at))
            return [self._to_account(row) for row in result.scalars().all()]
