# gatekeeper/app/db/session.py
"""
Async database session management for SQLAlchemy.

Production considerations:
- Uses asyncpg for PostgreSQL
- Uses aiosqlite for SQLite (local development fallback)
- Pool settings differ for SQLite (no pooling) vs PostgreSQL

Security considerations:
- DATABASE_ECHO disabled by default (prevents SQL query exposure)
- Connection pool overflow limited to prevent resource exhaustion
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from gatekeeper.app.core.config import settings


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create and configure an async SQLAlchemy engine.

    SQLite (local development, tests):
    - NullPool, a new connection per session
    - check_same_thread=False for async compatibility

    PostgreSQL (production):
    - AsyncAdaptedQueuePool with pre-ping and 5 minute recycling
    """
    if "sqlite" in url.lower():
        return create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: attributes stay readable after commit
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Global async engine instance
# Created once at module load, reused across all requests
# ─────────────────────────────────────────────────────────────────────────────
engine: AsyncEngine = create_engine_for_url(
    settings.DATABASE_URL, echo=settings.DATABASE_ECHO
)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = create_session_factory(engine)

