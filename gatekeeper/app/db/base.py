# gatekeeper/app/db/base.py
"""
SQLAlchemy declarative base and re-exports of the session components
defined in db/session.py.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Usage:
        class User(Base):
            __tablename__ = "users"
            id = Column(String(36), primary_key=True)
            ...
    """
    pass


from gatekeeper.app.db.session import (  # noqa: E402
    engine,
    AsyncSessionLocal,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionLocal",
]
