# gatekeeper/app/models/user.py
"""
ORM model for user accounts.

Security: only digests are stored. The initial password issued at
approval time is emailed once and never persisted in plaintext.
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String
from sqlalchemy.sql import func

from gatekeeper.app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(120), nullable=True)

    # SHA-256 digest, compared during recovery step 3
    password_digest = Column(String(255), nullable=False)

    role = Column(String(20), nullable=False, default="user")
    approval_status = Column(String(20), nullable=False, default="approved")
    approval_date = Column(DateTime(timezone=True), nullable=True)

    # First-login 2FA handshake state
    require_two_factor = Column(Boolean, nullable=False, default=True)
    two_factor_verified = Column(Boolean, nullable=False, default=False)
    totp_secret = Column(String(64), nullable=True)
    backup_code_digests = Column(JSON, nullable=False, default=list)

    # Device IDs registered as trusted for this account
    trusted_devices = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


# Case-insensitive lookups by email and username
Index("ix_users_email_lower", func.lower(User.email))
Index("ix_users_username_lower", func.lower(User.username))
