# gatekeeper/app/schemas/user.py
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserAccount(BaseModel):
    """User record as exchanged with the UserStore. Never sent over the wire."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    full_name: Optional[str] = None
    password_digest: str
    role: UserRole = UserRole.USER
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    approval_date: Optional[datetime] = None
    require_two_factor: bool = True
    two_factor_verified: bool = False
    totp_secret: Optional[str] = None
    backup_code_digests: List[str] = Field(default_factory=list)
    trusted_devices: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class IssuedUser(BaseModel):
    """Public view of a freshly provisioned account (no credentials)."""
    id: str
    username: str
    email: str
    role: UserRole
    require_two_factor: bool
    two_factor_verified: bool

    @classmethod
    def from_account(cls, account: UserAccount) -> "IssuedUser":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            require_two_factor=account.require_two_factor,
            two_factor_verified=account.two_factor_verified,
        )


class TotpEnrollment(BaseModel):
    """Authenticator enrollment material."""
    secret: str
    provisioning_uri: str
    qr_code_base64: str

    @property
    def qr_code_data_url(self) -> str:
        return f"data:image/png;base64,{self.qr_code_base64}"


class TokenPayload(BaseModel):
    sub: Optional[str] = None
    role: Optional[str] = None
