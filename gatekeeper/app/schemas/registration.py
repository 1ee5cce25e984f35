# gatekeeper/app/schemas/registration.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.user import IssuedUser, TotpEnrollment, UserRole


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PendingRegistration(BaseModel):
    id: str
    email: str
    full_name: str
    reason: str
    ip_address: str
    additional_info: Dict[str, Any] = Field(default_factory=dict)
    request_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: RegistrationStatus = RegistrationStatus.PENDING
    # Set once the request reaches a terminal status
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None


class RegistrationSubmitRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    full_name: str = Field(..., min_length=1, max_length=120)
    reason: str = Field(default="", max_length=2000)
    additional_info: Dict[str, Any] = Field(default_factory=dict)


class RegistrationApproveRequest(BaseModel):
    username: Optional[str] = Field(default=None, max_length=50)


class RegistrationRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class DirectAccountRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    username: str = Field(..., min_length=3, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=120)
    role: UserRole = UserRole.USER


class TwoFactorSetupRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class SubmitResult(FlowResult):
    request_id: Optional[str] = None


class AccountResult(FlowResult):
    user: Optional[IssuedUser] = None


class FirstLoginResult(FlowResult):
    totp_setup: Optional[TotpEnrollment] = None


class TwoFactorSetupResult(FlowResult):
    backup_codes: Optional[List[str]] = None
