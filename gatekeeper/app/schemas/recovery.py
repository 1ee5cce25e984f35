# gatekeeper/app/schemas/recovery.py
"""
Schemas for the 2FA-loss recovery protocol.

RecoveryRequest is the in-memory state record owned by RecoveryFlow; the
email code digest and the continuation token digest are kept in separate
fields. Only digests are stored, never plaintext.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.user import TotpEnrollment
from gatekeeper.app.security.lockout import AttemptState


class RecoveryState(str, Enum):
    REQUESTED = "requested"
    EMAIL_VERIFIED = "email_verified"
    PASSWORD_VERIFIED = "password_verified"


@dataclass
class RecoveryRequest:
    user_id: str
    request_id: str
    email_code_digest: str
    password_digest_snapshot: str
    expires_at: datetime
    continuation_token_digest: Optional[str] = None
    used: bool = False
    attempts: AttemptState = field(default_factory=AttemptState)

    @property
    def state(self) -> RecoveryState:
        if self.used:
            return RecoveryState.PASSWORD_VERIFIED
        if self.continuation_token_digest is not None:
            return RecoveryState.EMAIL_VERIFIED
        return RecoveryState.REQUESTED

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class RecoveryInitiateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class RecoveryEmailCodeRequest(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=128)
    code: str = Field(..., min_length=1, max_length=32)


class RecoveryPasswordRequest(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=128)
    continuation_token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1)


class RecoveryCompleteRequest(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=128)
    complete_token: str = Field(default="", max_length=256)


class RecoveryInitResult(FlowResult):
    request_id: Optional[str] = None


class EmailCodeResult(FlowResult):
    continuation_token: Optional[str] = None


class PasswordResult(FlowResult):
    complete_token: Optional[str] = None


class RecoveryCompleteResult(FlowResult):
    totp_enrollment: Optional[TotpEnrollment] = None
