# gatekeeper/app/core/errors.py
"""
Error taxonomy shared by the recovery, registration, device and
emergency-access services.

Flows raise FlowError from their precondition checks and convert it to a
failed result at the public operation boundary. The kind is kept on the
result for in-process callers and audit logs; it is never serialized.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    DUPLICATE_PENDING = "duplicate_pending"
    ALREADY_EXISTS = "already_exists"
    ALREADY_VERIFIED = "already_verified"
    LOCKED = "locked"
    NOTIFICATION_FAILED = "notification_failed"
    INTERNAL = "internal"


class FlowError(Exception):
    """Precondition violation inside a flow step."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail or kind.value
