# gatekeeper/app/security/lockout.py
"""
Failed attempt tracking for secret comparisons.

Used by:
- Recovery requests (request invalidated once the limit is reached)
- Emergency access vault (caller locked out for a fixed duration)
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_locked(
    failed_attempts: int,
    last_attempt_at: Optional[datetime],
    now: datetime,
    max_attempts: int,
    lockout_minutes: int,
) -> bool:
    """
    Check if a caller is locked due to too many failed attempts.

    Args:
        failed_attempts: Number of consecutive failed attempts
        last_attempt_at: Timestamp of last attempt
        now: Current time
        max_attempts: Attempts allowed before lockout
        lockout_minutes: Lockout duration

    Returns:
        True if locked, False otherwise
    """
    if failed_attempts < max_attempts:
        return False

    if last_attempt_at is None:
        return False

    elapsed_minutes = (_aware(now) - _aware(last_attempt_at)).total_seconds() / 60

    return elapsed_minutes < lockout_minutes


def get_lockout_remaining_minutes(
    last_attempt_at: Optional[datetime],
    now: datetime,
    lockout_minutes: int,
) -> int:
    """Remaining lockout time in whole minutes, or 0 if not locked."""
    if last_attempt_at is None:
        return 0

    elapsed_minutes = (_aware(now) - _aware(last_attempt_at)).total_seconds() / 60
    remaining = lockout_minutes - elapsed_minutes

    return max(0, int(remaining))


@dataclass
class AttemptState:
    failed_attempts: int = 0
    last_attempt_at: Optional[datetime] = None

    def record_failure(self, now: datetime) -> None:
        self.failed_attempts += 1
        self.last_attempt_at = now

    def reset(self) -> None:
        self.failed_attempts = 0
        self.last_attempt_at = None
