# gatekeeper/app/services/emergency_vault.py
"""
Emergency administrator bypass code.

Exactly one code digest is valid at any time. A successful use rotates the
digest before returning, and the new plaintext goes only to the admin
notification channel. Callers never see a valid code.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict

from gatekeeper.app.core.clock import Clock, utcnow
from gatekeeper.app.core.errors import ErrorKind
from gatekeeper.app.core.logging import audit
from gatekeeper.app.schemas.emergency import EmergencyAccessResult
from gatekeeper.app.schemas.user import UserRole
from gatekeeper.app.security import lockout
from gatekeeper.app.security.jwt import create_access_token
from gatekeeper.app.security.lockout import AttemptState
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services import emails
from gatekeeper.app.services.notifier import NotificationDispatcher

logger = logging.getLogger(__name__)

EMERGENCY_ADMIN_SUBJECT = "emergency-admin"
ADMIN_TOKEN_ID_BYTES = 16


class EmergencyAccessVault:
    def __init__(
        self,
        tokens: TokenGenerator,
        dispatcher: NotificationDispatcher,
        admin_email: str,
        initial_digest: str,
        secret_key: str,
        algorithm: str = "HS256",
        platform: str = "Gatekeeper",
        code_length: int = 16,
        token_ttl_minutes: int = 30,
        max_failed_attempts: int = 5,
        lockout_minutes: int = 15,
        clock: Clock = utcnow,
    ) -> None:
        self._tokens = tokens
        self._dispatcher = dispatcher
        self._admin_email = admin_email
        self._code_digest = initial_digest
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._platform = platform
        self._code_length = code_length
        self._token_ttl = timedelta(minutes=token_ttl_minutes)
        self._max_failed_attempts = max_failed_attempts
        self._lockout_minutes = lockout_minutes
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._clock = clock
        self._attempts: Dict[str, AttemptState] = {}
        self._lock = asyncio.Lock()

    async def use_code(self, code: str, caller: str = "unknown") -> EmergencyAccessResult:
        now = self._clock()
        async with self._lock:
            self._prune_attempts(now)
            attempts = self._attempts.setdefault(caller, AttemptState())
            if lockout.is_locked(
                attempts.failed_attempts,
                attempts.last_attempt_at,
                now,
                self._max_failed_attempts,
                self._lockout_minutes,
            ):
                remaining = lockout.get_lockout_remaining_minutes(
                    attempts.last_attempt_at, now, self._lockout_minutes
                )
                logger.warning("%s: emergency code caller=%s", ErrorKind.LOCKED.value, caller)
                return EmergencyAccessResult(
                    success=False,
                    message=f"Too many failed attempts. Try again in {remaining} minutes.",
                    error=ErrorKind.LOCKED,
                )

            if not self._tokens.matches(code, self._code_digest):
                attempts.record_failure(now)
                audit("emergency.rejected", caller=caller, failures=attempts.failed_attempts)
                return EmergencyAccessResult(
                    success=False,
                    message="Invalid emergency access code.",
                    error=ErrorKind.MISMATCH,
                )

            new_code = self._tokens.random_code(self._code_length)
            self._code_digest = self._tokens.digest(new_code)
            del self._attempts[caller]

        subject, html = emails.new_emergency_code_email(self._platform, new_code)
        self._dispatcher.dispatch(self._admin_email, subject, html)

        admin_token = create_access_token(
            {
                "sub": EMERGENCY_ADMIN_SUBJECT,
                "role": UserRole.ADMIN.value,
                "mode": "emergency",
                "jti": self._tokens.random_id(ADMIN_TOKEN_ID_BYTES),
            },
            expires_delta=self._token_ttl,
            secret_key=self._secret_key,
            algorithm=self._algorithm,
        )
        audit("emergency.used", caller=caller)
        return EmergencyAccessResult(
            success=True,
            message="Emergency access granted. A new emergency code has been sent to the administrator.",
            admin_token=admin_token,
        )

    @property
    def tracked_callers(self) -> int:
        return len(self._attempts)

    def _prune_attempts(self, now: datetime) -> None:
        """Forget callers whose last failure is outside the lockout window (lock held)."""
        stale = [
            caller
            for caller, attempts in self._attempts.items()
            if attempts.last_attempt_at is None
            or now - attempts.last_attempt_at >= self._lockout_window
        ]
        for caller in stale:
            del self._attempts[caller]
