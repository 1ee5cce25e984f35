# gatekeeper/app/services/recovery.py
"""
Two-factor loss recovery.

Four steps, each gated by a secret produced by the previous one:

1. initiate_recovery        email             -> request_id (code emailed)
2. verify_email_code        request_id, code  -> continuation_token
3. verify_original_password request_id, token, password -> complete_token
4. complete_recovery        request_id        -> new TOTP enrollment

Every failure returns the same message so a caller cannot tell an unknown
request from a wrong code; the precise kind is logged and kept on the
result's (unserialized) `error` attribute.

All request state lives in one dict guarded by one asyncio.Lock. The expiry
sweep takes the same lock. Expiry is also checked on every access, so an
expired request is unusable before the sweep removes it.
"""
import asyncio
import contextlib
import copy
import logging
from datetime import timedelta
from typing import Dict, Optional

from gatekeeper.app.core.clock import Clock, utcnow
from gatekeeper.app.core.errors import ErrorKind, FlowError
from gatekeeper.app.core.logging import audit
from gatekeeper.app.schemas.recovery import (
    EmailCodeResult,
    PasswordResult,
    RecoveryCompleteResult,
    RecoveryInitResult,
    RecoveryRequest,
)
from gatekeeper.app.security.tokens import (
    COMPLETE_TOKEN_BYTES,
    CONTINUATION_TOKEN_BYTES,
    REQUEST_ID_BYTES,
    TokenGenerator,
)
from gatekeeper.app.services import emails
from gatekeeper.app.services.notifier import NotificationDispatcher
from gatekeeper.app.services.two_factor import TwoFactorAuth
from gatekeeper.app.services.user_store import UserStore, find_by_email

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = "Invalid or expired recovery request."
INITIATED_MESSAGE = (
    "If an account exists for that email address, recovery instructions have been sent."
)


class RecoveryFlow:
    def __init__(
        self,
        user_store: UserStore,
        two_factor: TwoFactorAuth,
        dispatcher: NotificationDispatcher,
        tokens: TokenGenerator,
        admin_email: str,
        platform: str = "Gatekeeper",
        ttl_minutes: int = 30,
        sweep_interval_minutes: int = 15,
        code_length: int = 6,
        max_failed_attempts: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self._users = user_store
        self._two_factor = two_factor
        self._dispatcher = dispatcher
        self._tokens = tokens
        self._admin_email = admin_email
        self._platform = platform
        self._ttl_minutes = ttl_minutes
        self._sweep_interval = timedelta(minutes=sweep_interval_minutes)
        self._code_length = code_length
        self._max_failed_attempts = max_failed_attempts
        self._clock = clock

        self._requests: Dict[str, RecoveryRequest] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    # ─────────────────────────────────────────────────────────────
    # Step 1
    # ─────────────────────────────────────────────────────────────
    async def initiate_recovery(self, email: str) -> RecoveryInitResult:
        try:
            user = await find_by_email(self._users, email)
        except Exception:
            logger.exception("Error looking up account for recovery")
            return RecoveryInitResult(
                success=False,
                message="Error initiating recovery process.",
                error=ErrorKind.INTERNAL,
            )

        if user is None:
            # Same response shape as a real request; the decoy id is never stored
            self._log_failure("initiate", ErrorKind.NOT_FOUND, email=email)
            return RecoveryInitResult(
                success=True,
                message=INITIATED_MESSAGE,
                request_id=self._tokens.random_id(REQUEST_ID_BYTES),
                error=ErrorKind.NOT_FOUND,
            )

        code = self._tokens.random_code(self._code_length)
        now = self._clock()
        async with self._lock:
            request_id = self._tokens.random_id(REQUEST_ID_BYTES)
            while request_id in self._requests:
                request_id = self._tokens.random_id(REQUEST_ID_BYTES)
            self._requests[request_id] = RecoveryRequest(
                user_id=user.id,
                request_id=request_id,
                email_code_digest=self._tokens.digest(code),
                password_digest_snapshot=user.password_digest,
                expires_at=now + timedelta(minutes=self._ttl_minutes),
            )

        subject, html = emails.recovery_code_email(
            self._platform, user.username, code, self._ttl_minutes
        )
        self._dispatcher.dispatch(user.email, subject, html)
        subject, html = emails.recovery_admin_alert_email(
            self._platform, user.id, user.username, user.email, now
        )
        self._dispatcher.dispatch(self._admin_email, subject, html)

        audit("recovery.initiated", user_id=user.id, request_id=request_id)
        return RecoveryInitResult(
            success=True, message=INITIATED_MESSAGE, request_id=request_id
        )

    # ─────────────────────────────────────────────────────────────
    # Step 2
    # ─────────────────────────────────────────────────────────────
    async def verify_email_code(self, request_id: str, code: str) -> EmailCodeResult:
        try:
            async with self._lock:
                request = self._active_request(request_id)
                if request.continuation_token_digest is not None:
                    # Email step already passed; the code digest is retired
                    raise FlowError(ErrorKind.ALREADY_USED, "email code already verified")
                if not self._tokens.matches(code, request.email_code_digest):
                    self._record_mismatch(request)
                    raise FlowError(ErrorKind.MISMATCH, "email code mismatch")

                token = self._tokens.random_id(CONTINUATION_TOKEN_BYTES)
                request.continuation_token_digest = self._tokens.digest(token)
                request.email_code_digest = ""
                request.attempts.reset()
        except FlowError as exc:
            self._log_failure("verify_email_code", exc.kind, request_id=request_id)
            return EmailCodeResult(
                success=False, message=INVALID_REQUEST_MESSAGE, error=exc.kind
            )

        return EmailCodeResult(
            success=True,
            message="Email code verified successfully.",
            continuation_token=token,
        )

    # ─────────────────────────────────────────────────────────────
    # Step 3
    # ─────────────────────────────────────────────────────────────
    async def verify_original_password(
        self, request_id: str, continuation_token: str, password: str
    ) -> PasswordResult:
        try:
            async with self._lock:
                request = self._active_request(request_id)
                if request.continuation_token_digest is None:
                    raise FlowError(ErrorKind.MISMATCH, "email step not completed")
                if not self._tokens.matches(
                    continuation_token, request.continuation_token_digest
                ):
                    self._record_mismatch(request)
                    raise FlowError(ErrorKind.MISMATCH, "continuation token mismatch")
                if not self._tokens.matches(password, request.password_digest_snapshot):
                    self._record_mismatch(request)
                    raise FlowError(ErrorKind.MISMATCH, "password mismatch")

                # Advisory only: step 4 is gated on `used`
                complete_token = self._tokens.random_id(COMPLETE_TOKEN_BYTES)
                request.used = True
                request.continuation_token_digest = ""
                request.attempts.reset()
        except FlowError as exc:
            self._log_failure("verify_original_password", exc.kind, request_id=request_id)
            return PasswordResult(
                success=False, message=INVALID_REQUEST_MESSAGE, error=exc.kind
            )

        return PasswordResult(
            success=True,
            message="Password verified successfully.",
            complete_token=complete_token,
        )

    # ─────────────────────────────────────────────────────────────
    # Step 4
    # ─────────────────────────────────────────────────────────────
    async def complete_recovery(
        self, request_id: str, complete_token: str = ""
    ) -> RecoveryCompleteResult:
        try:
            async with self._lock:
                request = self._requests.get(request_id)
                if request is None:
                    raise FlowError(ErrorKind.NOT_FOUND)
                if self._expire_if_needed(request):
                    raise FlowError(ErrorKind.EXPIRED)
                if not request.used:
                    raise FlowError(ErrorKind.MISMATCH, "verification not completed")
                # Claimed here so a concurrent call cannot complete it twice
                del self._requests[request_id]
        except FlowError as exc:
            self._log_failure("complete_recovery", exc.kind, request_id=request_id)
            return RecoveryCompleteResult(
                success=False, message=INVALID_REQUEST_MESSAGE, error=exc.kind
            )

        try:
            user = await self._users.get(request.user_id)
            if user is None:
                self._log_failure("complete_recovery", ErrorKind.NOT_FOUND, user_id=request.user_id)
                return RecoveryCompleteResult(
                    success=False, message=INVALID_REQUEST_MESSAGE, error=ErrorKind.NOT_FOUND
                )
            enrollment = await self._two_factor.generate_secret(user.id, user.username)
        except Exception:
            logger.exception("Error completing recovery %s", request_id)
            await self._restore(request)
            return RecoveryCompleteResult(
                success=False,
                message="Error completing recovery process.",
                error=ErrorKind.INTERNAL,
            )

        audit("recovery.completed", user_id=request.user_id, request_id=request_id)
        return RecoveryCompleteResult(
            success=True,
            message="Recovery completed successfully. Please set up your new 2FA device.",
            totp_enrollment=enrollment,
        )

    # ─────────────────────────────────────────────────────────────
    # Expiry sweep
    # ─────────────────────────────────────────────────────────────
    async def purge_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            expired = [
                request_id
                for request_id, request in self._requests.items()
                if request.is_expired(now)
            ]
            for request_id in expired:
                del self._requests[request_id]
            remaining = len(self._requests)
        logger.info(
            "Cleaned up %d expired recovery requests. %d active requests remaining.",
            len(expired), remaining,
        )
        return len(expired)

    async def _sweep_forever(self) -> None:
        interval = self._sweep_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                await self.purge_expired()
            except Exception:
                logger.exception("Recovery expiry sweep failed")

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(
                self._sweep_forever()
            )

    async def shutdown(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def active_requests(self) -> int:
        return len(self._requests)

    async def get_request(self, request_id: str) -> Optional[RecoveryRequest]:
        async with self._lock:
            request = self._requests.get(request_id)
            return copy.deepcopy(request) if request else None

    # ─────────────────────────────────────────────────────────────
    # Helpers (call with self._lock held)
    # ─────────────────────────────────────────────────────────────
    def _active_request(self, request_id: str) -> RecoveryRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise FlowError(ErrorKind.NOT_FOUND)
        if request.used:
            raise FlowError(ErrorKind.ALREADY_USED)
        if self._expire_if_needed(request):
            raise FlowError(ErrorKind.EXPIRED)
        return request

    def _expire_if_needed(self, request: RecoveryRequest) -> bool:
        if not request.is_expired(self._clock()):
            return False
        self._requests.pop(request.request_id, None)
        return True

    def _record_mismatch(self, request: RecoveryRequest) -> None:
        request.attempts.record_failure(self._clock())
        if request.attempts.failed_attempts >= self._max_failed_attempts:
            self._requests.pop(request.request_id, None)
            self._log_failure(
                "attempt_limit", ErrorKind.LOCKED, request_id=request.request_id
            )

    async def _restore(self, request: RecoveryRequest) -> None:
        async with self._lock:
            if not request.is_expired(self._clock()):
                self._requests.setdefault(request.request_id, request)

    @staticmethod
    def _log_failure(operation: str, kind: ErrorKind, **context: object) -> None:
        logger.warning("Recovery %s failed: %s", operation, kind.value)
        audit(f"recovery.{operation}.failed", kind=kind.value, **context)
