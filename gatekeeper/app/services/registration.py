# gatekeeper/app/services/registration.py
"""
Controlled registration and credential provisioning.

1. A prospective user submits a request (PENDING)
2. An admin approves (account created, credentials emailed once) or rejects
3. On first login the user must enroll a TOTP device
4. A verified TOTP code completes setup and returns one-time backup codes

Admins may also provision accounts directly, bypassing the request queue.
Terminal requests (approved/rejected) are kept for audit; nothing expires.
"""
import asyncio
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from gatekeeper.app.core.clock import Clock, utcnow
from gatekeeper.app.core.errors import ErrorKind, FlowError
from gatekeeper.app.core.logging import audit
from gatekeeper.app.schemas.registration import (
    AccountResult,
    FirstLoginResult,
    PendingRegistration,
    RegistrationStatus,
    SubmitResult,
    TwoFactorSetupResult,
)
from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.user import (
    ApprovalStatus,
    IssuedUser,
    UserAccount,
    UserRole,
)
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services import emails
from gatekeeper.app.services.notifier import NotificationDispatcher
from gatekeeper.app.services.two_factor import TwoFactorAuth
from gatekeeper.app.services.user_store import (
    UserStore,
    UserStoreError,
    find_by_email,
    find_by_username,
)

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
USERNAME_PAD_DIGITS = 3
MAX_USERNAME_ATTEMPTS = 20
INITIAL_PASSWORD_LENGTH = 12

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")

SUBMIT_REJECTED_MESSAGE = "A registration request cannot be submitted for this email."


def sanitize_username(raw: str) -> str:
    return _NON_ALPHANUMERIC.sub("", raw)


class RegistrationFlow:
    def __init__(
        self,
        user_store: UserStore,
        two_factor: TwoFactorAuth,
        dispatcher: NotificationDispatcher,
        tokens: TokenGenerator,
        admin_email: str,
        platform: str = "Gatekeeper",
        clock: Clock = utcnow,
    ) -> None:
        self._users = user_store
        self._two_factor = two_factor
        self._dispatcher = dispatcher
        self._tokens = tokens
        self._admin_email = admin_email
        self._platform = platform
        self._clock = clock

        self._registrations: Dict[str, PendingRegistration] = {}
        # Request IDs with an approval/rejection in flight
        self._claimed: Set[str] = set()
        self._lock = asyncio.Lock()

    # ─────────────────────────────────────────────────────────────
    # Intake
    # ─────────────────────────────────────────────────────────────
    async def submit(
        self,
        email: str,
        full_name: str,
        reason: str,
        ip_address: str,
        additional_info: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        email = email.strip()
        try:
            if await find_by_email(self._users, email) is not None:
                raise FlowError(ErrorKind.ALREADY_EXISTS)

            async with self._lock:
                if self._pending_for(email) is not None:
                    raise FlowError(ErrorKind.DUPLICATE_PENDING)
                request = PendingRegistration(
                    id=str(uuid.uuid4()),
                    email=email,
                    full_name=full_name,
                    reason=reason,
                    ip_address=ip_address,
                    additional_info=dict(additional_info or {}),
                    request_date=self._clock(),
                )
                self._registrations[request.id] = request
        except FlowError as exc:
            self._log_failure("submit", exc.kind, email=email)
            return SubmitResult(
                success=False, message=SUBMIT_REJECTED_MESSAGE, error=exc.kind
            )
        except Exception:
            logger.exception("Error submitting registration request")
            return SubmitResult(
                success=False,
                message="Error submitting registration request.",
                error=ErrorKind.INTERNAL,
            )

        subject, html = emails.registration_admin_notice_email(self._platform, request)
        self._dispatcher.dispatch(self._admin_email, subject, html)
        subject, html = emails.registration_received_email(self._platform, full_name)
        self._dispatcher.dispatch(email, subject, html)

        audit("registration.submitted", request_id=request.id, ip=ip_address)
        return SubmitResult(
            success=True,
            message=(
                "Registration request submitted successfully. "
                "You'll be notified when your account is approved."
            ),
            request_id=request.id,
        )

    async def list_pending(self) -> List[PendingRegistration]:
        async with self._lock:
            return [
                request.model_copy(deep=True)
                for request in self._registrations.values()
                if request.status == RegistrationStatus.PENDING
            ]

    async def list_all(self) -> List[PendingRegistration]:
        async with self._lock:
            return [r.model_copy(deep=True) for r in self._registrations.values()]

    async def get_request(self, request_id: str) -> Optional[PendingRegistration]:
        async with self._lock:
            request = self._registrations.get(request_id)
            return request.model_copy(deep=True) if request else None

    # ─────────────────────────────────────────────────────────────
    # Admin decisions
    # ─────────────────────────────────────────────────────────────
    async def approve(
        self, request_id: str, admin_id: str, username: Optional[str] = None
    ) -> AccountResult:
        try:
            request = await self._claim(request_id)
        except FlowError as exc:
            self._log_failure("approve", exc.kind, request_id=request_id)
            return AccountResult(
                success=False, message=self._decision_message(exc), error=exc.kind
            )

        try:
            if username is None or not username.strip():
                username = await self._derive_username(request.email)
            else:
                username = sanitize_username(username)
            account, password = await self._provision(
                email=request.email,
                username=username,
                full_name=request.full_name,
                role=UserRole.USER,
            )
        except FlowError as exc:
            await self._release(request_id)
            self._log_failure("approve", exc.kind, request_id=request_id)
            return AccountResult(
                success=False,
                message=self._account_error_message(exc),
                error=exc.kind,
            )
        except Exception:
            await self._release(request_id)
            logger.exception("Error approving registration request %s", request_id)
            return AccountResult(
                success=False,
                message="Error approving registration request.",
                error=ErrorKind.INTERNAL,
            )

        await self._finalize(request_id, RegistrationStatus.APPROVED, admin_id)
        self._send_credentials(account, request.full_name, password)

        audit("registration.approved", admin_id=admin_id, request_id=request_id, user_id=account.id)
        return AccountResult(
            success=True,
            message="Registration approved and account created successfully.",
            user=IssuedUser.from_account(account),
        )

    async def reject(self, request_id: str, admin_id: str, reason: str) -> FlowResult:
        try:
            request = await self._claim(request_id)
        except FlowError as exc:
            self._log_failure("reject", exc.kind, request_id=request_id)
            return FlowResult(
                success=False, message=self._decision_message(exc), error=exc.kind
            )

        await self._finalize(request_id, RegistrationStatus.REJECTED, admin_id)
        subject, html = emails.rejection_email(self._platform, request.full_name, reason)
        self._dispatcher.dispatch(request.email, subject, html)

        audit("registration.rejected", admin_id=admin_id, request_id=request_id)
        return FlowResult(success=True, message="Registration request rejected.")

    async def create_account_directly(
        self,
        email: str,
        username: str,
        full_name: str,
        admin_id: str,
        role: UserRole = UserRole.USER,
    ) -> AccountResult:
        try:
            account, password = await self._provision(
                email=email.strip(),
                username=sanitize_username(username),
                full_name=full_name,
                role=role,
            )
        except FlowError as exc:
            self._log_failure("create_account", exc.kind, email=email)
            return AccountResult(
                success=False,
                message=self._account_error_message(exc),
                error=exc.kind,
            )
        except Exception:
            logger.exception("Error creating user account")
            return AccountResult(
                success=False,
                message="Error creating user account.",
                error=ErrorKind.INTERNAL,
            )

        self._send_credentials(account, full_name, password)
        audit("account.created", admin_id=admin_id, user_id=account.id, role=role.value)
        return AccountResult(
            success=True,
            message="User account created successfully.",
            user=IssuedUser.from_account(account),
        )

    # ─────────────────────────────────────────────────────────────
    # First-login 2FA handshake
    # ─────────────────────────────────────────────────────────────
    async def handle_first_login(self, user_id: str) -> FirstLoginResult:
        try:
            user = await self._users.get(user_id)
            if user is None:
                raise FlowError(ErrorKind.NOT_FOUND)
            if user.two_factor_verified:
                raise FlowError(ErrorKind.ALREADY_VERIFIED)
            enrollment = await self._two_factor.generate_secret(user.id, user.username)
        except FlowError as exc:
            self._log_failure("first_login", exc.kind, user_id=user_id)
            message = (
                "Two-factor authentication is already set up for this account."
                if exc.kind is ErrorKind.ALREADY_VERIFIED
                else "User not found."
            )
            return FirstLoginResult(success=False, message=message, error=exc.kind)
        except Exception:
            logger.exception("Error handling first login for %s", user_id)
            return FirstLoginResult(
                success=False,
                message="Error setting up two-factor authentication.",
                error=ErrorKind.INTERNAL,
            )

        return FirstLoginResult(
            success=True,
            message="Please set up two-factor authentication to secure your account.",
            totp_setup=enrollment,
        )

    async def complete_two_factor_setup(
        self, user_id: str, code: str
    ) -> TwoFactorSetupResult:
        try:
            user = await self._users.get(user_id)
            if user is None:
                raise FlowError(ErrorKind.NOT_FOUND)
            if user.two_factor_verified:
                raise FlowError(ErrorKind.ALREADY_VERIFIED)
            if not await self._two_factor.verify_code(user_id, code):
                raise FlowError(ErrorKind.MISMATCH)

            backup_codes = await self._two_factor.generate_backup_codes(user_id)
            await self._users.update(user_id, {"two_factor_verified": True})
        except FlowError as exc:
            self._log_failure("two_factor_setup", exc.kind, user_id=user_id)
            messages = {
                ErrorKind.NOT_FOUND: "User not found.",
                ErrorKind.ALREADY_VERIFIED: "Two-factor authentication is already set up for this account.",
                ErrorKind.MISMATCH: "Invalid verification code. Please try again.",
            }
            return TwoFactorSetupResult(
                success=False, message=messages[exc.kind], error=exc.kind
            )
        except Exception:
            logger.exception("Error verifying 2FA setup for %s", user_id)
            return TwoFactorSetupResult(
                success=False,
                message="Error verifying two-factor authentication.",
                error=ErrorKind.INTERNAL,
            )

        audit("two_factor.verified", user_id=user_id)
        return TwoFactorSetupResult(
            success=True,
            message=(
                "Two-factor authentication set up successfully. "
                "Please keep these backup codes in a safe place."
            ),
            backup_codes=backup_codes,
        )

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────
    def _pending_for(self, email: str) -> Optional[PendingRegistration]:
        target = email.lower()
        for request in self._registrations.values():
            if request.email.lower() == target and request.status == RegistrationStatus.PENDING:
                return request
        return None

    async def _claim(self, request_id: str) -> PendingRegistration:
        async with self._lock:
            request = self._registrations.get(request_id)
            if request is None:
                raise FlowError(ErrorKind.NOT_FOUND)
            if request.status != RegistrationStatus.PENDING:
                raise FlowError(ErrorKind.ALREADY_USED, request.status.value)
            if request_id in self._claimed:
                raise FlowError(ErrorKind.ALREADY_USED, "decision in progress")
            self._claimed.add(request_id)
            return request.model_copy(deep=True)

    async def _release(self, request_id: str) -> None:
        async with self._lock:
            self._claimed.discard(request_id)

    async def _finalize(
        self, request_id: str, status: RegistrationStatus, admin_id: str
    ) -> None:
        async with self._lock:
            request = self._registrations[request_id]
            request.status = status
            request.decided_by = admin_id
            request.decided_at = self._clock()
            self._claimed.discard(request_id)

    @staticmethod
    def _decision_message(exc: FlowError) -> str:
        if exc.kind is ErrorKind.NOT_FOUND:
            return "Registration request not found."
        if exc.detail in (RegistrationStatus.APPROVED.value, RegistrationStatus.REJECTED.value):
            return f"This request has already been {exc.detail}."
        return "This request is already being processed."

    @staticmethod
    def _account_error_message(exc: FlowError) -> str:
        if exc.kind is ErrorKind.MISMATCH:
            return "Username must contain at least 3 letters or digits."
        return "This email or username is already registered."

    async def _derive_username(self, email: str) -> str:
        """Email local part, alphanumeric only, padded with digits to 3+ chars."""
        base = sanitize_username(email.split("@", 1)[0])
        candidate = base
        if len(candidate) < MIN_USERNAME_LENGTH:
            candidate = base + self._tokens.random_digits(USERNAME_PAD_DIGITS)

        for _ in range(MAX_USERNAME_ATTEMPTS):
            if await find_by_username(self._users, candidate) is None:
                return candidate
            candidate = base + self._tokens.random_digits(USERNAME_PAD_DIGITS)
        raise FlowError(ErrorKind.ALREADY_EXISTS, "no free username")

    async def _provision(
        self, email: str, username: str, full_name: str, role: UserRole
    ) -> Tuple[UserAccount, str]:
        if len(username) < MIN_USERNAME_LENGTH:
            raise FlowError(ErrorKind.MISMATCH, "username too short")
        if await find_by_email(self._users, email) is not None:
            raise FlowError(ErrorKind.ALREADY_EXISTS, "email")
        if await find_by_username(self._users, username) is not None:
            raise FlowError(ErrorKind.ALREADY_EXISTS, "username")

        password = self._tokens.random_password(INITIAL_PASSWORD_LENGTH)
        now: datetime = self._clock()
        account = UserAccount(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            full_name=full_name,
            password_digest=self._tokens.digest(password),
            role=role,
            approval_status=ApprovalStatus.APPROVED,
            approval_date=now,
            require_two_factor=True,
            two_factor_verified=False,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._users.create(account)
        except UserStoreError as exc:
            raise FlowError(ErrorKind.ALREADY_EXISTS, str(exc)) from exc
        return created, password

    def _send_credentials(self, account: UserAccount, full_name: str, password: str) -> None:
        subject, html = emails.credentials_email(
            self._platform, full_name, account.username, password
        )
        self._dispatcher.dispatch(account.email, subject, html)

    @staticmethod
    def _log_failure(operation: str, kind: ErrorKind, **context: object) -> None:
        logger.warning("Registration %s failed: %s", operation, kind.value)
        audit(f"registration.{operation}.failed", kind=kind.value, **context)
