# gatekeeper/app/services/container.py
"""
Process-wide service graph.

Built once at startup and shared by every request. `start()` launches the
recovery expiry sweep; `shutdown()` stops it and drains notifications.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from gatekeeper.app.core.clock import Clock, utcnow
from gatekeeper.app.core.config import DEFAULT_EMERGENCY_CODE_DIGEST, Settings
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services.emergency_vault import EmergencyAccessVault
from gatekeeper.app.services.notifier import (
    NotificationDispatcher,
    Notifier,
    build_notifier,
)
from gatekeeper.app.services.recovery import RecoveryFlow
from gatekeeper.app.services.registration import RegistrationFlow
from gatekeeper.app.services.trusted_devices import TrustedDeviceRegistry
from gatekeeper.app.services.two_factor import TotpTwoFactorAuth, TwoFactorAuth
from gatekeeper.app.services.user_store import UserStore

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


@dataclass
class IdentityServices:
    settings: Settings
    user_store: UserStore
    dispatcher: NotificationDispatcher
    two_factor: TwoFactorAuth
    recovery: RecoveryFlow
    registration: RegistrationFlow
    devices: TrustedDeviceRegistry
    vault: EmergencyAccessVault

    async def start(self) -> None:
        self.recovery.start()
        logger.info("Identity services started")

    async def shutdown(self) -> None:
        await self.recovery.shutdown()
        await self.dispatcher.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        logger.info("Identity services stopped")


def build_services(
    settings: Settings,
    user_store: UserStore,
    notifier: Optional[Notifier] = None,
    two_factor: Optional[TwoFactorAuth] = None,
    tokens: Optional[TokenGenerator] = None,
    clock: Clock = utcnow,
) -> IdentityServices:
    tokens = tokens or TokenGenerator()
    dispatcher = NotificationDispatcher(notifier or build_notifier(settings))
    two_factor = two_factor or TotpTwoFactorAuth(
        user_store,
        tokens,
        issuer=settings.TOTP_ISSUER,
        backup_code_count=settings.BACKUP_CODE_COUNT,
    )

    if settings.is_production and settings.EMERGENCY_CODE_DIGEST == DEFAULT_EMERGENCY_CODE_DIGEST:
        logger.warning(
            "EMERGENCY_CODE_DIGEST is the factory default; "
            "set it to the digest of a private code before exposing the service."
        )

    return IdentityServices(
        settings=settings,
        user_store=user_store,
        dispatcher=dispatcher,
        two_factor=two_factor,
        recovery=RecoveryFlow(
            user_store,
            two_factor,
            dispatcher,
            tokens,
            admin_email=settings.ADMIN_EMAIL,
            platform=settings.PROJECT_NAME,
            ttl_minutes=settings.RECOVERY_REQUEST_TTL_MINUTES,
            sweep_interval_minutes=settings.RECOVERY_SWEEP_INTERVAL_MINUTES,
            code_length=settings.RECOVERY_CODE_LENGTH,
            max_failed_attempts=settings.MAX_FAILED_ATTEMPTS,
            clock=clock,
        ),
        registration=RegistrationFlow(
            user_store,
            two_factor,
            dispatcher,
            tokens,
            admin_email=settings.ADMIN_EMAIL,
            platform=settings.PROJECT_NAME,
            clock=clock,
        ),
        devices=TrustedDeviceRegistry(user_store, tokens, clock=clock),
        vault=EmergencyAccessVault(
            tokens,
            dispatcher,
            admin_email=settings.ADMIN_EMAIL,
            initial_digest=settings.EMERGENCY_CODE_DIGEST,
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            platform=settings.PROJECT_NAME,
            code_length=settings.EMERGENCY_CODE_LENGTH,
            token_ttl_minutes=settings.ADMIN_TOKEN_EXPIRE_MINUTES,
            max_failed_attempts=settings.MAX_FAILED_ATTEMPTS,
            lockout_minutes=settings.LOCKOUT_DURATION_MINUTES,
            clock=clock,
        ),
    )
