# gatekeeper/app/services/two_factor.py
"""
TOTP-based two-factor collaborator.

The secret is stored on the user record; backup codes are stored as
digests and their plaintext is returned exactly once.
"""
import logging
from typing import List, Protocol

from gatekeeper.app.schemas.user import TotpEnrollment
from gatekeeper.app.security import totp
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services.user_store import UserStore

logger = logging.getLogger(__name__)

BACKUP_CODE_LENGTH = 10


class TwoFactorAuth(Protocol):
    async def generate_secret(self, user_id: str, label: str) -> TotpEnrollment: ...

    async def verify_code(self, user_id: str, code: str) -> bool: ...

    async def generate_backup_codes(self, user_id: str) -> List[str]: ...


class UnknownUserError(LookupError):
    pass


class TotpTwoFactorAuth:
    def __init__(
        self,
        user_store: UserStore,
        tokens: TokenGenerator,
        issuer: str,
        backup_code_count: int = 10,
    ) -> None:
        self._users = user_store
        self._tokens = tokens
        self._issuer = issuer
        self._backup_code_count = backup_code_count

    async def generate_secret(self, user_id: str, label: str) -> TotpEnrollment:
        """Issue a new secret, replacing any previous one for the user."""
        secret = totp.generate_totp_secret()
        updated = await self._users.update(user_id, {"totp_secret": secret})
        if updated is None:
            raise UnknownUserError(user_id)

        uri = totp.get_totp_uri(secret, label, self._issuer)
        return TotpEnrollment(
            secret=secret,
            provisioning_uri=uri,
            qr_code_base64=totp.generate_qr_code_base64(uri),
        )

    async def verify_code(self, user_id: str, code: str) -> bool:
        user = await self._users.get(user_id)
        if user is None or not user.totp_secret:
            return False
        return totp.verify_totp(user.totp_secret, code)

    async def generate_backup_codes(self, user_id: str) -> List[str]:
        codes = [
            self._tokens.random_code(BACKUP_CODE_LENGTH)
            for _ in range(self._backup_code_count)
        ]
        digests = [self._tokens.digest(code) for code in codes]
        updated = await self._users.update(user_id, {"backup_code_digests": digests})
        if updated is None:
            raise UnknownUserError(user_id)
        logger.info("Issued %d backup codes for user %s", len(codes), user_id)
        return codes
