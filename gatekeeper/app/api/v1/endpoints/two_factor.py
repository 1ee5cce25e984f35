# gatekeeper/app/api/v1/endpoints/two_factor.py
"""
First-login 2FA handshake for the authenticated account.

Endpoints:
- POST /two-factor/first-login - Issue TOTP enrollment material
- POST /two-factor/complete    - Verify a code, receive backup codes

Security:
- Both require a bearer token; the account is the token's `sub`
"""
from fastapi import APIRouter, Depends

from gatekeeper.app.api import deps
from gatekeeper.app.schemas.registration import (
    FirstLoginResult,
    TwoFactorSetupRequest,
    TwoFactorSetupResult,
)
from gatekeeper.app.schemas.user import UserAccount
from gatekeeper.app.services.container import IdentityServices

router = APIRouter()


@router.post("/first-login", response_model=FirstLoginResult)
async def handle_first_login(
    services: IdentityServices = Depends(deps.get_services),
    current_user: UserAccount = Depends(deps.get_current_user),
):
    result = await services.registration.handle_first_login(current_user.id)
    deps.raise_for_result(result)
    return result


@router.post("/complete", response_model=TwoFactorSetupResult)
async def complete_two_factor_setup(
    body: TwoFactorSetupRequest,
    services: IdentityServices = Depends(deps.get_services),
    current_user: UserAccount = Depends(deps.get_current_user),
):
    result = await services.registration.complete_two_factor_setup(
        current_user.id, body.code
    )
    deps.raise_for_result(result)
    return result
