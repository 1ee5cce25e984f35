# gatekeeper/app/api/v1/endpoints/recovery.py
"""
API endpoints for 2FA-loss recovery.

Endpoints:
- POST /recovery/initiate        - Email a recovery code
- POST /recovery/verify-email    - Exchange the code for a continuation token
- POST /recovery/verify-password - Prove the original password
- POST /recovery/complete        - Issue a new TOTP enrollment

Security:
- Every failure carries the same message (no account enumeration)
- Each step requires the secret produced by the previous step
"""
from fastapi import APIRouter, Depends

from gatekeeper.app.api import deps
from gatekeeper.app.schemas.recovery import (
    EmailCodeResult,
    PasswordResult,
    RecoveryCompleteRequest,
    RecoveryCompleteResult,
    RecoveryEmailCodeRequest,
    RecoveryInitiateRequest,
    RecoveryInitResult,
    RecoveryPasswordRequest,
)
from gatekeeper.app.services.container import IdentityServices

router = APIRouter()


@router.post("/initiate", response_model=RecoveryInitResult)
async def initiate_recovery(
    body: RecoveryInitiateRequest,
    services: IdentityServices = Depends(deps.get_services),
):
    result = await services.recovery.initiate_recovery(body.email)
    deps.raise_for_result(result)
    return result


@router.post("/verify-email", response_model=EmailCodeResult)
async def verify_email_code(
    body: RecoveryEmailCodeRequest,
    services: IdentityServices = Depends(deps.get_services),
):
    result = await services.recovery.verify_email_code(body.request_id, body.code)
    deps.raise_for_result(result)
    return result


@router.post("/verify-password", response_model=PasswordResult)
async def verify_original_password(
    body: RecoveryPasswordRequest,
    services: IdentityServices = Depends(deps.get_services),
):
    result = await services.recovery.verify_original_password(
        body.request_id, body.continuation_token, body.password
    )
    deps.raise_for_result(result)
    return result


@router.post("/complete", response_model=RecoveryCompleteResult)
async def complete_recovery(
    body: RecoveryCompleteRequest,
    services: IdentityServices = Depends(deps.get_services),
):
    result = await services.recovery.complete_recovery(
        body.request_id, body.complete_token
    )
    deps.raise_for_result(result)
    return result
