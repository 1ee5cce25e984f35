# gatekeeper/app/api/v1/endpoints/emergency.py
from fastapi import APIRouter, Depends, Request

from gatekeeper.app.api import deps
from gatekeeper.app.schemas.emergency import EmergencyAccessResult, EmergencyCodeRequest
from gatekeeper.app.services.container import IdentityServices

router = APIRouter()


@router.post("/use", response_model=EmergencyAccessResult)
async def use_emergency_code(
    body: EmergencyCodeRequest,
    request: Request,
    services: IdentityServices = Depends(deps.get_services),
):
    """
    Exchange the emergency code for an admin access token.

    The code rotates on success; the replacement is emailed to the
    configured administrator address only.
    """
    result = await services.vault.use_code(body.code, caller=deps.client_ip(request))
    deps.raise_for_result(result)
    return result
