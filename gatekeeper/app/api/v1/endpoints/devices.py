# gatekeeper/app/api/v1/endpoints/devices.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from gatekeeper.app.api import deps
from gatekeeper.app.schemas.device import (
    DeviceCheckRequest,
    DeviceCheckResponse,
    DeviceRegisterRequest,
    DeviceRegisterResult,
    TrustedDeviceView,
)
from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.user import TokenPayload, UserAccount
from gatekeeper.app.services.container import IdentityServices

router = APIRouter()


@router.post("", response_model=DeviceRegisterResult)
async def register_trusted_device(
    body: DeviceRegisterRequest,
    request: Request,
    services: IdentityServices = Depends(deps.get_services),
    current_user: UserAccount = Depends(deps.get_current_user),
):
    """Trust the calling browser for the authenticated account."""
    result = await services.devices.register(
        current_user.id, deps.client_ip(request), deps.browser_info(request), body.name
    )
    deps.raise_for_result(result)
    return result


@router.post("/check", response_model=DeviceCheckResponse)
async def check_trusted_device(
    body: DeviceCheckRequest,
    request: Request,
    services: IdentityServices = Depends(deps.get_services),
):
    trusted = await services.devices.is_trusted(
        body.user_id, body.device_id, deps.client_ip(request)
    )
    return DeviceCheckResponse(trusted=trusted)


@router.get("/users/{user_id}", response_model=List[TrustedDeviceView])
async def list_trusted_devices(
    user_id: str,
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    devices = await services.devices.list_devices(user_id)
    return [TrustedDeviceView.from_device(device) for device in devices]


@router.delete("/{device_id}", response_model=FlowResult)
async def revoke_trusted_device(
    device_id: str,
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    if not await services.devices.revoke(device_id, admin.sub):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return FlowResult(success=True, message="Trusted device revoked.")
