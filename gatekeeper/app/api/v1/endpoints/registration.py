# gatekeeper/app/api/v1/endpoints/registration.py
"""
API endpoints for controlled registration.

Endpoints:
- POST /registrations                       - Submit a request (public)
- GET  /registrations/pending               - List pending requests (admin)
- GET  /registrations                       - List every request (admin)
- POST /registrations/{id}/approve          - Approve and provision (admin)
- POST /registrations/{id}/reject           - Reject with a reason (admin)
- POST /registrations/accounts              - Provision directly (admin)
"""
from typing import List

from fastapi import APIRouter, Depends, Request

from gatekeeper.app.api import deps
from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.registration import (
    AccountResult,
    DirectAccountRequest,
    PendingRegistration,
    RegistrationApproveRequest,
    RegistrationRejectRequest,
    RegistrationSubmitRequest,
    SubmitResult,
)
from gatekeeper.app.schemas.user import TokenPayload
from gatekeeper.app.services.container import IdentityServices

router = APIRouter()


@router.post("", response_model=SubmitResult)
async def submit_registration(
    body: RegistrationSubmitRequest,
    request: Request,
    services: IdentityServices = Depends(deps.get_services),
):
    result = await services.registration.submit(
        body.email,
        body.full_name,
        body.reason,
        deps.client_ip(request),
        body.additional_info,
    )
    deps.raise_for_result(result)
    return result


@router.get("/pending", response_model=List[PendingRegistration])
async def list_pending_registrations(
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    return await services.registration.list_pending()


@router.get("", response_model=List[PendingRegistration])
async def list_registrations(
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    return await services.registration.list_all()


@router.post("/accounts", response_model=AccountResult)
async def create_account_directly(
    body: DirectAccountRequest,
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    result = await services.registration.create_account_directly(
        body.email, body.username, body.full_name, admin.sub, body.role
    )
    deps.raise_for_result(result)
    return result


@router.post("/{request_id}/approve", response_model=AccountResult)
async def approve_registration(
    request_id: str,
    body: RegistrationApproveRequest,
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    result = await services.registration.approve(request_id, admin.sub, body.username)
    deps.raise_for_result(result)
    return result


@router.post("/{request_id}/reject", response_model=FlowResult)
async def reject_registration(
    request_id: str,
    body: RegistrationRejectRequest,
    services: IdentityServices = Depends(deps.get_services),
    admin: TokenPayload = Depends(deps.get_current_admin),
):
    result = await services.registration.reject(request_id, admin.sub, body.reason)
    deps.raise_for_result(result)
    return result
