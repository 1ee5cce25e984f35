# gatekeeper/app/api/v1/router.py
from fastapi import APIRouter

from gatekeeper.app.api.v1.endpoints import (
    devices,
    emergency,
    recovery,
    registration,
    two_factor,
)

api_router = APIRouter()
api_router.include_router(recovery.router, prefix="/recovery", tags=["recovery"])
api_router.include_router(registration.router, prefix="/registrations", tags=["registration"])
api_router.include_router(two_factor.router, prefix="/two-factor", tags=["two-factor"])
api_router.include_router(devices.router, prefix="/devices", tags=["devices"])
api_router.include_router(emergency.router, prefix="/emergency", tags=["emergency"])
