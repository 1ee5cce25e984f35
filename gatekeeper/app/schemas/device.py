# gatekeeper/app/schemas/device.py
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.app.schemas.common import FlowResult


@dataclass
class TrustedDevice:
    # device_id and user_id never change after registration
    device_id: str
    user_id: str
    name: str
    ip_address: str
    last_seen: datetime
    browser_info: str


class TrustedDeviceView(BaseModel):
    device_id: str
    name: str
    ip_address: str
    last_seen: datetime
    browser_info: str

    @classmethod
    def from_device(cls, device: TrustedDevice) -> "TrustedDeviceView":
        return cls(
            device_id=device.device_id,
            name=device.name,
            ip_address=device.ip_address,
            last_seen=device.last_seen,
            browser_info=device.browser_info,
        )


class DeviceRegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class DeviceCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1, max_length=128)


class DeviceCheckResponse(BaseModel):
    trusted: bool


class DeviceRegisterResult(FlowResult):
    device_id: Optional[str] = None
