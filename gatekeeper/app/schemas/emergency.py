# gatekeeper/app/schemas/emergency.py
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.app.schemas.common import FlowResult


class EmergencyCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=128)


class EmergencyAccessResult(FlowResult):
    admin_token: Optional[str] = None
