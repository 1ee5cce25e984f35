# gatekeeper/app/schemas/common.py
from typing import Optional

from pydantic import BaseModel, Field

from gatekeeper.app.core.errors import ErrorKind


class FlowResult(BaseModel):
    """
    Base shape of every operation result: {success, message, ...}.

    `error` is available to in-process callers and audit logging but is
    excluded from serialization so transports never leak it.
    """
    success: bool
    message: str
    error: Optional[ErrorKind] = Field(default=None, exclude=True)
