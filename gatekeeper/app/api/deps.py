# gatekeeper/app/api/deps.py
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import ValidationError

from gatekeeper.app.core.config import settings
from gatekeeper.app.core.errors import ErrorKind
from gatekeeper.app.schemas.common import FlowResult
from gatekeeper.app.schemas.user import TokenPayload, UserAccount, UserRole
from gatekeeper.app.security.jwt import decode_access_token
from gatekeeper.app.services.container import IdentityServices

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/emergency/use"
)


def get_services(request: Request) -> IdentityServices:
    return request.app.state.services


def client_ip(request: Request) -> str:
    # Proxy headers are resolved by the ASGI server, not trusted here
    return request.client.host if request.client else "unknown"


def browser_info(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")


async def get_token_payload(
    services: IdentityServices = Depends(get_services),
    token: str = Depends(reusable_oauth2),
) -> TokenPayload:
    try:
        payload = decode_access_token(
            token,
            secret_key=services.settings.SECRET_KEY,
            algorithm=services.settings.ALGORITHM,
        )
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    return token_data


async def get_current_user(
    services: IdentityServices = Depends(get_services),
    token_data: TokenPayload = Depends(get_token_payload),
) -> UserAccount:
    """Account named by the bearer token's `sub` (a user id)."""
    user = await services.user_store.get(token_data.sub)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def get_current_admin(
    token_data: TokenPayload = Depends(get_token_payload),
) -> TokenPayload:
    if token_data.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return token_data


def raise_for_result(result: FlowResult) -> None:
    """Map a failed flow result to an HTTP error carrying only its message."""
    if result.success:
        return
    if result.error is ErrorKind.LOCKED:
        code = status.HTTP_429_TOO_MANY_REQUESTS
    elif result.error is ErrorKind.INTERNAL:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail=result.message)
