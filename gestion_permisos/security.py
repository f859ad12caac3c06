from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

from .client import PermissionApiClient
from .models import ResourceId

bearer_scheme = HTTPBearer(auto_error=False)


class CallerClaims(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: ResourceId
    email: str | None = None
    name: str | None = Field(None, alias="nombre")
    role: str | None = Field(None, alias="rol")


def read_claims(token: str) -> CallerClaims:
    # the upstream API verifies the signature on every forwarded call
    try:
        payload = jwt.get_unverified_claims(token)
        return CallerClaims.model_validate(payload)
    except (JWTError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not read token",
        ) from exc


async def get_caller_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    request.state.caller_token = credentials.credentials
    return credentials.credentials


async def get_caller(request: Request, token: str = Depends(get_caller_token)) -> CallerClaims:
    caller = read_claims(token)
    request.state.caller = caller
    return caller


async def get_store(request: Request, token: str = Depends(get_caller_token)) -> PermissionApiClient:
    return PermissionApiClient(
        request.app.state.http,
        access_token=token,
        cache=request.app.state.directory_cache,
    )
