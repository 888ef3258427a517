import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..config import Settings
from ..logging import bind_tenant


http_bearer = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Identity carried by the bearer token; the group scopes every store call."""

    id: str
    group: str
    roles: List[str] = []

    def has_roles(self, *required: str) -> bool:
        return set(required).issubset(set(self.roles))


def create_access_token(
    settings: Settings, user_id: str, group: str, roles: Optional[List[str]] = None, ttl_seconds: int = 3600
) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": user_id,
        "group": group,
        "roles": roles or [],
        "iss": settings.jwt_issuer,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> CurrentUser:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(request.app.state.settings, creds.credentials)
    user_id, group = payload.get("sub"), payload.get("group")
    if not user_id or not group:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    if not request.app.state.registry.has_group(group):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Group {group} doesn't exist")
    user = CurrentUser(id=str(user_id), group=str(group), roles=list(payload.get("roles") or []))
    bind_tenant(user.group, user.id)
    return user


def require_roles(*required_roles: str):
    async def _dep(user: CurrentUser = Depends(get_current_user)):
        if not user.has_roles(*required_roles):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
