from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.core.config import Settings, get_settings
from helpdesk.users.models import Actor, UserRole
from helpdesk.users.repository import UserRepository

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, settings: Settings, expires_delta: timedelta | None = None) -> str:
    """Mint a signed token for ``user_id``; used by tooling and tests."""

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": user_id, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc


async def get_user_repository(request: Request) -> UserRepository:
    users = getattr(request.app.state, "user_repository", None)
    if users is None:
        raise HTTPException(status_code=503, detail="User directory is not configured")
    return users


async def authenticate(token: str | None, users: UserRepository, settings: Settings) -> Actor:
    """Resolve a bearer token to the acting user, rejecting deactivated accounts."""

    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    payload = decode_access_token(token, settings)
    user_id = payload.get("sub")
    if not isinstance(user_id, str):
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token - user not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    return user.as_actor()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
    users: Annotated[UserRepository, Depends(get_user_repository)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Actor:
    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = await authenticate(token, users, settings)
    request.state.actor = actor
    return actor


def role_required(role: UserRole) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor has the requested role."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role != role:
            raise HTTPException(status_code=403, detail="Admin access required")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
