"""FastAPI dependencies for the API layer."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import identity_from_token
from app.services.gateway import PersistenceGateway, StorageError, UserRecord
from xeroxchat.realtime import ChatRuntime

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass(slots=True)
class CurrentUser:
    """Authenticated caller together with the session bound to its token."""

    user: UserRecord
    session_id: str | None


def get_chat_runtime(request: Request) -> ChatRuntime:
    runtime = getattr(request.app.state, "chat", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat service is not ready",
        )
    return runtime


def get_gateway(runtime: ChatRuntime = Depends(get_chat_runtime)) -> PersistenceGateway:
    return runtime.gateway


async def resolve_token(token: str, gateway: PersistenceGateway) -> CurrentUser:
    """Resolve a user from a JWT token or raise an HTTP error."""

    identity = identity_from_token(token)
    try:
        user = await gateway.find_user_by_id(identity.user_id)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User store unavailable",
        ) from exc
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return CurrentUser(user=user, session_id=identity.session_id)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> CurrentUser:
    """Retrieve the current user from the JWT token."""

    return await resolve_token(token, gateway)
