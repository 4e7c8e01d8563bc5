"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import CurrentUser, get_current_user, get_gateway
from app.api.limiter import limiter
from app.config import get_settings
from app.core.security import create_session_token
from app.schemas import AuthResponse, LoginRequest, UserCreate, UserRead
from app.services.gateway import (
    ConflictError,
    GatewayError,
    PersistenceGateway,
    StorageError,
    UserRecord,
)

router = APIRouter()
settings = get_settings()

logger = logging.getLogger(__name__)


def _unavailable(exc: StorageError) -> HTTPException:
    logger.error("Authentication request failed: %s", exc.detail)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="User store unavailable",
    )


def _auth_response(user: UserRecord, message: str) -> AuthResponse:
    token, _sid, expires_in = create_session_token(user.id)
    return AuthResponse(
        message=message,
        access_token=token,
        token_type="bearer",
        expires_in=expires_in,
        user=UserRead.model_validate(user),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_default)
async def register_user(
    request: Request,
    user_in: UserCreate,
    gateway: PersistenceGateway = Depends(get_gateway),
) -> AuthResponse:
    """Register a new user and sign them in."""

    if len(user_in.password) < settings.password_min_length:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {settings.password_min_length} characters",
        )

    try:
        if await gateway.find_user_by_email(user_in.email) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
        if await gateway.find_user_by_username(user_in.username) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")
        user_id = await gateway.create_user(user_in.username, user_in.email, user_in.password)
        user = await gateway.find_user_by_id(user_id)
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc
    except StorageError as exc:
        raise _unavailable(exc) from exc

    if user is None:  # pragma: no cover - row vanished between insert and read
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Registration failed")
    logger.info("Registered user %s", user.username)
    return _auth_response(user, "Registration successful")


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.rate_limit_default)
async def login_user(
    request: Request,
    credentials: LoginRequest,
    gateway: PersistenceGateway = Depends(get_gateway),
) -> AuthResponse:
    """Authenticate by e-mail or username and return a session token."""

    try:
        if credentials.email:
            user = await gateway.find_user_by_email(credentials.email)
        elif credentials.username:
            user = await gateway.find_user_by_username(credentials.username)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username or email required",
            )
    except StorageError as exc:
        raise _unavailable(exc) from exc

    if user is None or not await gateway.verify_credential(credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )
    return _auth_response(user, "Login successful")


@router.post("/logout")
@limiter.limit(settings.rate_limit_default)
async def logout_user(
    request: Request,
    current: CurrentUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> dict[str, str]:
    """Drop the active session bound to the caller's token."""

    if current.session_id:
        try:
            await gateway.remove_session(current.session_id)
        except GatewayError:
            logger.warning(
                "Could not remove session for %s on logout",
                current.user.username,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
    return {"message": "Logged out successfully"}
