"""Security helpers for credential hashing and session tokens."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from app.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(slots=True)
class SessionIdentity:
    """Verified identity carried by an access token."""

    user_id: int
    session_id: str | None


def get_password_hash(password: str) -> str:
    """Hash a password for storing in the database."""

    return pwd_context.hash(password)


def new_session_id() -> str:
    """Return an opaque identifier tying a browser session to durable state."""

    return secrets.token_urlsafe(16)


def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token with an expiration time."""

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_session_token(user_id: int, session_id: str | None = None) -> tuple[str, str, int]:
    """Issue an access token bound to a fresh (or given) session identifier.

    Returns the token, the session id and the token lifetime in seconds.
    """

    sid = session_id or new_session_id()
    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    token = create_access_token({"sub": str(user_id), "sid": sid}, expires_delta=lifetime)
    return token, sid, int(lifetime.total_seconds())


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token."""

    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:  # pragma: no cover - simple error mapping
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired") from exc
    except jwt.InvalidTokenError as exc:  # pragma: no cover - simple error mapping
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials") from exc
    return payload


def identity_from_token(token: str) -> SessionIdentity:
    """Extract the user id and session id from a token or raise HTTP 401."""

    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None
    sid = payload.get("sid")
    return SessionIdentity(user_id=user_id, session_id=str(sid) if sid else None)
