"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserBase(BaseModel):
    """Base fields shared across user schemas."""

    username: constr(strip_whitespace=True, min_length=1, max_length=50) = Field(
        ..., description="Unique user name shown in rooms"
    )
    email: constr(strip_whitespace=True, max_length=100, pattern=EMAIL_PATTERN) = Field(
        ..., description="Unique e-mail address"
    )


class UserCreate(UserBase):
    """Payload for creating a new user via registration.

    The minimum password length is enforced by the endpoint so that it follows
    the configured policy.
    """

    password: constr(min_length=1, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )


class UserRead(UserBase):
    """Representation of a user returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    avatar_url: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None
    created_at: datetime | None = None


class LoginRequest(BaseModel):
    """Payload for user login, by e-mail or by username."""

    username: str | None = Field(default=None, description="User name")
    email: str | None = Field(default=None, description="User e-mail")
    password: constr(min_length=1, max_length=128) = Field(..., description="User password")

    @model_validator(mode="after")
    def _strip_identifiers(self) -> "LoginRequest":
        self.username = (self.username or "").strip() or None
        self.email = (self.email or "").strip() or None
        return self


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )


class AuthResponse(Token):
    """Token plus the authenticated user, returned by login and registration."""

    message: str
    user: UserRead
