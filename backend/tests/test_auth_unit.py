"""Unit tests for authentication helpers and endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException, Request

from app.api.auth import login_user, register_user
from app.api.deps import resolve_token
from app.api.limiter import limiter
from app.core.security import (
    create_access_token,
    create_session_token,
    identity_from_token,
)
from app.schemas import LoginRequest, UserCreate


@pytest.fixture(autouse=True)
def unlimited(monkeypatch):
    """Call the endpoints directly without spending the per-client quota."""

    monkeypatch.setattr(limiter, "enabled", False)


def _request(path: str) -> Request:
    return Request({"type": "http", "method": "POST", "path": path, "headers": [], "client": ("127.0.0.1", 5000)})


@pytest.fixture()
def user(make_user):
    return make_user("tester", password="supersecret", email="tester@example.com")


@pytest.mark.anyio("asyncio")
async def test_login_by_username_returns_token(gateway, user):
    """Successful login should return a bearer token bound to a session."""

    credentials = LoginRequest(username="tester", password="supersecret")
    response = await login_user(_request("/api/auth/login"), credentials, gateway)

    assert response.token_type == "bearer"
    assert response.user.username == "tester"
    identity = identity_from_token(response.access_token)
    assert identity.user_id == user.id
    assert identity.session_id


@pytest.mark.anyio("asyncio")
async def test_login_by_email_takes_precedence(gateway, user):
    credentials = LoginRequest(username="someone-else", email="tester@example.com", password="supersecret")
    response = await login_user(_request("/api/auth/login"), credentials, gateway)

    assert response.user.id == user.id


@pytest.mark.anyio("asyncio")
async def test_login_rejects_invalid_credentials(gateway, user):
    """Invalid credentials must raise an HTTP 401 error."""

    for credentials in (
        LoginRequest(username="ghost", password="doesnotmatter"),
        LoginRequest(username="tester", password="wrong-password"),
    ):
        with pytest.raises(HTTPException) as exc:
            await login_user(_request("/api/auth/login"), credentials, gateway)
        assert exc.value.status_code == 401
        assert "Incorrect username" in exc.value.detail


@pytest.mark.anyio("asyncio")
async def test_login_requires_an_identifier(gateway):
    credentials = LoginRequest(username="  ", password="secret123")

    with pytest.raises(HTTPException) as exc:
        await login_user(_request("/api/auth/login"), credentials, gateway)

    assert exc.value.status_code == 400


@pytest.mark.anyio("asyncio")
async def test_register_enforces_password_policy(gateway):
    payload = UserCreate(username="shorty", email="shorty@example.com", password="12345")

    with pytest.raises(HTTPException) as exc:
        await register_user(_request("/api/auth/register"), payload, gateway)

    assert exc.value.status_code == 400
    assert await gateway.find_user_by_username("shorty") is None


@pytest.mark.anyio("asyncio")
async def test_register_checks_email_before_username(gateway, user):
    duplicate_both = UserCreate(username="tester", email="tester@example.com", password="secret123")
    duplicate_name = UserCreate(username="tester", email="fresh@example.com", password="secret123")

    with pytest.raises(HTTPException) as email_exc:
        await register_user(_request("/api/auth/register"), duplicate_both, gateway)
    with pytest.raises(HTTPException) as name_exc:
        await register_user(_request("/api/auth/register"), duplicate_name, gateway)

    assert (email_exc.value.status_code, email_exc.value.detail) == (409, "Email already registered")
    assert (name_exc.value.status_code, name_exc.value.detail) == (409, "Username already taken")


@pytest.mark.anyio("asyncio")
async def test_resolve_token(gateway, user):
    """Tokens should resolve to existing users along with their session."""

    token, sid, ttl = create_session_token(user.id, "fixed-session")
    current = await resolve_token(token, gateway)

    assert current.user.id == user.id
    assert current.user.username == "tester"
    assert current.session_id == sid == "fixed-session"
    assert ttl > 0


@pytest.mark.anyio("asyncio")
async def test_resolve_token_for_deleted_user(gateway):
    token = create_access_token({"sub": "999"})

    with pytest.raises(HTTPException) as exc:
        await resolve_token(token, gateway)

    assert exc.value.status_code == 401


@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        create_access_token({"sub": "abc"}),
        create_access_token({"name": "no-subject"}),
        create_access_token({"sub": "1"}, expires_delta=timedelta(seconds=-5)),
    ],
)
def test_identity_from_token_rejects_bad_tokens(token):
    """Invalid tokens must result in a 401 error."""

    with pytest.raises(HTTPException) as exc:
        identity_from_token(token)

    assert exc.value.status_code == 401


def test_token_without_session_claim_has_no_session():
    identity = identity_from_token(create_access_token({"sub": "5"}))

    assert identity.user_id == 5
    assert identity.session_id is None
