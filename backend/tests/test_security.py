"""Security tests — bearer token validation on the approval API."""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport
from jose import JWTError, jwt

from church_approvals.core.config import settings
from church_approvals.core.security import create_access_token, decode_token
from church_approvals.db.session import get_session
from church_approvals.main import app


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeUser:
    """Minimal user stub returned by the mocked session."""

    def __init__(self, user_id: uuid.UUID, role: str = "MEMBER", is_active: bool = True):
        self.id = user_id
        self.email = "member@church.example.org"
        self.name = "Mr. Seo"
        self.role = role
        self.is_active = is_active


def make_session_override(user):
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = user

    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)

    async def _override():
        yield mock_session
    return _override


async def _get_me(token: str | None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get("/api/v1/auth/me", headers=headers)


# ─── Token helpers ────────────────────────────────────────────────────────────

def test_access_token_round_trip():
    user_id = str(uuid.uuid4())
    payload = decode_token(create_access_token(subject=user_id, role="FINANCE"))

    assert payload["sub"] == user_id
    assert payload["role"] == "FINANCE"
    assert payload["type"] == "access"


def test_tampered_token_is_rejected():
    token = create_access_token(subject=str(uuid.uuid4()), role="ADMIN")

    with pytest.raises(JWTError):
        decode_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))


# ─── /auth/me ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_me_returns_current_user():
    user_id = uuid.uuid4()
    app.dependency_overrides[get_session] = make_session_override(FakeUser(user_id, role="FINANCE"))
    try:
        response = await _get_me(create_access_token(subject=str(user_id), role="FINANCE"))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["id"] == str(user_id)
    assert response.json()["role"] == "FINANCE"


@pytest.mark.asyncio
async def test_missing_token_returns_401():
    response = await _get_me(None)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_expired_token_returns_401():
    user_id = uuid.uuid4()
    expired = jwt.encode(
        {
            "sub": str(user_id),
            "role": "MEMBER",
            "type": "access",
            "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    app.dependency_overrides[get_session] = make_session_override(FakeUser(user_id))
    try:
        response = await _get_me(expired)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_with_wrong_type_returns_401():
    user_id = uuid.uuid4()
    token = jwt.encode(
        {"sub": str(user_id), "type": "refresh"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )
    app.dependency_overrides[get_session] = make_session_override(FakeUser(user_id))
    try:
        response = await _get_me(token)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_returns_401():
    user_id = uuid.uuid4()
    app.dependency_overrides[get_session] = make_session_override(FakeUser(user_id, is_active=False))
    try:
        response = await _get_me(create_access_token(subject=str(user_id), role="MEMBER"))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
