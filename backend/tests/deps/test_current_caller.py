from datetime import timedelta
from typing import Any

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import ProgrammingError
from turfconnect.config import Settings, get_settings
from turfconnect.deps import get_current_caller
from turfconnect.models import UserRole
from turfconnect.utils.auth import create_token


class DummySession:
    def __init__(self, role: str | None | Exception) -> None:
        self.role = role
        self.rollbacks = 0

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> str | None:
        if isinstance(self.role, Exception):
            raise self.role
        return self.role

    async def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture(autouse=True)
def _set_auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def _token(user_id: int, *, expires_delta: timedelta | None = None, token_type: str = "access") -> str:
    settings = Settings(auth_secret="testsecret")
    return create_token(
        user_id=user_id,
        role="player",
        secret=settings.auth_secret,
        algorithm=settings.auth_algorithm,
        token_type=token_type,  # type: ignore[arg-type]
        expires_delta=expires_delta,
    )


@pytest.mark.asyncio
async def test_get_current_caller_accepts_valid_token() -> None:
    session = DummySession(role="turf_owner")
    caller = await get_current_caller(authorization=f"Bearer {_token(123)}", session=session)  # type: ignore[arg-type]
    assert caller.user_id == 123
    assert caller.role == UserRole.TURF_OWNER
    # The read transaction is closed so the route can begin its own.
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_get_current_caller_rejects_missing_header() -> None:
    session = DummySession(role="player")
    with pytest.raises(HTTPException) as excinfo:
        await get_current_caller(authorization=None, session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_caller_rejects_expired_token() -> None:
    session = DummySession(role="player")
    token = _token(1, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_caller(authorization=f"Bearer {token}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_caller_rejects_refresh_token() -> None:
    session = DummySession(role="player")
    token = _token(1, token_type="refresh")
    with pytest.raises(HTTPException) as excinfo:
        await get_current_caller(authorization=f"Bearer {token}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_caller_rejects_when_user_missing() -> None:
    session = DummySession(role=None)
    with pytest.raises(HTTPException) as excinfo:
        await get_current_caller(authorization=f"Bearer {_token(99)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_caller_handles_missing_users_table() -> None:
    session = DummySession(role=ProgrammingError("missing", None, Exception("cause")))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_caller(authorization=f"Bearer {_token(1)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
    assert session.rollbacks == 1
