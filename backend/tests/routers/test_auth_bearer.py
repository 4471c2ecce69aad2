from datetime import timedelta
from typing import Any, AsyncIterator

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from turfconnect.config import get_settings
from turfconnect.deps import get_current_caller, get_session
from turfconnect.domain.policies import Caller
from turfconnect.utils.auth import create_token


class DummySession:
    def __init__(self, role: str | None) -> None:
        self.role = role

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> str | None:
        return self.role

    async def rollback(self) -> None:
        return None


def _make_app(role: str | None) -> TestClient:
    app = FastAPI()

    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession(role=role)

    app.dependency_overrides[get_session] = override_get_session

    @app.get("/protected")
    async def protected(caller: Caller = Depends(get_current_caller)) -> dict[str, Any]:
        return {"user_id": caller.user_id, "role": caller.role.value}

    return TestClient(app)


def _token(secret: str, *, expired: bool = False, role: str = "player") -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_token(user_id=123, role=role, secret=secret, expires_delta=delta)


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def test_protected_accepts_valid_token() -> None:
    client = _make_app(role="player")
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 200
    assert res.json() == {"user_id": 123, "role": "player"}


def test_role_is_read_from_database_not_token() -> None:
    client = _make_app(role="turf_owner")
    token = _token("testsecret", role="admin")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json()["role"] == "turf_owner"


def test_protected_rejects_missing_header() -> None:
    client = _make_app(role="player")
    res = client.get("/protected")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")


def test_protected_rejects_non_bearer_scheme() -> None:
    client = _make_app(role="player")
    res = client.get("/protected", headers={"Authorization": f"Basic {_token('testsecret')}"})
    assert res.status_code == 401


def test_protected_rejects_invalid_token() -> None:
    client = _make_app(role="player")
    res = client.get("/protected", headers={"Authorization": "Bearer invalid"})
    assert res.status_code == 401


def test_protected_rejects_token_signed_with_other_secret() -> None:
    client = _make_app(role="player")
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('othersecret')}"})
    assert res.status_code == 401


def test_protected_rejects_expired_token() -> None:
    client = _make_app(role="player")
    token = _token("testsecret", expired=True)
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_when_user_not_found() -> None:
    client = _make_app(role=None)
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 401
