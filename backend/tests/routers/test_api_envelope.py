from typing import Any, AsyncIterator, Iterator

import pytest
from fastapi.testclient import TestClient
from turfconnect.deps import get_session
from turfconnect.domain.errors import ConflictError, NotFoundError
from turfconnect.main import app
from turfconnect.models import Match, User, UserRole
from turfconnect.routers import auth as auth_router
from turfconnect.routers import matches as matches_router
from turfconnect.usecases.accounts import AuthResult


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


@pytest.fixture
def client() -> Iterator[TestClient]:
    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession()

    app.dependency_overrides[get_session] = override_get_session
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers.get("X-Request-ID")


def test_not_found_uses_error_envelope(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_get_match(*args: object, **kwargs: object) -> Match:
        raise NotFoundError("match not found")

    monkeypatch.setattr(matches_router.match_usecase, "get_match", fake_get_match)

    res = client.get("/api/v1/matches/9")
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "match not found", "statusCode": 404}


def test_invalid_body_is_400(client: TestClient) -> None:
    res = client.post("/api/v1/auth/register", json={"fullName": "Asha"})
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["statusCode"] == 400
    assert "phone" in body["message"]


def test_missing_bearer_is_401_with_challenge(client: TestClient) -> None:
    res = client.post("/api/v1/matches/1/join")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")
    assert res.json()["success"] is False


def test_register_returns_camel_case_tokens(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    async def fake_register(*args: object, **kwargs: Any) -> AuthResult:
        seen.update(kwargs)
        user = User(
            id=1,
            phone=kwargs["phone"],
            full_name=kwargs["full_name"],
            email=None,
            city="Pune",
            role=kwargs["role"],
            is_verified=False,
        )
        return AuthResult(user=user, access_token="access", refresh_token="refresh")

    monkeypatch.setattr(auth_router.account_usecase, "register", fake_register)

    res = client.post(
        "/api/v1/auth/register",
        json={"phone": "9000000001", "fullName": "Asha", "password": "secret1", "role": "turf_owner"},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["data"]["accessToken"] == "access"
    assert body["data"]["user"]["fullName"] == "Asha"
    assert body["data"]["user"]["role"] == "turf_owner"
    assert seen["role"] == UserRole.TURF_OWNER


def test_duplicate_phone_is_409(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_register(*args: object, **kwargs: object) -> AuthResult:
        raise ConflictError("user with this phone already exists")

    monkeypatch.setattr(auth_router.account_usecase, "register", fake_register)

    res = client.post("/api/v1/auth/register", json={"phone": "9000000001", "fullName": "Asha"})
    assert res.status_code == 409
    assert res.json()["message"] == "user with this phone already exists"
