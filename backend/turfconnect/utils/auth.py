from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Sequence
import uuid

import jwt
from jwt import InvalidTokenError

TokenType = Literal["access", "refresh"]


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role: str
    token_type: TokenType


def create_token(
    *,
    user_id: int,
    role: str,
    secret: str,
    token_type: TokenType = "access",
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    default_ttl = timedelta(minutes=30) if token_type == "access" else timedelta(days=7)
    exp = now + (expires_delta or default_ttl)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": token_type,
        "iat": now,
        "exp": exp,
        # Distinguishes tokens minted within the same second; refresh tokens are stored unique.
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
    expected_type: TokenType = "access",
) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    if payload.get("type") != expected_type:
        raise ValueError(f"expected {expected_type} token")
    sub = payload.get("sub")
    if sub is None:
        raise ValueError("token missing sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
    return TokenClaims(user_id=user_id, role=str(payload.get("role", "")), token_type=expected_type)
