import logging
from datetime import timedelta
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.policies import Caller
from .domain.repositories import OtpSender, OtpStore
from .infrastructure.otp import LoggingOtpSender, RedisOtpStore
from .infrastructure.redis_client import get_redis_client
from .models import User, UserRole
from .usecases.accounts import TokenIssuer
from .utils.auth import decode_token

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def get_current_caller(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Caller:
    """Resolve the bearer token to a caller whose role is read fresh from the users table."""
    if authorization is None:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")

    settings = get_settings()
    try:
        claims = decode_token(
            token.strip(),
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except ValueError as exc:
        raise _unauthorized("invalid or expired token") from exc

    try:
        role = await session.scalar(select(User.role).where(User.id == claims.user_id))
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("failed to load user %s for authentication", claims.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to verify user",
        ) from exc
    # End the implicit read transaction so the route can open its own with session.begin().
    await session.rollback()
    if role is None:
        raise _unauthorized("user not found")
    return Caller(user_id=claims.user_id, role=UserRole(role))


def get_token_issuer() -> TokenIssuer:
    settings = get_settings()
    return TokenIssuer(
        secret=settings.auth_secret,
        algorithm=settings.auth_algorithm,
        access_ttl=timedelta(minutes=settings.access_token_minutes),
        refresh_ttl=timedelta(days=settings.refresh_token_days),
    )


def get_otp_store() -> OtpStore:
    settings = get_settings()
    return RedisOtpStore(
        get_redis_client(),
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
    )


def get_otp_sender() -> OtpSender:
    return LoggingOtpSender()
