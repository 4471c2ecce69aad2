from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_otp_sender, get_otp_store, get_session, get_token_issuer
from ..domain.errors import DomainError
from ..domain.repositories import OtpSender, OtpStore
from ..infrastructure.repositories import SqlAlchemyRefreshTokenRepository, SqlAlchemyUserRepository
from ..schemas import (
    AccessTokenRead,
    AuthTokens,
    Envelope,
    LoginRequest,
    LogoutRequest,
    OtpRequest,
    OtpVerifyRequest,
    RefreshRequest,
    RegisterRequest,
    UserRead,
)
from ..usecases import accounts as account_usecase
from ..usecases.accounts import AuthResult, TokenIssuer
from .common import http_error

router = APIRouter(prefix="/auth", tags=["auth"])


def _tokens(result: AuthResult) -> AuthTokens:
    return AuthTokens(
        user=UserRead.from_db(user=result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.post("/register", response_model=Envelope[AuthTokens], status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    session: AsyncSession = Depends(get_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Envelope[AuthTokens]:
    user_repo = SqlAlchemyUserRepository(session)
    token_repo = SqlAlchemyRefreshTokenRepository(session)
    try:
        async with session.begin():
            result = await account_usecase.register(
                user_repo,
                token_repo,
                issuer,
                phone=payload.phone,
                full_name=payload.full_name,
                email=payload.email,
                password=payload.password,
                city=payload.city,
                role=payload.role,
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=_tokens(result), message="registered")


@router.post("/login", response_model=Envelope[AuthTokens])
async def login(
    payload: LoginRequest,
    session: AsyncSession = Depends(get_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Envelope[AuthTokens]:
    user_repo = SqlAlchemyUserRepository(session)
    token_repo = SqlAlchemyRefreshTokenRepository(session)
    try:
        async with session.begin():
            result = await account_usecase.login(
                user_repo,
                token_repo,
                issuer,
                phone=payload.phone,
                password=payload.password,
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=_tokens(result), message="logged in")


@router.post("/send-otp", response_model=Envelope[None])
async def send_otp(
    payload: OtpRequest,
    otp_store: OtpStore = Depends(get_otp_store),
    otp_sender: OtpSender = Depends(get_otp_sender),
) -> Envelope[None]:
    try:
        await account_usecase.send_otp(otp_store, otp_sender, phone=payload.phone)
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(message="otp sent")


@router.post("/verify-otp", response_model=Envelope[AuthTokens])
async def verify_otp(
    payload: OtpVerifyRequest,
    session: AsyncSession = Depends(get_session),
    otp_store: OtpStore = Depends(get_otp_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Envelope[AuthTokens]:
    user_repo = SqlAlchemyUserRepository(session)
    token_repo = SqlAlchemyRefreshTokenRepository(session)
    try:
        async with session.begin():
            result = await account_usecase.verify_otp(
                user_repo,
                token_repo,
                otp_store,
                issuer,
                phone=payload.phone,
                code=payload.otp,
            )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=_tokens(result), message="otp verified")


@router.post("/refresh-token", response_model=Envelope[AccessTokenRead])
async def refresh_token(
    payload: RefreshRequest,
    session: AsyncSession = Depends(get_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Envelope[AccessTokenRead]:
    user_repo = SqlAlchemyUserRepository(session)
    token_repo = SqlAlchemyRefreshTokenRepository(session)
    try:
        access_token = await account_usecase.refresh_access_token(
            user_repo,
            token_repo,
            issuer,
            refresh_token=payload.refresh_token,
        )
    except DomainError as exc:
        raise http_error(exc)
    return Envelope(data=AccessTokenRead(access_token=access_token))


@router.post("/logout", response_model=Envelope[None])
async def logout(
    payload: LogoutRequest,
    session: AsyncSession = Depends(get_session),
) -> Envelope[None]:
    token_repo = SqlAlchemyRefreshTokenRepository(session)
    async with session.begin():
        await account_usecase.logout(token_repo, refresh_token=payload.refresh_token)
    return Envelope(message="logged out")
