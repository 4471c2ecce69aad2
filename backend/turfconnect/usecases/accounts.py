import logging
from dataclasses import dataclass
from datetime import timedelta

from ..domain.errors import AuthenticationError, ConflictError, ValidationError
from ..domain.repositories import OtpSender, OtpStore, RefreshTokenRepository, UserRepository
from ..infrastructure.otp import generate_otp
from ..models import User, UserRole
from ..utils.auth import create_token, decode_token
from ..utils.passwords import hash_password_async, verify_password_async
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = (UserRole.PLAYER, UserRole.TURF_OWNER)
OTP_SIGNUP_NAME = "Player"


@dataclass(frozen=True)
class TokenIssuer:
    secret: str
    algorithm: str
    access_ttl: timedelta
    refresh_ttl: timedelta

    def access_token(self, user: User) -> str:
        return create_token(
            user_id=user.id,
            role=str(user.role),
            secret=self.secret,
            algorithm=self.algorithm,
            expires_delta=self.access_ttl,
        )

    def refresh_token(self, user: User) -> str:
        return create_token(
            user_id=user.id,
            role=str(user.role),
            secret=self.secret,
            token_type="refresh",
            algorithm=self.algorithm,
            expires_delta=self.refresh_ttl,
        )


@dataclass(frozen=True)
class AuthResult:
    user: User
    access_token: str
    refresh_token: str


async def _issue_tokens(token_repo: RefreshTokenRepository, issuer: TokenIssuer, user: User) -> AuthResult:
    refresh_token = issuer.refresh_token(user)
    await token_repo.add(
        token=refresh_token,
        user_id=user.id,
        expires_at=utc_now_naive() + issuer.refresh_ttl,
    )
    return AuthResult(user=user, access_token=issuer.access_token(user), refresh_token=refresh_token)


def _clean_phone(phone: str) -> str:
    cleaned = phone.strip()
    if not cleaned:
        raise ValidationError("phone is required")
    return cleaned


async def register(
    user_repo: UserRepository,
    token_repo: RefreshTokenRepository,
    issuer: TokenIssuer,
    *,
    phone: str,
    full_name: str,
    email: str | None = None,
    password: str | None = None,
    city: str | None = None,
    role: UserRole = UserRole.PLAYER,
) -> AuthResult:
    phone = _clean_phone(phone)
    full_name = full_name.strip()
    if not full_name:
        raise ValidationError("full_name is required")
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("role must be player or turf_owner")
    if await user_repo.get_by_phone(phone) is not None:
        raise ConflictError("user with this phone already exists")

    password_hash = await hash_password_async(password) if password else None
    user = await user_repo.create(
        phone=phone,
        full_name=full_name,
        email=email,
        city=city,
        password_hash=password_hash,
        role=role,
        is_verified=False,
    )
    return await _issue_tokens(token_repo, issuer, user)


async def login(
    user_repo: UserRepository,
    token_repo: RefreshTokenRepository,
    issuer: TokenIssuer,
    *,
    phone: str,
    password: str,
) -> AuthResult:
    phone = _clean_phone(phone)
    if not password:
        raise ValidationError("password is required")
    user = await user_repo.get_by_phone(phone)
    # One message for every failure so callers cannot tell which phones exist.
    if user is None or user.password_hash is None:
        raise AuthenticationError("invalid phone or password")
    if not await verify_password_async(password, user.password_hash):
        raise AuthenticationError("invalid phone or password")
    return await _issue_tokens(token_repo, issuer, user)


async def send_otp(otp_store: OtpStore, otp_sender: OtpSender, *, phone: str) -> None:
    phone = _clean_phone(phone)
    code = generate_otp()
    await otp_store.save(phone, code)
    await otp_sender.send(phone, code)


async def verify_otp(
    user_repo: UserRepository,
    token_repo: RefreshTokenRepository,
    otp_store: OtpStore,
    issuer: TokenIssuer,
    *,
    phone: str,
    code: str,
) -> AuthResult:
    phone = _clean_phone(phone)
    if not await otp_store.verify(phone, code.strip()):
        raise ValidationError("invalid or expired otp")

    user = await user_repo.get_by_phone(phone)
    if user is None:
        user = await user_repo.create(
            phone=phone,
            full_name=OTP_SIGNUP_NAME,
            email=None,
            city=None,
            password_hash=None,
            role=UserRole.PLAYER,
            is_verified=True,
        )
        logger.info("user %s created through otp sign-in", user.id)
    elif not user.is_verified:
        user = await user_repo.mark_verified(user)
    return await _issue_tokens(token_repo, issuer, user)


async def refresh_access_token(
    user_repo: UserRepository,
    token_repo: RefreshTokenRepository,
    issuer: TokenIssuer,
    *,
    refresh_token: str,
) -> str:
    try:
        claims = decode_token(
            refresh_token,
            secret=issuer.secret,
            algorithms=[issuer.algorithm],
            expected_type="refresh",
        )
    except ValueError as exc:
        raise AuthenticationError("invalid refresh token") from exc

    stored = await token_repo.get_valid(refresh_token, now=utc_now_naive())
    if stored is None or stored.user_id != claims.user_id:
        raise AuthenticationError("invalid refresh token")
    user = await user_repo.get(claims.user_id)
    if user is None:
        raise AuthenticationError("invalid refresh token")
    # Role comes from the user row, so a role change applies from the next refresh.
    return issuer.access_token(user)


async def logout(token_repo: RefreshTokenRepository, *, refresh_token: str | None) -> None:
    if refresh_token:
        await token_repo.delete(refresh_token)
