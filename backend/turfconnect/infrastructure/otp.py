from __future__ import annotations

import hmac
import logging
import secrets

from redis.asyncio import Redis

from ..domain.repositories import OtpSender, OtpStore

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


def generate_otp() -> str:
    return f"{secrets.randbelow(10**OTP_DIGITS):0{OTP_DIGITS}d}"


def mask_phone(phone: str) -> str:
    return f"{'*' * max(len(phone) - 4, 0)}{phone[-4:]}"


class RedisOtpStore(OtpStore):
    """
    One-time codes keyed by phone with a Redis TTL, so every server instance sees the
    same codes. A code is consumed by whichever verifier's DEL actually removes it.
    """

    def __init__(self, client: Redis, *, ttl_seconds: int, max_attempts: int) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts

    @staticmethod
    def _code_key(phone: str) -> str:
        return f"otp:{phone}:code"

    @staticmethod
    def _attempts_key(phone: str) -> str:
        return f"otp:{phone}:attempts"

    async def save(self, phone: str, code: str) -> None:
        await self.client.set(self._code_key(phone), code, ex=self.ttl_seconds)
        await self.client.delete(self._attempts_key(phone))

    async def verify(self, phone: str, code: str) -> bool:
        code_key = self._code_key(phone)
        attempts_key = self._attempts_key(phone)
        stored = await self.client.get(code_key)
        if stored is None:
            return False
        if not hmac.compare_digest(str(stored), code):
            attempts = await self.client.incr(attempts_key)
            if attempts == 1:
                await self.client.expire(attempts_key, self.ttl_seconds)
            if attempts >= self.max_attempts:
                await self.client.delete(code_key, attempts_key)
                logger.info("otp discarded after %s failed attempts for %s", attempts, mask_phone(phone))
            return False
        removed = await self.client.delete(code_key)
        await self.client.delete(attempts_key)
        return removed == 1


class LoggingOtpSender(OtpSender):
    """Stand-in for the SMS gateway: records that a code went out, never the code itself."""

    async def send(self, phone: str, code: str) -> None:
        logger.info("otp issued for %s (%s digits)", mask_phone(phone), len(code))
