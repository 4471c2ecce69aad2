import logging
from typing import Optional

from redis.asyncio import Redis

from ..config import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None


def get_redis_client() -> Redis:
    """Process-wide client; the server it points at is shared by every instance."""
    global _redis_client

    if _redis_client is None:
        _redis_client = Redis.from_url(
            get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("redis client initialized")
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis client closed")
