import redis.asyncio as redis

from .config import REDIS_URL

_client: redis.Redis | None = None


def get_redis() -> redis.Redis | None:
    """
    Shared client, or None when REDIS_URL is not set (caching and locks degrade to in-process).
    """
    global _client
    if _client is None and REDIS_URL:
        _client = redis.from_url(REDIS_URL, decode_responses=True)
    return _client


async def close_redis():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
