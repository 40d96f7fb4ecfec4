from functools import lru_cache

from redis.asyncio import Redis

from app.core.settings import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    # Short timeouts: callers fall back to the database when Redis is slow or down.
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_timeout_seconds,
        socket_timeout=settings.redis_timeout_seconds,
    )


def redis_key(*parts: object) -> str:
    """Namespace a cache key, e.g. ``redis_key("menu", "patterns")`` -> ``loans:menu:patterns``."""
    return ":".join([settings.redis_key_prefix, *(str(part) for part in parts)])
