from app.utils.path_matcher import match, match_any, normalize_path
from app.utils.redis_client import get_redis_client, redis_key

__all__ = [
    "match",
    "match_any",
    "normalize_path",
    "get_redis_client",
    "redis_key",
]
