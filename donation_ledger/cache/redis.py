import json
from typing import Optional, List
from datetime import timedelta
import redis
import structlog

from donation_ledger.core.config import get_settings
from donation_ledger.middleware.metrics import cache_operations_total

logger = structlog.get_logger(__name__)

CATEGORY_TOTALS_KEY = "categories:totals"


class RedisCache:
    """Read-through cache for category totals"""

    def __init__(self):
        self.redis_client: Optional[redis.Redis] = None

    def init_redis(self) -> Optional[redis.Redis]:
        """Initialize Redis connection; no URL configured means no cache"""
        settings = get_settings()
        if not settings.redis_url:
            logger.info("Redis URL not configured, category cache disabled")
            return None

        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True
        )

        try:
            client.ping()
        except redis.RedisError as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise ConnectionError(f"Failed to connect to Redis: {e}")

        self.redis_client = client
        logger.info("Redis connection established successfully")
        return self.redis_client

    def close(self):
        """Close Redis connection"""
        if self.redis_client:
            self.redis_client.close()
            self.redis_client = None
            logger.info("Redis connection closed")

    def get_category_totals(self) -> Optional[List[dict]]:
        if not self.redis_client:
            return None

        try:
            cached_data = self.redis_client.get(CATEGORY_TOTALS_KEY)
        except redis.RedisError as e:
            cache_operations_total.labels(operation="get", status="error").inc()
            logger.warning("Failed to read category totals from cache", error=str(e))
            return None

        if cached_data:
            cache_operations_total.labels(operation="get", status="hit").inc()
            return json.loads(cached_data)

        cache_operations_total.labels(operation="get", status="miss").inc()
        return None

    def set_category_totals(self, categories: List[dict], ttl: timedelta = timedelta(seconds=60)) -> bool:
        if not self.redis_client:
            return False

        try:
            self.redis_client.setex(
                CATEGORY_TOTALS_KEY,
                int(ttl.total_seconds()),
                json.dumps(categories, default=str)
            )
            cache_operations_total.labels(operation="set", status="ok").inc()
            return True
        except redis.RedisError as e:
            cache_operations_total.labels(operation="set", status="error").inc()
            logger.warning("Failed to cache category totals", error=str(e))
            return False

    def invalidate_category_totals(self) -> bool:
        """Drop cached totals after a confirmed donation changed them"""
        if not self.redis_client:
            return False

        try:
            deleted = self.redis_client.delete(CATEGORY_TOTALS_KEY)
            cache_operations_total.labels(operation="delete", status="ok").inc()
            return bool(deleted)
        except redis.RedisError as e:
            cache_operations_total.labels(operation="delete", status="error").inc()
            logger.warning("Failed to invalidate category totals cache", error=str(e))
            return False


# Global cache instance
redis_cache = RedisCache()


def get_cache() -> RedisCache:
    """Dependency to get the cache"""
    return redis_cache
