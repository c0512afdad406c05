import os
from typing import Dict, Optional

import redis
from loguru import logger

class RedisStore:
    """Redis-backed key/value store with the same get/set surface as localStorage.

    Without a Redis URL, or when Redis is unreachable, values live in an
    in-process dict instead.
    """

    def __init__(self, redis_url: Optional[str] = None, namespace: str = "funnel"):
        """Connect to Redis if a URL is configured (argument or ``REDIS_URL``)."""
        self.namespace = namespace
        self._memory: Dict[str, str] = {}
        self.r = None

        redis_url = redis_url or os.getenv("REDIS_URL")
        if not redis_url:
            logger.info("No REDIS_URL configured, using in-memory store")
            return

        try:
            self.r = redis.from_url(redis_url, decode_responses=True)
            # Test connection
            self.r.ping()
            logger.info("Redis connection established successfully")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            # Fallback to in-memory storage (not recommended for production)
            self.r = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            if self.r:
                return self.r.get(self._key(key))
            return self._memory.get(key)
        except Exception as e:
            logger.error(f"Store read failed for {key}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        try:
            if self.r:
                self.r.set(self._key(key), value)
            else:
                self._memory[key] = value
        except Exception as e:
            logger.error(f"Store write failed for {key}: {e}")

    def delete(self, key: str) -> bool:
        """Manually clear a key (for testing/debugging)."""
        try:
            if self.r:
                return bool(self.r.delete(self._key(key)))
            return self._memory.pop(key, None) is not None
        except Exception as e:
            logger.error(f"Failed to clear key: {e}")
            return False
