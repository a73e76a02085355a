"""
Redis utilities for CronHalo
Backs the per-origin rate limiter when a Redis URL is configured
"""

from __future__ import annotations

import logging
import time
import uuid

try:
    import redis
except ImportError:
    raise ImportError("Redis is required. Install with: pip install redis")

logger = logging.getLogger(__name__)


class RedisConfig:
    """Redis configuration"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        url: str | None = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.url = url or f"redis://{host}:{port}/{db}"


class RedisKeys:
    """Redis key patterns"""

    RATE_LIMIT = "cronhalo:ratelimit:{prefix}:{identifier}"

    @staticmethod
    def rate_limit(prefix: str, identifier: str) -> str:
        """Get the sorted-set key holding one identifier's attempts"""
        return RedisKeys.RATE_LIMIT.format(prefix=prefix, identifier=identifier)


class SyncRedisClient:
    """Synchronous Redis client for the orchestrator's rate limiter"""

    def __init__(self, config: RedisConfig, client: redis.Redis | None = None):
        self.config = config
        self.redis = client or redis.Redis.from_url(config.url, decode_responses=True)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def record_attempt(
        self, key: str, window_seconds: int, now: float | None = None
    ) -> tuple[int, str]:
        """
        Record one attempt in a sliding window.

        Returns the attempt count inside the window and the member that was
        added, so a rejected attempt can be withdrawn with `discard`.

        Trimming, insertion and counting run in one MULTI/EXEC pipeline so
        concurrent callers never see a half-applied update.
        """
        now = time.time() if now is None else now
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        pipe = self.redis.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.expire(key, window_seconds)
        _, _, count, _ = pipe.execute()
        return int(count), member

    def discard(self, key: str, member: str):
        self.redis.zrem(key, member)

    def oldest_attempt(self, key: str) -> float | None:
        """Score of the oldest attempt still inside the window"""
        entries = self.redis.zrange(key, 0, 0, withscores=True)
        if not entries:
            return None
        return float(entries[0][1])

    def reset(self, key: str):
        self.redis.delete(key)

    def close(self):
        self.redis.close()


# Global instance
_sync_client: SyncRedisClient | None = None


def get_sync_redis_client(config: RedisConfig | None = None) -> SyncRedisClient:
    """Get or create sync Redis client"""
    global _sync_client
    if _sync_client is None:
        _sync_client = SyncRedisClient(config or RedisConfig())
    return _sync_client


def close_sync_redis():
    """Close sync Redis connection"""
    global _sync_client
    if _sync_client:
        _sync_client.close()
        _sync_client = None
