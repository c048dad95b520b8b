"""
Redis client configuration and connection management.
"""

import asyncio
from typing import Optional, Any, Dict, Union

import redis.asyncio as redis
from redis.asyncio import Redis
import structlog

from hydrocred.core.config import settings


logger = structlog.get_logger(__name__)


class RedisClient:
    """Async Redis client wrapper with connection management."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.redis_url
        self._client: Optional[Redis] = None
        self._pool: Optional[redis.ConnectionPool] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._client is not None:
            return
        try:
            self._pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                max_connections=10,
                retry_on_timeout=True,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
            logger.info("Redis connection established", url=self.url)
        except Exception as e:
            logger.error("Failed to connect to Redis", url=self.url, error=str(e))
            self._client = None
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client is None:
            return
        try:
            await self._client.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error("Error closing Redis connection", error=str(e))
        finally:
            self._client = None

    @property
    def client(self) -> Redis:
        """Get Redis client instance."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis connection health."""
        try:
            if self._client is None:
                return {"status": "disconnected", "error": "No connection"}

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            result = await self._client.ping()
            ping_time = (loop.time() - start_time) * 1000

            return {
                "status": "healthy" if result else "unhealthy",
                "ping_ms": round(ping_time, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: Union[str, int], ex: Optional[int] = None) -> bool:
        return bool(await self.client.set(key, value, ex=ex))

    async def delete(self, *keys: str) -> int:
        return await self.client.delete(*keys)
