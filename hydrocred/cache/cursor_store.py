"""
Storage for the ``lastSyncedBlock`` cursor used by incremental ledger sync.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import structlog

from hydrocred.core.config import settings
from hydrocred.core.exceptions import CursorStoreError
from .redis_client import RedisClient


logger = structlog.get_logger(__name__)


class CursorStore(ABC):
    """Key-value store of last synced block numbers."""

    @abstractmethod
    async def get(self, key: str) -> Optional[int]:
        """Last synced block for ``key``, or None if never synced."""

    @abstractmethod
    async def set(self, key: str, block_number: int) -> None:
        """Record ``block_number`` as the last synced block for ``key``."""

    async def reset(self, key: str) -> None:
        """Forget the cursor for ``key``."""

    async def close(self) -> None:
        pass


class InMemoryCursorStore(CursorStore):
    """Process-local cursor store."""

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._cursors: Dict[str, int] = dict(initial or {})

    async def get(self, key: str) -> Optional[int]:
        return self._cursors.get(key)

    async def set(self, key: str, block_number: int) -> None:
        self._cursors[key] = int(block_number)

    async def reset(self, key: str) -> None:
        self._cursors.pop(key, None)


class RedisCursorStore(CursorStore):
    """Cursor store backed by Redis string keys."""

    def __init__(self, client: Optional[RedisClient] = None, prefix: Optional[str] = None):
        self.redis = client or RedisClient()
        self.prefix = prefix if prefix is not None else settings.cursor_key_prefix
        self.logger = logger.bind(service="cursor_store", backend="redis")

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[int]:
        try:
            await self.redis.connect()
            value = await self.redis.get(self._key(key))
        except Exception as e:
            self.logger.error("Failed to read cursor", key=key, error=str(e))
            raise CursorStoreError(f"Failed to read cursor {key}: {e}", {"key": key})

        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise CursorStoreError(f"Cursor {key} holds a non-integer value", {"key": key, "value": value})

    async def set(self, key: str, block_number: int) -> None:
        try:
            await self.redis.connect()
            await self.redis.set(self._key(key), int(block_number))
        except Exception as e:
            self.logger.error("Failed to write cursor", key=key, block_number=block_number, error=str(e))
            raise CursorStoreError(f"Failed to write cursor {key}: {e}", {"key": key})
        self.logger.debug("Cursor stored", key=key, block_number=block_number)

    async def reset(self, key: str) -> None:
        try:
            await self.redis.connect()
            await self.redis.delete(self._key(key))
        except Exception as e:
            raise CursorStoreError(f"Failed to reset cursor {key}: {e}", {"key": key})

    async def close(self) -> None:
        await self.redis.disconnect()
