from abc import ABC, abstractmethod
from collections import deque
from typing import Optional, Type, TypeVar, Generic
from pydantic import BaseModel
from redis.asyncio import Redis
import time
import asyncio
from .logging_util import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class PersistenceProvider(ABC, Generic[T]):
    def __init__(self, model_class: Type[T]):
        self.model_class = model_class

    @abstractmethod
    async def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        """Store the model instance with an optional TTL."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[T]:
        """Retrieve and validate the model instance."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the key from storage."""
        pass


class InMemoryProvider(PersistenceProvider[T]):
    """
    Process-local store. Values are kept as JSON so that what comes back out
    is validated exactly like the Redis path.
    """

    def __init__(self, model_class: Type[T]):
        super().__init__(model_class)
        self._data: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}
        self._expiry_queue: deque[tuple[float, str]] = deque()

    async def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        self._data[key] = value.model_dump_json()
        if ttl_in_sec:
            expiry_time = time.monotonic() + ttl_in_sec
            self._expires_at[key] = expiry_time
            self._expiry_queue.append((expiry_time, key))
        else:
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> Optional[T]:
        expiry_time = self._expires_at.get(key)
        if expiry_time is not None and expiry_time <= time.monotonic():
            self._remove(key)
            return None
        raw = self._data.get(key)
        return self.model_class.model_validate_json(raw) if raw else None

    async def delete(self, key: str) -> None:
        self._remove(key)

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires_at.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def cleanup_expired(self) -> int:
        """Removes expired items and returns the count of deleted items."""
        now = time.monotonic()
        count = 0
        # Keys can be re-set with a later expiry; only the latest deadline counts.
        queue = sorted(self._expiry_queue)
        self._expiry_queue = deque(queue)
        while self._expiry_queue and self._expiry_queue[0][0] <= now:
            expiry_time, key = self._expiry_queue.popleft()
            if key in self._data and self._expires_at.get(key) == expiry_time:
                logger.debug("Cleaning up expired entry")
                self._remove(key)
                count += 1
        return count


class RedisProvider(PersistenceProvider[T]):
    def __init__(self, model_class: Type[T], client: Redis, prefix: str):
        super().__init__(model_class)
        self.client = client
        self.prefix = prefix

    def _get_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        await self.client.set(self._get_key(key), value.model_dump_json(), ex=ttl_in_sec)

    async def get(self, key: str) -> Optional[T]:
        raw = await self.client.get(self._get_key(key))
        return self.model_class.model_validate_json(raw) if raw else None

    async def delete(self, key: str) -> None:
        await self.client.delete(self._get_key(key))


class PersistenceFactory:
    @staticmethod
    def create(
        model_class: Type[T],
        scope: str,
        backend: str = "memory",
        redis_client: Optional[Redis] = None,
    ) -> PersistenceProvider[T]:
        if backend == "redis":
            if redis_client is None:
                raise ValueError("A Redis client is required for the redis storage backend")
            return RedisProvider(model_class=model_class, client=redis_client, prefix=scope)
        return InMemoryProvider(model_class=model_class)


async def ttl_cleanup_task(provider: InMemoryProvider, interval_in_sec: float = 60):
    logger.debug("Starting TTL cleanup task for the session store")
    while True:
        try:
            removed = provider.cleanup_expired()
            if removed:
                logger.info(f"Removed {removed} expired session(s)")
        except Exception:
            logger.error("Session store cleanup failed", exc_info=True)
        await asyncio.sleep(interval_in_sec)
