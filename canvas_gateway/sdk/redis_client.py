import asyncio
from redis.asyncio import Redis
from typing import Optional
from ..config import Settings
from ..logging_util import get_logger

logger = get_logger(__name__)


class RedisClientSingleton:
    _instance: Optional[Redis] = None
    _lock = asyncio.Lock()

    @classmethod
    async def get_client(cls, settings: Settings) -> Redis:
        if cls._instance is None:
            async with cls._lock:
                if cls._instance is None:
                    instance = Redis(
                        host=settings.REDIS_HOST,
                        port=settings.REDIS_PORT,
                        password=settings.REDIS_PASSWORD,
                        decode_responses=True,
                        max_connections=35,
                    )
                    # Unreachable Redis must stop startup, not the first login.
                    await instance.ping()
                    logger.info(f"Connected to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
                    cls._instance = instance
        return cls._instance

    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.aclose()
            cls._instance = None
