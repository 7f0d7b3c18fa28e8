import logging
from redis.asyncio import Redis
from app.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


def init_redis() -> Redis | None:
    global redis_client
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, realtime fan-out stays in-process")
        return None
    if not redis_client:
        logger.info("Initializing Redis connection to %s", settings.REDIS_URL)
        redis_client = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    return redis_client


def get_redis() -> Redis:
    if not redis_client:
        raise RuntimeError("Redis not initialized")
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
