import json
from typing import Iterable, List

from redis.asyncio import Redis

from core.config import settings
from core.logger import logger


class InvalidationNotifier:
    """Drops cached views for the given paths and announces them to subscribers."""

    def __init__(self, redis: Redis, channel: str = None, prefix: str = None):
        self.redis = redis
        self.channel = channel or settings.INVALIDATION_CHANNEL
        self.prefix = prefix or settings.VIEW_CACHE_PREFIX

    async def notify(self, paths: Iterable[str]) -> List[str]:
        unique_paths = list(dict.fromkeys(p for p in paths if p))
        if not unique_paths:
            return []

        try:
            await self.redis.delete(*[f"{self.prefix}{path}" for path in unique_paths])
            await self.redis.publish(self.channel, json.dumps({"paths": unique_paths}))
        except Exception as e:
            logger.warning("View invalidation failed", paths=unique_paths, error=str(e))
            return []

        logger.debug("Views invalidated", paths=unique_paths)
        return unique_paths
