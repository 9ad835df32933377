import json
from unittest.mock import AsyncMock

import pytest

from services.cache_service import InvalidationNotifier


@pytest.mark.asyncio
async def test_notify_deletes_and_publishes_unique_paths():
    redis = AsyncMock()
    notifier = InvalidationNotifier(redis, channel="test:invalidate", prefix="view:")

    paths = await notifier.notify(["/dashboard", "/courses/10", "/dashboard", ""])

    assert paths == ["/dashboard", "/courses/10"]
    redis.delete.assert_awaited_once_with("view:/dashboard", "view:/courses/10")
    channel, payload = redis.publish.await_args.args
    assert channel == "test:invalidate"
    assert json.loads(payload) == {"paths": ["/dashboard", "/courses/10"]}


@pytest.mark.asyncio
async def test_notify_without_paths_does_nothing():
    redis = AsyncMock()
    assert await InvalidationNotifier(redis).notify([]) == []
    redis.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_failure_is_not_raised():
    redis = AsyncMock()
    redis.publish.side_effect = ConnectionError("redis down")

    assert await InvalidationNotifier(redis).notify(["/dashboard"]) == []
