import json
import logging
from typing import Any, Dict

from redis.asyncio import Redis


class RedisNotifier:
    """Real-time dashboard notifications over Redis pub/sub. No delivery guarantee."""

    def __init__(self, redis: Redis):
        self.redis = redis

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        message = json.dumps({"event": event, "payload": payload})
        receivers = await self.redis.publish(channel, message)
        logging.debug(f"Published {event} on {channel} to {receivers} subscriber(s)")
