import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from config.settings import Settings


class RedisJobQueue:
    """
    Redis-backed job queue.

    Ready jobs are RPUSHed onto ``<prefix>:<kind>`` as JSON envelopes; delayed
    jobs wait in the ``<prefix>:delayed`` sorted set scored by due time until
    a worker promotes them. Delivery is at-least-once.
    """

    def __init__(self, redis: Redis, key_prefix: str = "club:queue"):
        self.redis = redis
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisJobQueue":
        redis = Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD,
            db=settings.REDIS_QUEUE_DB,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        logging.info(f"RedisJobQueue connected to {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return cls(redis, settings.QUEUE_KEY_PREFIX)

    def queue_key(self, kind: str) -> str:
        return f"{self.key_prefix}:{kind}"

    @property
    def delayed_key(self) -> str:
        return f"{self.key_prefix}:delayed"

    async def enqueue(
        self,
        kind: str,
        payload: Dict[str, Any],
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> str:
        job_id = uuid.uuid4().hex
        envelope = json.dumps({
            "id": job_id,
            "kind": kind,
            "payload": payload,
            "priority": priority,
            "enqueued_at": datetime.now(timezone.utc).isoformat(),
        })

        if delay:
            await self.redis.zadd(self.delayed_key, {envelope: time.time() + delay})
        else:
            await self.redis.rpush(self.queue_key(kind), envelope)

        logging.debug(f"Enqueued {kind} job {job_id} (priority={priority}, delay={delay})")
        return job_id

    async def close(self):
        await self.redis.aclose()
