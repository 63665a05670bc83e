"""Redis Pub/Sub publisher for job lifecycle events.

Every status change is published to ``dust:jobs:events`` and the latest job
snapshot is cached under ``dust:job:{job_id}``, so dashboards and the
notification worker can follow jobs without polling the API.

Publishing is best-effort: when Redis is unreachable the publisher logs a
warning and the job operation proceeds.
"""

import json
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import Redis
from redis.exceptions import ConnectionError, RedisError

from dust_consolidator.core.logging import get_logger

logger = get_logger(__name__)

# Redis channels
CHANNEL_JOB_EVENTS = "dust:jobs:events"

# Cache key patterns
CACHE_KEY_JOB = "dust:job:{job_id}"
CACHE_KEY_USER_JOBS = "dust:user:{user}:jobs"

# Job snapshots are kept for a week
DEFAULT_CACHE_TTL = 7 * 86400


class JobEventPublisher:
    """Publishes job lifecycle events to Redis.

    Example:
        publisher = JobEventPublisher("redis://localhost:6379")
        await publisher.connect()
        await publisher.publish("job.completed", job.to_dict())
        await publisher.close()
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", source: str = "dust-consolidator"):
        self.redis_url = redis_url
        self.source = source
        self._redis: Redis | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._redis is not None

    async def connect(self) -> bool:
        """Establish the Redis connection.

        Returns:
            True if connected, False otherwise
        """
        try:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self._redis.ping()
            self._connected = True
            logger.info("Event publisher connected", redis_url=self.redis_url)
            return True
        except (ConnectionError, RedisError) as e:
            logger.warning("Event publisher failed to connect", error=str(e))
            self._connected = False
            return False

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._connected = False
            logger.info("Event publisher disconnected")

    async def publish(self, event_type: str, job: dict[str, Any]) -> bool:
        """Publish a lifecycle event and refresh the cached snapshot.

        Args:
            event_type: Event name, e.g. "job.created", "job.completed".
            job: Plain-dict job snapshot.

        Returns:
            True if published successfully
        """
        if not self.is_connected:
            logger.debug("Event publisher not connected, skipping", event_type=event_type)
            return False

        # Amounts are published as strings; uint256 values overflow JSON numbers
        snapshot = {k: str(v) if isinstance(v, int) and not isinstance(v, bool) else v for k, v in job.items()}
        snapshot["holdings"] = {a: str(v) for a, v in job.get("holdings", {}).items()}
        event = {
            "event_type": event_type,
            "job_id": job["job_id"],
            "status": job["status"],
            "data": snapshot,
            "source": self.source,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            pipe = self._redis.pipeline()
            pipe.publish(CHANNEL_JOB_EVENTS, json.dumps(event))
            pipe.setex(
                CACHE_KEY_JOB.format(job_id=job["job_id"]),
                DEFAULT_CACHE_TTL,
                json.dumps(snapshot),
            )
            pipe.sadd(CACHE_KEY_USER_JOBS.format(user=job["user"]), job["job_id"])
            await pipe.execute()
            logger.debug("Published job event", event_type=event_type, job_id=job["job_id"])
            return True
        except (ConnectionError, RedisError) as e:
            logger.warning("Failed to publish job event", event_type=event_type, error=str(e))
            self._connected = False
            return False
