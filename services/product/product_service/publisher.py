"""
Product Service - event publisher

Events go to Redis Streams rather than Pub/Sub so that subscribers which
are down at publish time still receive them once they reconnect. Each
event type gets its own stream, `<exchange>:<event type>`.

The publisher is created in the application lifespan and handed to the
command handlers; there is no module-level connection.
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import PublishFailure
from .schemas import CamelModel

logger = logging.getLogger(__name__)


class EventPublisher:
    def __init__(
        self,
        redis: aioredis.Redis,
        exchange: str = "product_events",
        maxlen: int | None = 10000,
    ):
        self.redis = redis
        self.exchange = exchange
        self.maxlen = maxlen

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "EventPublisher":
        return cls(aioredis.from_url(redis_url, decode_responses=True), **kwargs)

    def stream_for(self, event_type: str) -> str:
        return f"{self.exchange}:{event_type}"

    async def publish(self, event_type: str, payload: CamelModel) -> str:
        """Append one event to its stream and return the stream entry id."""
        try:
            entry_id = await self.redis.xadd(
                self.stream_for(event_type),
                {
                    "event_type": event_type,
                    "data": payload.model_dump_json(by_alias=True),
                },
                maxlen=self.maxlen,
                approximate=True,
            )
        except RedisError as e:
            raise PublishFailure(f"Failed to publish {event_type}: {e}") from e
        logger.info("Event published: %s (%s)", event_type, entry_id)
        return entry_id

    async def aclose(self) -> None:
        await self.redis.aclose()


async def publish_after_commit(
    publisher: EventPublisher, event_type: str, payload: CamelModel
) -> bool:
    """
    Publish an event for a state change that is already committed.

    A failure is logged and reported through the return value; the
    committed change stays in place and reconciliation is left to an
    external process.
    """
    try:
        await publisher.publish(event_type, payload)
    except PublishFailure:
        logger.exception("Event %s not published after commit", event_type)
        return False
    return True
