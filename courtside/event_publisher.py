import logging
from typing import Optional

import redis

from shared.events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = 'global:announcements'
EVENT_LOG_LENGTH = 1000


class EventPublisher:
    """
    Publishes lifecycle events to Redis pub/sub and keeps a capped event log
    per tournament. Without a Redis client events are only logged.

    The stream is advisory: a Redis failure is logged and never fails the
    operation that produced the event.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str) -> "EventPublisher":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @staticmethod
    def tournament_channel(tournament_id: str) -> str:
        return f"tournament:{tournament_id}:events"

    @staticmethod
    def event_log_key(tournament_id: str) -> str:
        return f"tournament:{tournament_id}:event_log"

    def publish(self, event: Event) -> bool:
        if self.redis is None:
            logger.debug(f"Event {event.type.value} for {event.tournament_id}: {event.data}")
            return False

        payload = event.to_json()
        try:
            self.redis.publish(self.tournament_channel(event.tournament_id), payload)
            self.redis.publish(GLOBAL_CHANNEL, payload)
            key = self.event_log_key(event.tournament_id)
            self.redis.lpush(key, payload)
            self.redis.ltrim(key, 0, EVENT_LOG_LENGTH - 1)
            return True
        except redis.RedisError as e:
            logger.warning(f"Failed to publish {event.type.value} for {event.tournament_id}: {e}")
            return False

    def recent_events(self, tournament_id: str, count: int = 50) -> list:
        if self.redis is None:
            return []
        try:
            events_json = self.redis.lrange(self.event_log_key(tournament_id), 0, count - 1)
        except redis.RedisError as e:
            logger.warning(f"Failed to read event log for {tournament_id}: {e}")
            return []
        return [Event.from_json(e) for e in events_json]
