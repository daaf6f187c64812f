import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import DefaultDict, List, Set
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis
from pollpeak.core.clock import utcnow

logger = logging.getLogger(__name__)

VOTE_CAST = "vote_cast"
ENROLLMENT_CREATED = "enrollment_created"
CONTEST_PHASE_CHANGED = "contest_phase_changed"
CONTEST_DISBURSED = "contest_disbursed"
CONTEST_CANCELLED = "contest_cancelled"
SCORE_SUBMITTED = "score_submitted"


@dataclass
class Event:
    type: str
    # "poll" or "contest"
    topic: str
    entity_id: int
    payload: dict
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def channel(self) -> str:
        return f"{self.topic}:{self.entity_id}"

    def to_message(self) -> dict:
        return jsonable_encoder({
            "type": self.type,
            "topic": self.topic,
            "id": self.entity_id,
            "occurred_at": self.occurred_at,
            "data": self.payload,
        })


class Notifier:
    """Publishes state-change events to live subscribers."""

    async def publish(self, event: Event) -> None:
        raise NotImplementedError


class InMemoryNotifier(Notifier):
    def __init__(self) -> None:
        self.events: List[Event] = []

    async def publish(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.type == event_type]


class RedisNotifier(Notifier):
    """Redis pub/sub, one channel per poll/contest."""

    def __init__(self, redis: Redis, prefix: str = "pollpeak") -> None:
        self.redis = redis
        self.prefix = prefix

    async def publish(self, event: Event) -> None:
        await self.redis.publish(f"{self.prefix}:{event.channel}", json.dumps(event.to_message()))


class ConnectionManager(Notifier):
    """WebSocket fan-out keyed by channel."""

    def __init__(self) -> None:
        self._channels: DefaultDict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._channels[channel].add(websocket)

    def disconnect(self, channel: str, websocket: WebSocket) -> None:
        self._channels[channel].discard(websocket)
        if not self._channels[channel]:
            self._channels.pop(channel, None)

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def publish(self, event: Event) -> None:
        message = event.to_message()
        for websocket in list(self._channels.get(event.channel, [])):
            try:
                await websocket.send_json(message)
            except Exception:
                logger.info(f"dropping dead websocket on {event.channel}")
                self.disconnect(event.channel, websocket)


class FanoutNotifier(Notifier):
    """
    Publish to every configured notifier. Delivery is best-effort: a failing
    transport is logged and never fails the operation that already committed.
    """

    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = list(notifiers)

    async def publish(self, event: Event) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.publish(event)
            except Exception as e:
                logger.error(
                    f"failed to publish {event.type} on {event.channel} via {type(notifier).__name__}: {e}", exc_info=True)
