import json
from types import SimpleNamespace
import pytest
from pollpeak.api.routes_ws import subscribe
from pollpeak.services.notifier import ConnectionManager, Event, FanoutNotifier, InMemoryNotifier, Notifier, RedisNotifier


class StubWebSocket:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


class StubRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))


class BrokenNotifier(Notifier):
    async def publish(self, event):
        raise ConnectionError("redis is down")


def vote_event(poll_id=1):
    return Event(type="vote_cast", topic="poll", entity_id=poll_id, payload={"total_votes": 3})


async def test_connection_manager_broadcasts_per_channel():
    manager = ConnectionManager()
    watcher, other, dead = StubWebSocket(), StubWebSocket(), StubWebSocket(broken=True)
    await manager.connect("poll:1", watcher)
    await manager.connect("poll:2", other)
    await manager.connect("poll:1", dead)

    await manager.publish(vote_event(1))

    assert watcher.accepted
    assert watcher.sent[0]["type"] == "vote_cast"
    assert watcher.sent[0]["data"] == {"total_votes": 3}
    assert other.sent == []
    # the dead socket was dropped, the live one kept
    assert manager.subscriber_count("poll:1") == 1

    manager.disconnect("poll:1", watcher)
    assert manager.subscriber_count("poll:1") == 0


async def test_redis_notifier_publishes_json():
    redis = StubRedis()

    await RedisNotifier(redis, prefix="pollpeak").publish(vote_event(7))

    channel, message = redis.published[0]
    assert channel == "pollpeak:poll:7"
    assert json.loads(message)["id"] == 7


async def test_fanout_survives_a_failing_transport():
    memory = InMemoryNotifier()
    fanout = FanoutNotifier(BrokenNotifier(), memory)

    await fanout.publish(vote_event())

    assert len(memory.events) == 1


class FailingReceiveWebSocket(StubWebSocket):
    def __init__(self, manager):
        super().__init__()
        self.app = SimpleNamespace(state=SimpleNamespace(connection_manager=manager))

    async def receive_text(self):
        raise KeyError("text")


async def test_subscription_is_dropped_when_receive_fails():
    manager = ConnectionManager()
    websocket = FailingReceiveWebSocket(manager)

    with pytest.raises(KeyError):
        await subscribe(websocket, "poll", 3)

    assert websocket.accepted
    assert manager.subscriber_count("poll:3") == 0
