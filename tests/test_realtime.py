"""
Realtime layer: room membership, brokers, per-connection queues, the
WebSocket frame handler and the client-side projections.
"""
import asyncio
import fnmatch
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from canteen.api.realtime import handle_message
from canteen.realtime import broker as broker_module
from canteen.realtime.broker import Broker, InMemoryBroker, RedisBroker
from canteen.realtime.connection import Connection
from canteen.realtime.projections import ManagerQueueView, StudentOrdersView
from canteen.realtime.rooms import RoomRegistry
from conftest import Recorder


class FakePubSub:
    def __init__(self):
        self.patterns: set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def psubscribe(self, *patterns):
        self.patterns.update(patterns)

    async def punsubscribe(self, *patterns):
        self.patterns.clear()

    async def aclose(self):
        self.closed = True

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class FakeRedis:
    """Just enough of redis.asyncio.Redis for pattern pub/sub between instances."""

    def __init__(self, pubsub_class=None):
        self.pubsub_class = pubsub_class or FakePubSub
        self.subscribers: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []

    def pubsub(self):
        pubsub = self.pubsub_class()
        self.subscribers.append(pubsub)
        return pubsub

    async def publish(self, channel, data):
        self.published.append((channel, data))
        for sub in self.subscribers:
            for pattern in sub.patterns:
                if fnmatch.fnmatchcase(channel, pattern):
                    sub.queue.put_nowait({"type": "pmessage", "pattern": pattern, "channel": channel, "data": data})
        return len(self.subscribers)


class FlakyPubSub(FakePubSub):
    """Drops the connection on the first read, then behaves."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        if self.failures:
            self.failures -= 1
            raise RedisConnectionError("Connection reset by peer")
        return await super().get_message(ignore_subscribe_messages, timeout)


class BrokenPubSub(FakePubSub):
    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        raise ValueError("unexpected reply")


class FakeWebSocket:
    def __init__(self, fail_after: int | None = None):
        self.sent: list[dict] = []
        self.fail_after = fail_after

    async def send_json(self, message):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(message)


async def _eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ─── Rooms ─────────────────────────────────────────────────────────────────────
def test_join_deliver_and_leave():
    rooms = RoomRegistry()
    a, b = Recorder("u1"), Recorder("u1")
    rooms.join(a, "u1")
    rooms.join(b, "u1")

    assert rooms.deliver("u1", {"event": "orderUpdate", "data": {"id": "o1"}}) == 2
    assert rooms.deliver("u2", {"event": "orderUpdate", "data": {"id": "o1"}}) == 0

    rooms.leave(a, "u1")
    rooms.deliver("u1", {"event": "orderUpdate", "data": {"id": "o2"}})
    assert [m["data"]["id"] for m in a.messages] == ["o1"]
    assert [m["data"]["id"] for m in b.messages] == ["o1", "o2"]


def test_disconnect_leaves_every_room():
    rooms = RoomRegistry()
    member = Recorder("u1")
    rooms.join(member, "u1")
    rooms.join(member, "shared")

    assert rooms.disconnect(member) == {"u1", "shared"}
    assert rooms.members("u1") == set()
    assert rooms.members("shared") == set()
    assert rooms.rooms_of(member) == set()
    assert rooms.disconnect(member) == set()


def test_leave_of_unjoined_room_is_harmless():
    rooms = RoomRegistry()
    member = Recorder("u1")
    rooms.leave(member, "u1")
    assert rooms.rooms_of(member) == set()


# ─── Brokers ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_in_memory_broker_delivers_to_room():
    rooms = RoomRegistry()
    member = Recorder("m1")
    rooms.join(member, "m1")

    await InMemoryBroker(rooms).publish("m1", "newOrder", {"id": "o1"})
    assert member.messages == [{"event": "newOrder", "data": {"id": "o1"}}]


@pytest.mark.asyncio
async def test_redis_broker_fans_out_across_instances():
    redis = FakeRedis()
    rooms_a, rooms_b = RoomRegistry(), RoomRegistry()
    broker_a, broker_b = RedisBroker(rooms_a, redis), RedisBroker(rooms_b, redis)
    await broker_a.start()
    await broker_b.start()

    on_a, on_b = Recorder("s1"), Recorder("s1")
    rooms_a.join(on_a, "s1")
    rooms_b.join(on_b, "s1")
    try:
        await broker_a.publish("s1", "orderUpdate", {"id": "o1", "status": "Approved"})
        await _eventually(lambda: on_a.messages and on_b.messages)
    finally:
        await broker_a.stop()
        await broker_b.stop()

    assert redis.published[0][0] == "room:s1"
    assert on_a.events("orderUpdate") == [{"id": "o1", "status": "Approved"}]
    assert on_b.events("orderUpdate") == [{"id": "o1", "status": "Approved"}]
    assert all(sub.closed for sub in redis.subscribers)


@pytest.mark.asyncio
async def test_redis_relay_survives_a_dropped_connection(monkeypatch, caplog):
    monkeypatch.setattr(broker_module, "RELAY_RETRY_SECONDS", 0.01)
    redis = FakeRedis(FlakyPubSub)
    rooms = RoomRegistry()
    broker = RedisBroker(rooms, redis)
    member = Recorder("s1")
    rooms.join(member, "s1")

    with caplog.at_level("WARNING", logger="canteen.realtime.broker"):
        await broker.start()
        await _eventually(lambda: redis.subscribers[0].failures == 0)
        await broker.publish("s1", "orderUpdate", {"id": "o1", "status": "Ready"})
        await _eventually(lambda: member.messages)
        assert not broker._relay_task.done()
        await broker.stop()

    assert member.events("orderUpdate") == [{"id": "o1", "status": "Ready"}]
    assert "lost Redis" in caplog.text


@pytest.mark.asyncio
async def test_stop_after_relay_crash_still_closes_pubsub(caplog):
    redis = FakeRedis(BrokenPubSub)
    broker = RedisBroker(RoomRegistry(), redis)
    await broker.start()
    await _eventually(lambda: broker._relay_task.done())

    with caplog.at_level("ERROR", logger="canteen.realtime.broker"):
        await broker.stop()

    assert redis.subscribers[0].closed
    assert "relay task had failed" in caplog.text


def test_broker_without_publish_cannot_be_built():
    class SilentBroker(Broker):
        pass

    with pytest.raises(TypeError):
        SilentBroker(RoomRegistry())


def test_redis_dispatch_discards_malformed_payload(caplog):
    rooms = RoomRegistry()
    member = Recorder("s1")
    rooms.join(member, "s1")
    broker = RedisBroker(rooms, FakeRedis())

    with caplog.at_level("WARNING", logger="canteen.realtime.broker"):
        assert broker.dispatch({"channel": "room:s1", "data": "{not json"}) == 0
    assert member.messages == []
    assert "malformed" in caplog.text

    assert broker.dispatch({"channel": "other:s1", "data": json.dumps({"event": "x", "data": {}})}) == 0
    assert broker.dispatch({"channel": "room:s1", "data": json.dumps({"event": "orderUpdate", "data": {"id": "o"}})}) == 1


# ─── Connections ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_full_outbound_queue_drops_events():
    conn = Connection(FakeWebSocket(), "s1", max_queue=2)
    assert conn.enqueue({"event": "orderUpdate", "data": {"id": "1"}})
    assert conn.enqueue({"event": "orderUpdate", "data": {"id": "2"}})
    assert not conn.enqueue({"event": "orderUpdate", "data": {"id": "3"}})
    assert conn.queue.qsize() == 2


@pytest.mark.asyncio
async def test_writer_forwards_in_order_and_stops_on_closed_socket():
    ws = FakeWebSocket(fail_after=2)
    conn = Connection(ws, "s1")
    for i in range(3):
        conn.enqueue({"event": "orderUpdate", "data": {"id": str(i)}})

    await asyncio.wait_for(conn.writer(), timeout=2)
    assert [m["data"]["id"] for m in ws.sent] == ["0", "1"]


@pytest.mark.asyncio
async def test_slow_client_does_not_block_the_room():
    rooms = RoomRegistry()
    slow = Connection(FakeWebSocket(), "s1", max_queue=1)
    fast = Recorder("s1")
    rooms.join(slow, "s1")
    rooms.join(fast, "s1")

    assert rooms.deliver("s1", {"event": "orderUpdate", "data": {"id": "1"}}) == 2
    assert rooms.deliver("s1", {"event": "orderUpdate", "data": {"id": "2"}}) == 1
    assert len(fast.messages) == 2


# ─── Frame handling ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_join_and_leave_own_room():
    rooms = RoomRegistry()
    conn = Connection(FakeWebSocket(), "s1")

    assert handle_message(rooms, conn, json.dumps({"event": "join", "data": "s1"})) == {"event": "joined", "data": "s1"}
    assert rooms.members("s1") == {conn}
    assert handle_message(rooms, conn, json.dumps({"event": "leave", "data": "s1"})) == {"event": "left", "data": "s1"}
    assert rooms.members("s1") == set()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps(["join", "s1"]),
        json.dumps({"event": "subscribe", "data": "s1"}),
        json.dumps({"event": "join"}),
        json.dumps({"event": "join", "data": "someone-else"}),
    ],
)
async def test_bad_frames_get_error_reply(raw):
    rooms = RoomRegistry()
    conn = Connection(FakeWebSocket(), "s1")
    reply = handle_message(rooms, conn, raw)
    assert reply["event"] == "error"
    assert reply["data"]["detail"]
    assert rooms.rooms_of(conn) == set()


# ─── Projections ───────────────────────────────────────────────────────────────
def _snap(order_id, status):
    return {"id": order_id, "status": status}


def test_manager_queue_adds_updates_and_drops_finished_orders():
    view = ManagerQueueView([_snap("a", "Pending"), _snap("old", "Completed")])
    assert [o["id"] for o in view.orders] == ["a"]

    assert view.apply("newOrder", _snap("b", "Pending"))
    assert view.apply("orderUpdate", _snap("a", "Approved"))
    assert [(o["id"], o["status"]) for o in view.orders] == [("a", "Approved"), ("b", "Pending")]

    assert view.apply("orderUpdate", _snap("b", "Cancelled"))
    assert view.get("b") is None
    assert not view.apply("orderUpdate", _snap("b", "Cancelled"))


def test_duplicate_events_keep_one_entry():
    view = ManagerQueueView()
    view.apply("newOrder", _snap("a", "Pending"))
    view.apply("newOrder", _snap("a", "Pending"))
    assert len(view.orders) == 1


def test_student_view_keeps_history_and_ignores_new_order_events():
    view = StudentOrdersView([_snap("a", "Pending")])
    assert not view.apply("newOrder", _snap("b", "Pending"))
    assert view.apply("orderUpdate", _snap("a", "Cancelled"))
    assert view.get("a")["status"] == "Cancelled"


def test_terminal_order_never_regresses():
    view = StudentOrdersView([_snap("a", "Completed")])
    assert not view.apply("orderUpdate", _snap("a", "Ready"))
    assert view.get("a")["status"] == "Completed"


@pytest.mark.asyncio
async def test_frame_without_text_is_rejected():
    rooms = RoomRegistry()
    conn = Connection(FakeWebSocket(), "s1")
    assert handle_message(rooms, conn, None)["event"] == "error"
