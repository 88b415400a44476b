"""Tests for stream session lifecycle rules."""
from __future__ import annotations

import asyncio

import pytest

from signal_broker.services.connections import ConnectionRegistry
from signal_broker.services.errors import RoleConflict, StreamIdConflict, StreamNotFound
from signal_broker.services.streams import StreamRegistry


class DummyConnection:
    def __init__(self, connection_id: str = "") -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def of_type(self, kind: str) -> list[dict]:
        return [message for message in self.messages if message["type"] == kind]


def make_registry(policy: str = "overwrite") -> tuple[ConnectionRegistry, StreamRegistry]:
    connections = ConnectionRegistry()
    return connections, StreamRegistry(connections, collision_policy=policy)


def connect(connections: ConnectionRegistry) -> DummyConnection:
    peer = DummyConnection()
    peer.connection_id = connections.register(peer.send).connection_id
    return peer


@pytest.mark.asyncio
async def test_create_session_replies_ready_to_producer_only():
    connections, registry = make_registry()
    producer = connect(connections)
    bystander = connect(connections)

    stream_id = await registry.create_session(producer.connection_id, {"name": "cam"}, "s1")

    assert stream_id == "s1"
    assert producer.messages == [{"type": "producer-ready", "streamId": "s1"}]
    assert bystander.messages == []
    session = registry.get_session("s1")
    assert session.producer_id == producer.connection_id
    assert session.metadata == {"name": "cam"}


@pytest.mark.asyncio
async def test_create_session_generates_id_when_omitted():
    connections, registry = make_registry()
    first = connect(connections)
    second = connect(connections)

    id_a = await registry.create_session(first.connection_id, {})
    id_b = await registry.create_session(second.connection_id, {})

    assert id_a and id_b and id_a != id_b
    assert first.messages == [{"type": "producer-ready", "streamId": id_a}]


@pytest.mark.asyncio
async def test_consumer_count_tracks_joins_and_leaves():
    connections, registry = make_registry()
    producer = connect(connections)
    await registry.create_session(producer.connection_id, {}, "s1")
    consumers = [connect(connections) for _ in range(4)]

    for consumer in consumers:
        await registry.join_session("s1", consumer.connection_id)
    assert registry.get_session("s1").consumer_count == 4

    assert await registry.leave_session(consumers[0].connection_id) == "s1"
    assert registry.get_session("s1").consumer_count == 3
    assert producer.of_type("peer-left") == [{"type": "peer-left", "id": consumers[0].connection_id}]


@pytest.mark.asyncio
async def test_join_notifies_producer_and_acknowledges_consumer():
    connections, registry = make_registry()
    producer = connect(connections)
    consumer = connect(connections)
    await registry.create_session(producer.connection_id, {}, "s1")

    await registry.join_session("s1", consumer.connection_id)

    assert producer.of_type("peer-joined") == [{"type": "peer-joined", "id": consumer.connection_id}]
    assert consumer.messages == [{"type": "consumer-ready", "streamId": "s1"}]


@pytest.mark.asyncio
async def test_join_unknown_stream_has_no_side_effect():
    connections, registry = make_registry()
    consumer = connect(connections)

    with pytest.raises(StreamNotFound) as exc:
        await registry.join_session("nope", consumer.connection_id)

    assert exc.value.to_message() == {"type": "stream-not-found", "streamId": "nope"}
    assert len(registry) == 0
    assert consumer.messages == []


@pytest.mark.asyncio
async def test_leave_without_membership_is_a_noop():
    connections, registry = make_registry()
    stranger = connect(connections)

    assert await registry.leave_session(stranger.connection_id) is None


@pytest.mark.asyncio
async def test_end_session_notifies_each_consumer_once():
    connections, registry = make_registry()
    producer = connect(connections)
    consumers = [connect(connections) for _ in range(3)]
    await registry.create_session(producer.connection_id, {}, "s1")
    for consumer in consumers:
        await registry.join_session("s1", consumer.connection_id)

    assert await registry.end_session(producer.connection_id) == "s1"
    assert await registry.end_session(producer.connection_id) is None

    assert "s1" not in registry
    for consumer in consumers:
        assert consumer.of_type("session-ended") == [{"type": "session-ended", "streamId": "s1"}]


@pytest.mark.asyncio
async def test_colliding_id_overwrites_and_detaches_old_producer():
    connections, registry = make_registry()
    old_producer = connect(connections)
    new_producer = connect(connections)
    viewer = connect(connections)
    await registry.create_session(old_producer.connection_id, {"v": 1}, "s1")
    await registry.join_session("s1", viewer.connection_id)

    await registry.create_session(new_producer.connection_id, {"v": 2}, "s1")

    assert viewer.of_type("session-ended") == [{"type": "session-ended", "streamId": "s1"}]
    session = registry.get_session("s1")
    assert session.producer_id == new_producer.connection_id
    assert session.consumer_count == 0
    assert await registry.end_session(old_producer.connection_id) is None
    assert "s1" in registry


@pytest.mark.asyncio
async def test_reject_policy_keeps_existing_session():
    connections, registry = make_registry(policy="reject")
    owner = connect(connections)
    intruder = connect(connections)
    await registry.create_session(owner.connection_id, {}, "s1")

    with pytest.raises(StreamIdConflict):
        await registry.create_session(intruder.connection_id, {}, "s1")

    assert registry.get_session("s1").producer_id == owner.connection_id
    assert intruder.messages == []


@pytest.mark.asyncio
async def test_producer_owns_a_single_session():
    connections, registry = make_registry()
    producer = connect(connections)
    viewer = connect(connections)
    await registry.create_session(producer.connection_id, {}, "first")
    await registry.join_session("first", viewer.connection_id)

    await registry.create_session(producer.connection_id, {}, "second")

    assert "first" not in registry
    assert viewer.of_type("session-ended") == [{"type": "session-ended", "streamId": "first"}]
    assert await registry.end_session(producer.connection_id) == "second"
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_roles_do_not_mix_on_one_connection():
    connections, registry = make_registry()
    producer = connect(connections)
    other_producer = connect(connections)
    viewer = connect(connections)
    await registry.create_session(producer.connection_id, {}, "s1")
    await registry.create_session(other_producer.connection_id, {}, "s2")
    await registry.join_session("s1", viewer.connection_id)

    with pytest.raises(RoleConflict):
        await registry.join_session("s2", producer.connection_id)
    with pytest.raises(RoleConflict):
        await registry.create_session(viewer.connection_id, {}, "s3")

    assert producer.connection_id not in registry.get_session("s2").consumers


@pytest.mark.asyncio
async def test_joining_another_stream_leaves_the_first():
    connections, registry = make_registry()
    producer_a = connect(connections)
    producer_b = connect(connections)
    viewer = connect(connections)
    await registry.create_session(producer_a.connection_id, {}, "a")
    await registry.create_session(producer_b.connection_id, {}, "b")

    await registry.join_session("a", viewer.connection_id)
    await registry.join_session("b", viewer.connection_id)

    assert registry.get_session("a").consumer_count == 0
    assert registry.get_session("b").consumer_count == 1
    assert producer_a.of_type("peer-left") == [{"type": "peer-left", "id": viewer.connection_id}]


@pytest.mark.asyncio
async def test_list_sessions_returns_detached_snapshot():
    connections, registry = make_registry()
    producer = connect(connections)
    await registry.create_session(producer.connection_id, {"name": "cam"}, "s1")

    snapshot = registry.list_sessions()
    snapshot[0].consumers.add("intruder")
    snapshot[0].metadata["name"] = "changed"

    session = registry.get_session("s1")
    assert session.consumers == set()
    assert session.metadata == {"name": "cam"}


@pytest.mark.asyncio
async def test_hooks_see_end_before_replacement():
    connections, registry = make_registry()
    events: list[tuple[str, str]] = []

    def on_created(session):
        events.append(("created", session.stream_id))

    def on_ended(stream_id):
        events.append(("ended", stream_id))

    registry.on_created = on_created
    registry.on_ended = on_ended
    first = connect(connections)
    second = connect(connections)

    await registry.create_session(first.connection_id, {}, "s1")
    await registry.create_session(second.connection_id, {}, "s1")
    await registry.end_session(second.connection_id)

    assert events == [("created", "s1"), ("ended", "s1"), ("created", "s1"), ("ended", "s1")]


@pytest.mark.asyncio
async def test_rejoining_the_same_stream_notifies_producer_once():
    connections, registry = make_registry()
    producer = connect(connections)
    consumer = connect(connections)
    await registry.create_session(producer.connection_id, {}, "s1")

    await registry.join_session("s1", consumer.connection_id)
    await registry.join_session("s1", consumer.connection_id)

    assert producer.of_type("peer-joined") == [{"type": "peer-joined", "id": consumer.connection_id}]
    assert consumer.of_type("consumer-ready") == [{"type": "consumer-ready", "streamId": "s1"}] * 2
    assert registry.get_session("s1").consumer_count == 1


@pytest.mark.asyncio
async def test_hooks_follow_registry_order_while_sends_are_pending():
    connections, registry = make_registry()
    events: list[tuple[str, str]] = []
    followups: list[str] = []
    gate = asyncio.Event()
    blocked = asyncio.Event()

    async def slow_send(message: dict) -> None:
        if message["type"] == "producer-ready":
            blocked.set()
            await gate.wait()

    def on_created(session):
        events.append(("created", session.producer_id))

        async def followup():
            followups.append(session.producer_id)

        return followup()

    registry.on_created = on_created
    registry.on_ended = lambda stream_id: events.append(("ended", stream_id))
    slow = connections.register(slow_send).connection_id
    fast = connect(connections)

    pending = asyncio.create_task(registry.create_session(slow, {}, "s1"))
    await blocked.wait()
    await registry.create_session(fast.connection_id, {}, "s1")

    assert events == [("created", slow), ("ended", "s1"), ("created", fast.connection_id)]
    assert followups == [fast.connection_id]

    gate.set()
    await pending

    assert followups == [fast.connection_id, slow]
    assert registry.get_session("s1").producer_id == fast.connection_id
