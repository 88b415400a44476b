"""Broker instance: one signaling edge with its own registries.

The streamer edge and the viewer edge are the same type, instantiated twice
with a shared :class:`~.bridge.StreamBridge`.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional

from pydantic import ValidationError

from ..core.config import CollisionPolicy
from ..schemas import signaling as schemas
from .bridge import BridgeMirror, MirrorTable, StreamBridge
from .connections import Connection, ConnectionRegistry, SendCallable
from .errors import (
    BrokerError,
    InternalFailure,
    MalformedRequest,
    ProducerNotAccepted,
    RoleConflict,
    StreamNotFound,
)
from .relay import SignalingRelay
from .streams import EndedHook, SessionHook, StreamRegistry, StreamSession

logger = logging.getLogger(__name__)


class BrokerInstance:
    """Dispatch inbound signaling messages for one edge."""

    def __init__(
        self,
        name: str,
        *,
        bridge: Optional[StreamBridge] = None,
        accepts_producers: bool = True,
        collision_policy: CollisionPolicy = "overwrite",
    ) -> None:
        self.name = name
        self.accepts_producers = accepts_producers
        self.bridge = bridge
        self.connections = ConnectionRegistry()
        self.mirrors = MirrorTable()
        on_created: Optional[SessionHook] = None
        on_ended: Optional[EndedHook] = None
        if bridge is not None:
            # Mirrors change under the registry lock; their consumers hear about it afterwards.
            def mirror_created(session: StreamSession) -> Optional[Awaitable[None]]:
                notices = bridge.session_created(name, session)
                return bridge.deliver(notices) if notices else None

            def mirror_ended(stream_id: str) -> Optional[Awaitable[None]]:
                notices = bridge.session_ended(name, stream_id)
                return bridge.deliver(notices) if notices else None

            on_created, on_ended = mirror_created, mirror_ended

        self.streams = StreamRegistry(
            self.connections,
            collision_policy=collision_policy,
            on_created=on_created,
            on_ended=on_ended,
        )
        self.relay = SignalingRelay(name, self.connections, self.streams, self.mirrors, bridge)
        if bridge is not None:
            bridge.attach(self)

    async def connect(self, send: SendCallable) -> Connection:
        """Register a new transport and tell it which id it was given."""

        connection = self.connections.register(send)
        logger.info("Client connected to %s: %s", self.name, connection.connection_id)
        await self.connections.send(
            connection.connection_id,
            {"type": "connected", "connectionId": connection.connection_id, "instance": self.name},
        )
        return connection

    async def disconnect(self, connection_id: str) -> None:
        """Run cascading cleanup exactly once per physical disconnect."""

        if not self.connections.unregister(connection_id):
            return
        logger.info("Client disconnected from %s: %s", self.name, connection_id)

        if await self.streams.end_session(connection_id) is not None:
            return
        if await self.streams.leave_session(connection_id) is not None:
            return
        self.mirrors.leave(connection_id)

    async def handle_message(self, connection_id: str, raw: Any) -> None:
        """Validate and dispatch one inbound frame.

        Failures are reported on the caller's own channel and never propagate
        to the transport loop.
        """

        try:
            message = self._parse(raw)
            await self._dispatch(connection_id, message)
        except StreamNotFound as exc:
            await self.connections.send(connection_id, exc.to_message())
        except BrokerError as exc:
            logger.info("Rejected %s from %s: %s", _kind(raw), connection_id, exc.detail)
            await self.connections.send(connection_id, exc.to_message())
        except Exception as exc:  # noqa: BLE001 - one bad message must not kill the socket
            logger.exception("Failed handling %s from %s: %s", _kind(raw), connection_id, exc)
            await self.connections.send(
                connection_id, InternalFailure("Unexpected error while handling message").to_message()
            )

    def list_streams(self) -> list[schemas.StreamSummary]:
        """Local sessions followed by the sessions this edge knows through the bridge."""

        items = [self._summarize_session(session) for session in self.streams.list_sessions()]
        items.extend(
            self._summarize_mirror(mirror)
            for mirror in self.mirrors.list()
            if mirror.stream_id not in self.streams
        )
        return items

    def get_stream(self, stream_id: str) -> schemas.StreamSummary:
        if stream_id in self.streams:
            return self._summarize_session(self.streams.get_session(stream_id))
        mirror = self.mirrors.get(stream_id)
        if mirror is None:
            raise StreamNotFound(stream_id)
        return self._summarize_mirror(mirror)

    def stats(self) -> schemas.RelayStats:
        relay_stats = self.relay.stats()
        return schemas.RelayStats(
            instance=self.name,
            connections=len(self.connections),
            streams=len(self.streams),
            mirrors=len(self.mirrors),
            delivered=relay_stats["delivered"],
            dropped=relay_stats["dropped"],
        )

    def _parse(self, raw: Any) -> Any:
        if not isinstance(raw, dict):
            raise MalformedRequest("Messages must be JSON objects")
        try:
            return schemas.inbound_adapter.validate_python(raw)
        except ValidationError as exc:
            raise MalformedRequest(_describe(exc)) from exc

    async def _dispatch(self, connection_id: str, message: Any) -> None:
        if isinstance(message, schemas.ProducerRegister):
            await self._register_producer(connection_id, message)
        elif isinstance(message, schemas.ConsumerJoin):
            await self._join_consumer(connection_id, message.stream_id)
        elif isinstance(message, schemas.SignalMessage):
            await self.relay.relay_signal(
                connection_id,
                message.type,
                message.payload,
                target=message.target,
                stream_id=message.stream_id,
            )
        elif isinstance(message, schemas.StreamData):
            await self.relay.broadcast_data(connection_id, message.stream_id, message.payload)

    async def _register_producer(self, connection_id: str, message: schemas.ProducerRegister) -> None:
        if not self.accepts_producers:
            raise ProducerNotAccepted(f"{self.name} does not accept producer registrations")
        if self.mirrors.find_by_consumer(connection_id) is not None:
            raise RoleConflict("Connection is already watching a stream")
        await self.streams.create_session(connection_id, message.metadata, message.stream_id)

    async def _join_consumer(self, connection_id: str, stream_id: str) -> None:
        if stream_id in self.streams:
            self.mirrors.leave(connection_id)
            await self.streams.join_session(stream_id, connection_id)
            return

        if stream_id not in self.mirrors:
            raise StreamNotFound(stream_id)
        if self.streams.find_by_producer(connection_id) is not None:
            raise RoleConflict("Producers cannot join a stream as a consumer")
        # Membership on a mirror stays local to this edge.
        await self.streams.leave_session(connection_id)
        self.mirrors.join(stream_id, connection_id)
        logger.info("Consumer %s joined bridged stream %s on %s", connection_id, stream_id, self.name)
        await self.connections.send(connection_id, {"type": "consumer-ready", "streamId": stream_id})

    def _summarize_session(self, session: StreamSession) -> schemas.StreamSummary:
        return schemas.StreamSummary(
            stream_id=session.stream_id,
            producer_id=session.producer_id,
            consumer_count=session.consumer_count,
            metadata=session.metadata,
            origin=self.name,
            created_at=session.created_at,
        )

    @staticmethod
    def _summarize_mirror(mirror: BridgeMirror) -> schemas.StreamSummary:
        return schemas.StreamSummary(
            stream_id=mirror.stream_id,
            producer_id=mirror.producer_id,
            consumer_count=mirror.consumer_count,
            metadata=mirror.metadata,
            origin=mirror.origin,
            created_at=mirror.created_at,
        )


def _kind(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("type", "message"))
    return "message"


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid message"
