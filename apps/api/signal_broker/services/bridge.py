"""Cross-instance bridge between broker edges.

The instance colocated with a producer is authoritative for its session. Every
other attached instance keeps a mirror entry so its own consumers can join the
stream and route handshake messages back to the producer.

Both edges currently live in one process, so the bridge talks to the peer
instances directly. A distributed deployment needs an ordered channel in its
place: a session's creation must reach the peer before its end.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from .errors import StreamNotFound
from .streams import StreamSession, session_ended_message

if TYPE_CHECKING:
    from .broker import BrokerInstance

ADDRESS_SEPARATOR = ":"

# A peer instance paired with a mirror it dropped; its consumers still need session-ended.
EndedNotice = Tuple["BrokerInstance", "BridgeMirror"]

logger = logging.getLogger(__name__)


@dataclass
class BridgeMirror:
    """Shadow of a session owned by another instance."""

    stream_id: str
    origin: str
    producer_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    consumers: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def consumer_count(self) -> int:
        return len(self.consumers)


class MirrorTable:
    """Mirrors held by one instance, keyed by stream id.

    Every method runs to completion without awaiting, so the event loop keeps
    mutations from interleaving.
    """

    def __init__(self) -> None:
        self._mirrors: Dict[str, BridgeMirror] = {}

    def __len__(self) -> int:
        return len(self._mirrors)

    def __contains__(self, stream_id: object) -> bool:
        return stream_id in self._mirrors

    def add(self, mirror: BridgeMirror) -> Optional[BridgeMirror]:
        """Store a mirror and return the one it displaced, if any."""

        previous = self._mirrors.get(mirror.stream_id)
        self._mirrors[mirror.stream_id] = mirror
        return previous

    def remove(self, stream_id: str) -> Optional[BridgeMirror]:
        return self._mirrors.pop(stream_id, None)

    def get(self, stream_id: str) -> Optional[BridgeMirror]:
        return self._mirrors.get(stream_id)

    def join(self, stream_id: str, consumer_id: str) -> BridgeMirror:
        mirror = self._mirrors.get(stream_id)
        if mirror is None:
            raise StreamNotFound(stream_id)
        self.leave(consumer_id)
        mirror.consumers.add(consumer_id)
        return mirror

    def leave(self, consumer_id: str) -> Optional[str]:
        mirror = self.find_by_consumer(consumer_id)
        if mirror is None:
            return None
        mirror.consumers.discard(consumer_id)
        return mirror.stream_id

    def find_by_consumer(self, consumer_id: str) -> Optional[BridgeMirror]:
        for mirror in self._mirrors.values():
            if consumer_id in mirror.consumers:
                return mirror
        return None

    def list(self) -> list[BridgeMirror]:
        return list(self._mirrors.values())


def make_address(instance_name: str, connection_id: str) -> str:
    """Qualify a connection id with the instance it lives on."""

    return f"{instance_name}{ADDRESS_SEPARATOR}{connection_id}"


def split_address(address: str) -> Optional[tuple[str, str]]:
    instance_name, sep, connection_id = address.partition(ADDRESS_SEPARATOR)
    if not sep or not instance_name or not connection_id:
        return None
    return instance_name, connection_id


class StreamBridge:
    """Keep mirrors in lockstep with authoritative sessions and forward messages."""

    def __init__(self) -> None:
        self._instances: Dict[str, "BrokerInstance"] = {}

    def attach(self, instance: "BrokerInstance") -> None:
        if instance.name in self._instances:
            raise ValueError(f"Instance {instance.name!r} is already attached")
        if ADDRESS_SEPARATOR in instance.name:
            raise ValueError(f"Instance names cannot contain {ADDRESS_SEPARATOR!r}")
        self._instances[instance.name] = instance

    def instance(self, name: str) -> Optional["BrokerInstance"]:
        return self._instances.get(name)

    def _peers(self, origin: str) -> list["BrokerInstance"]:
        return [instance for name, instance in self._instances.items() if name != origin]

    def session_created(self, origin: str, session: StreamSession) -> List[EndedNotice]:
        """Mirror a freshly registered session into every peer instance.

        Runs without awaiting so the origin can call it under its registry lock.
        Returns the displaced mirrors whose consumers must be told the session ended.
        """

        notices: List[EndedNotice] = []
        for peer in self._peers(origin):
            displaced = peer.mirrors.add(
                BridgeMirror(
                    stream_id=session.stream_id,
                    origin=origin,
                    producer_id=session.producer_id,
                    metadata=dict(session.metadata),
                )
            )
            if displaced is not None:
                notices.append((peer, displaced))
            logger.info("Mirrored stream %s from %s into %s", session.stream_id, origin, peer.name)
        return notices

    def session_ended(self, origin: str, stream_id: str) -> List[EndedNotice]:
        """Drop the peer mirrors of an ended session."""

        notices: List[EndedNotice] = []
        for peer in self._peers(origin):
            mirror = peer.mirrors.get(stream_id)
            if mirror is None or mirror.origin != origin:
                continue
            peer.mirrors.remove(stream_id)
            notices.append((peer, mirror))
            logger.info("Removed mirror of stream %s from %s", stream_id, peer.name)
        return notices

    async def deliver(self, notices: Iterable[EndedNotice]) -> None:
        """Send session-ended to the consumers of dropped mirrors."""

        for peer, mirror in notices:
            await self._notify_ended(peer, mirror)

    async def forward_to_producer(
        self,
        instance_name: str,
        sender_id: str,
        kind: str,
        stream_id: str,
        payload: Any,
    ) -> bool:
        """Carry a consumer's handshake message to the producer on the origin instance."""

        local = self._instances.get(instance_name)
        mirror = local.mirrors.get(stream_id) if local else None
        if mirror is None:
            return False
        origin = self._instances.get(mirror.origin)
        if origin is None:
            return False
        message = {
            "type": kind,
            "sender": make_address(instance_name, sender_id),
            "target": mirror.producer_id,
            "streamId": stream_id,
            "payload": payload,
        }
        return await origin.connections.send(mirror.producer_id, message)

    async def forward_to_address(
        self,
        instance_name: str,
        sender_id: str,
        kind: str,
        address: str,
        payload: Any,
    ) -> bool:
        """Deliver a reply addressed to a bridge address on another instance."""

        parsed = split_address(address)
        if parsed is None:
            return False
        target_instance, connection_id = parsed
        if target_instance == instance_name:
            return False
        destination = self._instances.get(target_instance)
        if destination is None:
            return False
        message = {
            "type": kind,
            "sender": make_address(instance_name, sender_id),
            "payload": payload,
        }
        return await destination.connections.send(connection_id, message)

    async def relay_data(self, origin: str, stream_id: str, message: dict) -> int:
        """Fan a data frame out to peer consumers watching the mirrored stream."""

        delivered = 0
        for peer in self._peers(origin):
            mirror = peer.mirrors.get(stream_id)
            if mirror is None or mirror.origin != origin or not mirror.consumers:
                continue
            delivered += await peer.connections.send_many(
                (consumer, message) for consumer in list(mirror.consumers)
            )
        return delivered

    async def _notify_ended(self, peer: "BrokerInstance", mirror: BridgeMirror) -> None:
        message = session_ended_message(mirror.stream_id)
        await peer.connections.send_many((consumer, message) for consumer in list(mirror.consumers))
