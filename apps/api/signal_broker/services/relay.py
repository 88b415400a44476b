"""Stateless routing of handshake and data messages."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Optional

from .bridge import MirrorTable, StreamBridge, split_address
from .connections import ConnectionRegistry
from .errors import TargetUnreachable
from .streams import StreamRegistry

SIGNAL_KINDS = ("offer", "answer", "candidate")

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Forward offer/answer/candidate by target and data by stream membership.

    Payloads are opaque. Undeliverable messages are dropped without telling
    the sender; each drop is counted by cause and logged.
    """

    def __init__(
        self,
        instance_name: str,
        connections: ConnectionRegistry,
        streams: StreamRegistry,
        mirrors: MirrorTable,
        bridge: Optional[StreamBridge] = None,
    ) -> None:
        self.instance_name = instance_name
        self._connections = connections
        self._streams = streams
        self._mirrors = mirrors
        self._bridge = bridge
        self.delivered = 0
        self.dropped: Counter[str] = Counter()

    async def relay_signal(
        self,
        sender_id: str,
        kind: str,
        payload: Any,
        target: str | None = None,
        stream_id: str | None = None,
    ) -> bool:
        """Route a handshake message, stamping the true sender."""

        if kind not in SIGNAL_KINDS:
            raise ValueError(f"Unsupported signal kind: {kind}")

        if target:
            if self._connections.is_live(target):
                message = {"type": kind, "sender": sender_id, "payload": payload}
                return self._record(await self._connections.send(target, message), "target-gone", target)
            if self._bridge is not None and split_address(target) is not None:
                sent = await self._bridge.forward_to_address(self.instance_name, sender_id, kind, target, payload)
                return self._record(sent, "bridge-target-gone", target)
            return self._record(False, "unknown-target", target)

        if stream_id:
            session = self._streams.lookup(stream_id)
            if session is not None:
                message = {"type": kind, "sender": sender_id, "streamId": stream_id, "payload": payload}
                return self._record(
                    await self._connections.send(session.producer_id, message), "target-gone", stream_id
                )
            if self._bridge is not None and stream_id in self._mirrors:
                sent = await self._bridge.forward_to_producer(self.instance_name, sender_id, kind, stream_id, payload)
                return self._record(sent, "bridge-target-gone", stream_id)
            return self._record(False, "unknown-stream", stream_id)

        return self._record(False, "no-address", sender_id)

    async def broadcast_data(self, sender_id: str, stream_id: str, payload: Any) -> int:
        """Fan a producer's data frame out to its consumers on every instance."""

        session = self._streams.find_by_producer(sender_id)
        if session is None or session.stream_id != stream_id:
            self._record(False, "not-producer", stream_id)
            return 0

        message = {"type": "data", "streamId": stream_id, "payload": payload}
        consumers = [consumer for consumer in session.consumers if consumer != sender_id]
        delivered = await self._connections.send_many((consumer, message) for consumer in consumers)
        if self._bridge is not None:
            delivered += await self._bridge.relay_data(self.instance_name, stream_id, message)
        self.delivered += delivered
        return delivered

    def stats(self) -> dict[str, Any]:
        return {
            "instance": self.instance_name,
            "delivered": self.delivered,
            "dropped": dict(self.dropped),
        }

    def _record(self, sent: bool, cause: str, address: str) -> bool:
        if sent:
            self.delivered += 1
            return True
        drop = TargetUnreachable(f"{cause}: {address}")
        self.dropped[cause] += 1
        logger.info("Dropped message on %s (%s)", self.instance_name, drop.detail)
        return False
