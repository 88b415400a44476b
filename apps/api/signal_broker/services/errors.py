"""Broker error taxonomy.

Every error carries a ``reason`` slug that is echoed to clients in ``error``
notifications so a failure always surfaces on the same channel that caused it.
"""
from __future__ import annotations


class BrokerError(Exception):
    """Base class for failures reported back to a single connection."""

    reason = "broker-error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason

    def to_message(self) -> dict:
        return {"type": "error", "reason": self.reason, "detail": self.detail}


class StreamNotFound(BrokerError):
    reason = "stream-not-found"

    def __init__(self, stream_id: str) -> None:
        super().__init__(f"Stream {stream_id!r} not found")
        self.stream_id = stream_id

    def to_message(self) -> dict:
        return {"type": "stream-not-found", "streamId": self.stream_id}


class TargetUnreachable(BrokerError):
    """Relay target is not live. Counted and logged, never sent to the caller."""

    reason = "target-unreachable"


class MalformedRequest(BrokerError):
    reason = "malformed-request"


class StreamIdConflict(BrokerError):
    reason = "stream-id-conflict"


class RoleConflict(BrokerError):
    reason = "role-conflict"


class ProducerNotAccepted(BrokerError):
    reason = "producer-not-accepted"


class InternalFailure(BrokerError):
    reason = "internal-failure"
