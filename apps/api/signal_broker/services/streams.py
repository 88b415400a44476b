"""In-memory stream session registry."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from ..core.config import CollisionPolicy
from .connections import ConnectionRegistry, Delivery
from .errors import RoleConflict, StreamIdConflict, StreamNotFound

# Hooks run under the registry lock and must not await. They may return an
# awaitable of follow-up sends, awaited once the lock is released.
SessionHook = Callable[["StreamSession"], Optional[Awaitable[None]]]
EndedHook = Callable[[str], Optional[Awaitable[None]]]

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """One producer bound to the consumers watching its stream."""

    stream_id: str
    producer_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    consumers: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def consumer_count(self) -> int:
        return len(self.consumers)


@dataclass
class _Ended:
    stream_id: str
    consumers: List[str]


def session_ended_message(stream_id: str) -> dict:
    return {"type": "session-ended", "streamId": stream_id}


class StreamRegistry:
    """Own the stream id to session mapping for one broker instance.

    Mutations and the create/end hooks run under a lock in registry order and
    never await I/O while holding it; the notifications they produce are sent
    once the lock is released.
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        *,
        collision_policy: CollisionPolicy = "overwrite",
        on_created: SessionHook | None = None,
        on_ended: EndedHook | None = None,
    ) -> None:
        self._connections = connections
        self._sessions: Dict[str, StreamSession] = {}
        self._lock = asyncio.Lock()
        self.collision_policy = collision_policy
        self.on_created = on_created
        self.on_ended = on_ended

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, stream_id: object) -> bool:
        return stream_id in self._sessions

    async def create_session(
        self,
        producer_id: str,
        metadata: Dict[str, Any] | None = None,
        stream_id: str | None = None,
    ) -> str:
        """Register a producer and return the effective stream id."""

        ended: list[_Ended] = []
        followups: list[Awaitable[None]] = []
        async with self._lock:
            if self._find_by_consumer(producer_id) is not None:
                raise RoleConflict("Connection is already watching a stream")

            existing = self._sessions.get(stream_id) if stream_id else None
            if (
                existing is not None
                and existing.producer_id != producer_id
                and self.collision_policy == "reject"
            ):
                raise StreamIdConflict(f"Stream {stream_id!r} is already active")

            # A producer connection owns at most one session.
            previous = self._find_by_producer(producer_id)
            if previous is not None:
                ended.append(self._pop(previous.stream_id))
            if existing is not None and existing is not previous:
                logger.warning(
                    "Stream %s re-registered by %s; replacing producer %s",
                    stream_id,
                    producer_id,
                    existing.producer_id,
                )
                ended.append(self._pop(existing.stream_id))

            effective_id = stream_id or self._generate_id()
            session = StreamSession(
                stream_id=effective_id,
                producer_id=producer_id,
                metadata=dict(metadata or {}),
            )
            self._sessions[effective_id] = session

            for item in ended:
                self._run_hook(self.on_ended, item.stream_id, followups)
            self._run_hook(self.on_created, session, followups)

        for item in ended:
            await self._announce_end(item)

        logger.info("Stream %s registered by %s", effective_id, producer_id)
        await self._connections.send(producer_id, {"type": "producer-ready", "streamId": effective_id})
        for followup in followups:
            await followup
        return effective_id

    async def join_session(self, stream_id: str, consumer_id: str) -> StreamSession:
        """Add a consumer to a session; raise ``StreamNotFound`` if it is absent."""

        deliveries: list[Delivery] = []
        async with self._lock:
            session = self._sessions.get(stream_id)
            if session is None:
                raise StreamNotFound(stream_id)
            if self._find_by_producer(consumer_id) is not None:
                raise RoleConflict("Producers cannot join a stream as a consumer")

            previous = self._find_by_consumer(consumer_id)
            if previous is not None and previous is not session:
                previous.consumers.discard(consumer_id)
                deliveries.append((previous.producer_id, {"type": "peer-left", "id": consumer_id}))

            if consumer_id not in session.consumers:
                session.consumers.add(consumer_id)
                deliveries.append((session.producer_id, {"type": "peer-joined", "id": consumer_id}))
            deliveries.append((consumer_id, {"type": "consumer-ready", "streamId": stream_id}))

        logger.info("Consumer %s joined stream %s", consumer_id, stream_id)
        for target, message in deliveries:
            await self._connections.send(target, message)
        return self._snapshot(session)

    async def leave_session(self, consumer_id: str) -> Optional[str]:
        """Drop a consumer from whichever session lists it."""

        async with self._lock:
            session = self._find_by_consumer(consumer_id)
            if session is None:
                return None
            session.consumers.discard(consumer_id)

        logger.info("Consumer %s left stream %s", consumer_id, session.stream_id)
        await self._connections.send(session.producer_id, {"type": "peer-left", "id": consumer_id})
        return session.stream_id

    async def end_session(self, producer_id: str) -> Optional[str]:
        """Tear down the session owned by ``producer_id`` and notify its consumers."""

        followups: list[Awaitable[None]] = []
        async with self._lock:
            session = self._find_by_producer(producer_id)
            if session is None:
                return None
            ended = self._pop(session.stream_id)
            self._run_hook(self.on_ended, ended.stream_id, followups)

        await self._announce_end(ended)
        for followup in followups:
            await followup
        return ended.stream_id

    def list_sessions(self) -> list[StreamSession]:
        """Return a point-in-time snapshot of every active session."""

        return [self._snapshot(session) for session in self._sessions.values()]

    def get_session(self, stream_id: str) -> StreamSession:
        session = self._sessions.get(stream_id)
        if session is None:
            raise StreamNotFound(stream_id)
        return self._snapshot(session)

    def find_by_producer(self, connection_id: str) -> Optional[StreamSession]:
        return self._find_by_producer(connection_id)

    def find_by_consumer(self, connection_id: str) -> Optional[StreamSession]:
        return self._find_by_consumer(connection_id)

    def lookup(self, stream_id: str) -> Optional[StreamSession]:
        return self._sessions.get(stream_id)

    def _find_by_producer(self, connection_id: str) -> Optional[StreamSession]:
        for session in self._sessions.values():
            if session.producer_id == connection_id:
                return session
        return None

    def _find_by_consumer(self, connection_id: str) -> Optional[StreamSession]:
        for session in self._sessions.values():
            if connection_id in session.consumers:
                return session
        return None

    def _pop(self, stream_id: str) -> _Ended:
        session = self._sessions.pop(stream_id)
        return _Ended(stream_id=stream_id, consumers=list(session.consumers))

    def _generate_id(self) -> str:
        stream_id = str(uuid4())
        while stream_id in self._sessions:
            stream_id = str(uuid4())
        return stream_id

    async def _announce_end(self, ended: _Ended) -> None:
        logger.info("Stream %s ended (%d consumers notified)", ended.stream_id, len(ended.consumers))
        message = session_ended_message(ended.stream_id)
        await self._connections.send_many((consumer, message) for consumer in ended.consumers)

    @staticmethod
    def _run_hook(hook: Callable[[Any], Optional[Awaitable[None]]] | None, arg: Any, followups: list) -> None:
        if hook is None:
            return
        followup = hook(arg)
        if followup is not None:
            followups.append(followup)

    @staticmethod
    def _snapshot(session: StreamSession) -> StreamSession:
        return StreamSession(
            stream_id=session.stream_id,
            producer_id=session.producer_id,
            metadata=dict(session.metadata),
            consumers=set(session.consumers),
            created_at=session.created_at,
        )
