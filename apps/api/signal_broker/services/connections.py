"""Live signaling connection bookkeeping."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple
from uuid import uuid4

SendCallable = Callable[[dict], Awaitable[None]]
Delivery = Tuple[str, dict]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Connection:
    """Transport handle for one signaling participant."""

    connection_id: str
    send: SendCallable


class ConnectionRegistry:
    """Track live connections by their ephemeral identifiers."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def register(self, send: SendCallable) -> Connection:
        """Allocate a fresh identifier for a newly established transport."""

        connection_id = uuid4().hex
        while connection_id in self._connections:
            connection_id = uuid4().hex
        connection = Connection(connection_id=connection_id, send=send)
        self._connections[connection_id] = connection
        return connection

    def unregister(self, connection_id: str) -> bool:
        """Forget a connection; return ``False`` if it was already gone."""

        return self._connections.pop(connection_id, None) is not None

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def is_live(self, connection_id: str | None) -> bool:
        return connection_id is not None and connection_id in self._connections

    async def send(self, connection_id: str, message: dict) -> bool:
        """Deliver one message; return whether the target was live."""

        delivered = await self.send_many([(connection_id, message)])
        return delivered == 1

    async def send_many(self, deliveries: Iterable[Delivery]) -> int:
        """Send independent messages concurrently and return how many went out.

        A failing send is logged and does not stop delivery to the others.
        """

        targets: list[tuple[str, Connection, dict]] = []
        for connection_id, message in deliveries:
            connection = self._connections.get(connection_id)
            if connection is not None:
                targets.append((connection_id, connection, message))

        if not targets:
            return 0

        results = await asyncio.gather(
            *(connection.send(message) for _, connection, message in targets),
            return_exceptions=True,
        )
        sent = 0
        for (connection_id, _, message), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed sending %s to %s: %r", message.get("type"), connection_id, result
                )
                continue
            sent += 1
        return sent
