"""Signaling socket and read-only stream query endpoints."""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, WebSocket, status
from fastapi.requests import HTTPConnection

from ..schemas.signaling import RelayStats, StreamSummary
from ..services.broker import BrokerInstance
from ..services.errors import MalformedRequest, StreamNotFound

router = APIRouter()


def get_broker(connection: HTTPConnection) -> BrokerInstance:
    """Resolve the broker instance bound to the serving app."""

    return connection.app.state.broker


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket, broker: BrokerInstance = Depends(get_broker)) -> None:
    """JSON signaling channel: one connection id per socket."""

    await websocket.accept()
    connection = await broker.connect(websocket.send_json)
    connection_id = connection.connection_id
    malformed = MalformedRequest("Frames must be JSON text").to_message()

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            text = frame.get("text")
            if text is None:
                await broker.connections.send(connection_id, malformed)
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                await broker.connections.send(connection_id, malformed)
                continue
            await broker.handle_message(connection_id, message)
    finally:
        await broker.disconnect(connection_id)


@router.get("/api/streams", response_model=list[StreamSummary])
async def list_streams(broker: BrokerInstance = Depends(get_broker)) -> list[StreamSummary]:
    """Return every stream visible from this edge."""

    return broker.list_streams()


@router.get("/api/stream/{stream_id}", response_model=StreamSummary)
async def get_stream(stream_id: str, broker: BrokerInstance = Depends(get_broker)) -> StreamSummary:
    """Return one stream by id."""

    try:
        return broker.get_stream(stream_id)
    except StreamNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stream not found") from exc


@router.get("/api/relay/stats", response_model=RelayStats)
async def relay_stats(broker: BrokerInstance = Depends(get_broker)) -> RelayStats:
    """Expose delivery and drop counters for this edge."""

    return broker.stats()
