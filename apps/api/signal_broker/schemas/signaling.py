"""Data contracts for the signaling socket and stream query endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProducerRegister(_Inbound):
    type: Literal["producer-register"]
    stream_id: str | None = Field(default=None, alias="streamId", min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque producer details")


class ConsumerJoin(_Inbound):
    type: Literal["consumer-join"]
    stream_id: str = Field(..., alias="streamId", min_length=1)


class SignalMessage(_Inbound):
    type: Literal["offer", "answer", "candidate"]
    target: str | None = Field(default=None, description="Connection id or bridge address")
    stream_id: str | None = Field(default=None, alias="streamId")
    payload: Any = None

    @model_validator(mode="before")
    @classmethod
    def _payload_from_kind(cls, value: object) -> object:
        """Accept ``{"type": "offer", "offer": {...}}`` as well as ``payload``."""

        if isinstance(value, dict) and "payload" not in value:
            kind = value.get("type")
            if isinstance(kind, str) and kind in value:
                return {**value, "payload": value[kind]}
        return value


class StreamData(_Inbound):
    type: Literal["data"]
    stream_id: str = Field(..., alias="streamId", min_length=1)
    payload: Any = None


InboundMessage = Annotated[
    Union[ProducerRegister, ConsumerJoin, SignalMessage, StreamData],
    Field(discriminator="type"),
]

inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


class _Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StreamSummary(_Outbound):
    stream_id: str = Field(..., alias="streamId")
    producer_id: str = Field(..., alias="producerId")
    consumer_count: int = Field(..., ge=0, alias="consumerCount")
    metadata: dict[str, Any] = Field(default_factory=dict)
    origin: str = Field(..., description="Instance holding the authoritative session")
    created_at: datetime = Field(..., alias="createdAt")


class RelayStats(_Outbound):
    instance: str
    connections: int = Field(..., ge=0)
    streams: int = Field(..., ge=0)
    mirrors: int = Field(..., ge=0)
    delivered: int = Field(..., ge=0)
    dropped: dict[str, int] = Field(default_factory=dict)
