"""Data contracts for the GPS telemetry endpoints."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GpsSample(BaseModel):
    """Inbound GPS fix. Fields beyond the coordinates are kept as-is."""

    model_config = ConfigDict(extra="allow")

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class GpsAccepted(BaseModel):
    success: bool = True
    message: str
    timestamp: str


class GpsLatestResponse(BaseModel):
    success: bool = True
    data: dict[str, Any]


class GpsHistoryResponse(BaseModel):
    success: bool = True
    count: int = Field(..., ge=0)
    data: list[dict[str, Any]]


class GpsStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status: str
    port: int
    has_data: bool = Field(..., alias="hasData")
    last_update: str | None = Field(default=None, alias="lastUpdate")
    history_count: int = Field(..., ge=0, alias="historyCount")
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    port: int
    timestamp: str
