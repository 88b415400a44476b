"""GPS telemetry input and output endpoints."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError

from ..schemas import telemetry as schemas
from ..services.telemetry import DEFAULT_HISTORY_LIMIT, TelemetryStore, utc_timestamp

logger = logging.getLogger(__name__)

input_router = APIRouter()
output_router = APIRouter()

INVALID_SAMPLE_DETAIL = "Invalid GPS data. latitude and longitude are required."


def get_store(request: Request) -> TelemetryStore:
    return request.app.state.telemetry


def get_port(request: Request) -> int:
    return request.app.state.port


@input_router.post("/gps", response_model=schemas.GpsAccepted)
async def receive_sample(
    payload: Any = Body(...),
    store: TelemetryStore = Depends(get_store),
) -> schemas.GpsAccepted:
    """Accept one GPS fix from a device."""

    try:
        sample = schemas.GpsSample.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_SAMPLE_DETAIL) from exc

    stored = store.add(sample.model_dump())
    logger.info("GPS data received: lat=%s lon=%s", stored["latitude"], stored["longitude"])
    return schemas.GpsAccepted(message="GPS data received successfully", timestamp=stored["timestamp"])


@input_router.get("/health", response_model=schemas.HealthResponse)
async def input_health(port: int = Depends(get_port)) -> schemas.HealthResponse:
    return schemas.HealthResponse(status="GPS Input Server Running", port=port, timestamp=utc_timestamp())


@output_router.get("/gps/latest", response_model=schemas.GpsLatestResponse)
async def latest_sample(store: TelemetryStore = Depends(get_store)) -> schemas.GpsLatestResponse:
    """Return the most recent fix."""

    latest = store.latest()
    if latest is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No GPS data available")
    return schemas.GpsLatestResponse(data=latest)


@output_router.get("/gps/history", response_model=schemas.GpsHistoryResponse)
async def sample_history(
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1),
    store: TelemetryStore = Depends(get_store),
) -> schemas.GpsHistoryResponse:
    """Return recent fixes, oldest first."""

    history = store.history(limit)
    return schemas.GpsHistoryResponse(count=len(history), data=history)


@output_router.get("/gps/status", response_model=schemas.GpsStatusResponse)
async def telemetry_status(
    store: TelemetryStore = Depends(get_store),
    port: int = Depends(get_port),
) -> schemas.GpsStatusResponse:
    latest = store.latest()
    return schemas.GpsStatusResponse(
        status="GPS Output Server Running",
        port=port,
        has_data=latest is not None,
        last_update=latest["timestamp"] if latest else None,
        history_count=store.size,
        timestamp=utc_timestamp(),
    )


@output_router.get("/health", response_model=schemas.HealthResponse)
async def output_health(port: int = Depends(get_port)) -> schemas.HealthResponse:
    return schemas.HealthResponse(status="GPS Output Server Running", port=port, timestamp=utc_timestamp())
