"""Tests for the bounded GPS store and its HTTP surfaces."""
from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from signal_broker.core.config import Settings
from signal_broker.main import build_deployment
from signal_broker.services.telemetry import TelemetryStore


def test_store_evicts_oldest_beyond_capacity():
    store = TelemetryStore(max_history=3)

    for index in range(5):
        store.add({"latitude": index, "longitude": index})
        assert store.size == min(index + 1, 3)

    assert [sample["latitude"] for sample in store.history()] == [2, 3, 4]
    assert store.latest()["latitude"] == 4
    assert "timestamp" in store.latest()


def test_history_limit_returns_most_recent_in_order():
    store = TelemetryStore()
    for index in range(10):
        store.add({"latitude": index, "longitude": 0})

    assert [sample["latitude"] for sample in store.history(3)] == [7, 8, 9]
    assert store.history(0) == []


def test_store_requires_positive_capacity():
    with pytest.raises(ValueError):
        TelemetryStore(max_history=0)


@pytest.mark.asyncio
async def test_gps_input_and_output_round_trip():
    deployment = build_deployment(Settings(gps_history_size=2))
    input_transport = ASGITransport(app=deployment.gps_input_app)
    output_transport = ASGITransport(app=deployment.gps_output_app)

    async with AsyncClient(transport=output_transport, base_url="http://testserver") as output:
        empty = await output.get("/gps/latest")
        assert empty.status_code == 404
        status_before = (await output.get("/gps/status")).json()
        assert status_before["hasData"] is False
        assert status_before["lastUpdate"] is None

        async with AsyncClient(transport=input_transport, base_url="http://testserver") as gps_input:
            for lat in (10.0, 11.0, 12.0):
                accepted = await gps_input.post("/gps", json={"latitude": lat, "longitude": 106.7, "speed": 3})
                assert accepted.status_code == 200
                assert accepted.json()["success"] is True

        latest = (await output.get("/gps/latest")).json()
        assert latest["data"]["latitude"] == 12.0
        assert latest["data"]["speed"] == 3

        history = (await output.get("/gps/history", params={"limit": 5})).json()
        assert history["count"] == 2
        assert [item["latitude"] for item in history["data"]] == [11.0, 12.0]

        status_after = (await output.get("/gps/status")).json()
        assert status_after["hasData"] is True
        assert status_after["historyCount"] == 2
        assert status_after["port"] == 5004
        assert status_after["lastUpdate"] == latest["data"]["timestamp"]


@pytest.mark.asyncio
async def test_gps_input_rejects_missing_coordinates():
    deployment = build_deployment(Settings())
    transport = ASGITransport(app=deployment.gps_input_app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/gps", json={"latitude": 1.0})
        not_object = await client.post("/gps", json=[1, 2])
        health = (await client.get("/health")).json()

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid GPS data. latitude and longitude are required."}
    assert not_object.status_code == 400
    assert deployment.telemetry.size == 0
    assert health["status"] == "GPS Input Server Running"
    assert health["port"] == 5002
