"""API smoke tests using FastAPI TestClient."""

import pytest
from fastapi.testclient import TestClient

from app.main import app

KL = [101.6953, 3.1493]
JB = [103.7414, 1.4927]


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        yield c


def _shipment(shipment_id: str, status: str = "PLANNED", **kw):
    body = {"shipment_id": shipment_id, "origin": KL, "destination": JB, "external_status": status}
    body.update(kw)
    return body


def test_root(client: TestClient):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_health(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["directions_enabled"] is False
    assert "clock_running" in data


def test_dev_token(client: TestClient):
    r = client.post("/auth/dev-token")
    assert r.status_code == 200
    assert r.json()["token_type"] == "bearer"


def test_start_and_get_simulation(client: TestClient):
    r = client.post("/simulations", json=_shipment("API-1"))
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["state"]["status"] == "Idle"
    assert data["state"]["route"]["source"] == "fallback"

    r = client.get("/simulations/API-1")
    assert r.status_code == 200
    assert r.json()["shipment_id"] == "API-1"

    ids = [v["shipment_id"] for v in client.get("/simulations").json()]
    assert "API-1" in ids


def test_get_simulation_not_found(client: TestClient):
    r = client.get("/simulations/NOPE")
    assert r.status_code == 404


def test_invalid_coordinates_give_awaiting_status(client: TestClient):
    r = client.post("/simulations", json=_shipment("API-BAD", "IN_TRANSIT", destination=[103.7, 200]))
    assert r.json()["state"]["status"] == "AWAITING_STATUS"


def test_pickup_stop_and_delivery_rejection(client: TestClient):
    client.post("/simulations", json=_shipment("API-2"))

    r = client.post("/simulations/API-2/confirm-delivery")
    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["error_kind"] == "rejected_transition"

    r = client.post("/simulations/API-2/confirm-pickup")
    assert r.json()["success"] is True
    assert r.json()["state"]["status"] == "En Route"

    r = client.post("/simulations/API-2/stop")
    data = r.json()
    assert data["success"] is True
    assert data["registry_removed"] is True
    assert data["updated_state"]["status"] == "Idle"


def test_stop_unknown_is_no_op(client: TestClient):
    r = client.post("/simulations/GHOST/stop")
    assert r.status_code == 200
    assert r.json() == {
        "success": True,
        "updated_state": None,
        "registry_removed": True,
        "state_persisted": False,
        "error": None,
        "error_kind": None,
    }


def test_start_by_id_without_provider(client: TestClient):
    r = client.post("/simulations/UNKNOWN/start")
    assert r.json()["error_kind"] == "not_found"


def test_speed_is_clamped(client: TestClient):
    r = client.put("/simulations/speed", json={"multiplier": 9999})
    assert r.status_code == 200
    assert r.json()["speed_multiplier"] == 500
    client.put("/simulations/speed", json={"multiplier": 1})

    r = client.put("/simulations/speed", json={"multiplier": -1})
    assert r.status_code == 422


def test_reconcile_and_sync_stats(client: TestClient):
    r = client.post("/simulations/reconcile")
    assert r.status_code == 200
    assert r.json()["errors"] == []

    r = client.get("/simulations/sync/stats")
    assert r.status_code == 200
    assert r.json()["enabled"] is False


def test_tick_receiver_is_idempotent(client: TestClient):
    client.post("/simulations", json=_shipment("API-3"))
    tick = {"shipmentId": "API-3", "timeDelta": 0.033, "speedMultiplier": 1, "timestamp": 2000.0}

    assert client.post("/simulation/tick", json=tick).json()["applied"] is True
    again = client.post("/simulation/tick", json=tick).json()
    assert again["applied"] is False and again["reason"] == "stale"

    r = client.get("/simulations/API-3/position")
    assert r.status_code == 200
    assert r.json()["reported_at"] == 2000.0

    unknown = {**tick, "shipmentId": "NOBODY"}
    assert client.post("/simulation/tick", json=unknown).json()["reason"] == "no simulation"


def test_websocket_sends_current_state(client: TestClient):
    client.post("/simulations", json=_shipment("API-WS"))
    with client.websocket_connect("/ws/simulations/API-WS") as ws:
        msg = ws.receive_json()
    assert msg["kind"] == "vehicle"
    assert msg["data"]["shipment_id"] == "API-WS"
