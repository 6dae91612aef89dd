"""Tests for the FastAPI adapter."""

import pytest
from fastapi.testclient import TestClient

from app import app
from lorahive_sim.core import Simulation


@pytest.fixture
def client():
    app.state.sim = Simulation()
    return TestClient(app)


def test_state_starts_with_server(client):
    body = client.get("/api/state").json()
    assert [n["id"] for n in body["nodes"]] == ["Central Server"]
    assert body["summary"]["lora"] == {"sf": 7, "bw": 125, "cr": 5}
    assert body["stats"]["data_sent"] == 0


def test_add_hive_emit_and_tick(client):
    r = client.post("/api/hives", json={"x": 150, "y": 280})
    assert r.json()["node"]["id"] == "Hive 1"
    r = client.post("/api/emit", json={"node_id": "Hive 1"})
    assert r.json()["ok"] is True
    assert r.json()["wave"]["kind"] == "DATA"
    r = client.post("/api/tick", json={"now_ms": 10_000})
    assert r.json()["now_ms"] == 10_000
    stats = client.get("/api/stats").json()
    assert stats["data_sent"] == 1
    assert stats["data_delivered"] == 1
    assert len(client.get("/api/waves").json()) == 2


def test_relative_tick(client):
    client.post("/api/tick", json={"now_ms": 100})
    r = client.post("/api/tick", json={"dt_ms": 50})
    assert r.json()["now_ms"] == 150


def test_unknown_node_reported(client):
    r = client.post("/api/emit", json={"node_id": "ghost"})
    assert r.json() == {"ok": False, "error": "UnknownNodeError: ghost"}


def test_obstacle_lifecycle(client):
    r = client.post("/api/obstacles/circle", json={"x": 10, "y": 10, "material": "water"})
    ob = r.json()["obstacle"]
    assert (ob["id"], ob["type"], ob["absorption"]) == (1, "circle", 3.0)
    client.post("/api/obstacles/1/move", json={"dx": 5, "dy": 0})
    client.post("/api/obstacles/1/material", json={"material": "wood"})
    (ob,) = client.get("/api/obstacles").json()
    assert (ob["x"], ob["material"]) == (15.0, "wood")
    assert client.delete("/api/obstacles/1").json()["ok"] is True
    assert client.delete("/api/obstacles/1").json()["ok"] is False


def test_polygon_and_bad_material(client):
    r = client.post("/api/obstacles/polygon", json={"points": [[0, 0], [10, 0], [10, 10]]})
    assert r.json()["obstacle"]["type"] == "polygon"
    r = client.post("/api/obstacles/circle", json={"x": 0, "y": 0, "material": "lava"})
    assert r.json()["ok"] is False


def test_config_clamped(client):
    r = client.post("/api/config", json={"spreading_factor": 20, "tx_dbm_default": 17})
    cfg = r.json()["config"]
    assert cfg["spreading_factor"] == 12
    assert client.get("/api/config").json()["tx_dbm_default"] == 17.0
    server = client.get("/api/nodes").json()[0]
    assert server["tx_power_dbm"] == 17.0


def test_scene_round_trip(client):
    client.post("/api/hives", json={"x": 1, "y": 2, "id": "North"})
    scene = client.get("/api/scene").json()
    client.post("/api/reset")
    assert client.get("/api/nodes").json()[-1]["id"] == "Central Server"
    assert client.post("/api/scene", json=scene).json()["ok"] is True
    assert [n["id"] for n in client.get("/api/nodes").json()] == ["Central Server", "North"]


def test_scene_rejects_non_mapping(client):
    r = client.post("/api/scene", json=[1, 2, 3])
    assert r.json()["ok"] is False


def test_geojson_import(client):
    doc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [11.001, 48.0]}, "properties": {}},
        ],
    }
    r = client.post("/api/import/geojson", json={"geojson": doc, "origin_lat": 48.0, "origin_lon": 11.0})
    assert r.json()["count"] == 1
    r = client.post("/api/import/geojson", json={"geojson": "[]", "origin_lat": 48.0, "origin_lon": 11.0})
    assert r.json()["ok"] is False


def test_remove_hive_and_reset_stats(client):
    client.post("/api/hives", json={"x": 150, "y": 280})
    client.post("/api/emit", json={"node_id": "Hive 1"})
    assert client.delete("/api/hives/Central Server").json()["ok"] is False
    assert client.delete("/api/hives/Hive 1").json()["ok"] is True
    client.post("/api/stats/reset")
    assert client.get("/api/stats").json()["data_sent"] == 0


def _raw_json(client, url, text):
    return client.post(url, content=text, headers={"content-type": "application/json"})


def test_non_finite_hive_rejected(client):
    r = _raw_json(client, "/api/hives", '{"x": NaN, "y": 0}')
    assert r.json()["ok"] is False
    assert client.get("/api/nodes").json()[-1]["id"] == "Central Server"
    client.post("/api/hives", json={"x": 150, "y": 280})
    r = _raw_json(client, "/api/nodes/Hive 1/move", '{"x": Infinity, "y": 0}')
    assert r.json()["ok"] is False
    client.post("/api/emit", json={"node_id": "Hive 1"})
    assert client.post("/api/tick", json={"now_ms": 10_000}).json()["ok"] is True


def test_geojson_import_skips_bad_features(client):
    doc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": ["a", "b"]}},
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [11.001, 48.0]}},
        ],
    }
    r = client.post("/api/import/geojson", json={"geojson": doc, "origin_lat": 48.0, "origin_lon": 11.0})
    assert r.json()["ok"] is True
    assert r.json()["count"] == 1


def test_emit_at_given_time(client):
    client.post("/api/hives", json={"x": 150, "y": 280})
    epoch = 1.7e12
    r = client.post("/api/emit", json={"node_id": "Hive 1", "now_ms": epoch})
    assert r.json()["ok"] is True
    client.post("/api/tick", json={"now_ms": epoch + 10_000})
    assert client.get("/api/stats").json()["data_delivered"] == 1


def test_material_change_updates_loss(client):
    client.post("/api/obstacles/circle", json={"x": 0, "y": 0})
    r = client.post("/api/obstacles/1/material", json={"material": "water"})
    assert r.json()["obstacle"]["loss"] == pytest.approx(0.3)
