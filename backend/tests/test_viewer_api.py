from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from main import app
from settings.registry import clear_config_cache
from storage.singleton import reset_store
from viewer.singleton import reset_engine

from conftest import point_collection

VIEWER_YAML = """
title: Test viewer
layers:
  - id: city-hall
    source: data/city-hall.geojson
    geometryType: Point
    visible: true
    filterAttribute: type
    style: {type: circle, paint: {circle-color: "#dd0000"}}
  - id: embassy
    source: data/embassy.geojson
    geometryType: Point
    visible: false
  - id: broken
    source: data/missing.geojson
    geometryType: Point
    visible: false
"""


@pytest.fixture
def client(tmp_path, monkeypatch):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "city-hall.geojson").write_text(
        json.dumps(
            point_collection(
                [
                    (42, 139.69, 35.68, {"type": "ward"}),
                    (43, 139.69, 35.68, {"type": "city"}),
                    (44, 139.70, 35.69, {"type": "ward"}),
                ],
                namespace="city-hall",
            )
        ),
        encoding="utf-8",
    )
    (tmp_path / "data" / "embassy.geojson").write_text(
        json.dumps(point_collection([("e1", 139.73, 35.66, {})], namespace="embassy")),
        encoding="utf-8",
    )
    (tmp_path / "viewer.yaml").write_text(VIEWER_YAML, encoding="utf-8")
    monkeypatch.setenv("CHECKIN_CONFIG_PATH", str(tmp_path / "viewer.yaml"))
    monkeypatch.setenv("CHECKIN_DATA_ROOT", str(tmp_path))
    monkeypatch.setenv("CHECKIN_STATE_PATH", str(tmp_path / "state" / "viewer.duckdb"))
    clear_config_cache()
    reset_engine()
    yield TestClient(app)
    reset_engine()
    reset_store()
    clear_config_cache()


def test_layers_start_with_configured_visibility(client):
    resp = client.get("/layers")
    assert resp.status_code == 200
    rows = {r["id"]: r for r in resp.json()}
    assert rows["city-hall"]["status"] == "loaded"
    assert rows["city-hall"]["color"] == "#dd0000"
    assert rows["embassy"]["status"] == "unloaded"


def test_layer_data_is_declustered(client):
    resp = client.get("/layers/city-hall/data")
    assert resp.status_code == 200
    coords = [tuple(f["geometry"]["coordinates"]) for f in resp.json()["source"]["features"]]
    assert len(set(coords)) == 3
    assert coords[0] == (139.69, 35.68)
    assert resp.json()["layer"]["layout"]["visibility"] == "visible"


def test_show_hidden_layer_and_unknown_layer_is_noop(client):
    resp = client.post("/layers/embassy/visibility", json={"visible": True})
    assert resp.status_code == 200
    rows = {r["id"]: r for r in resp.json()}
    assert rows["embassy"]["status"] == "loaded"

    resp = client.post("/layers/nope/visibility", json={"visible": True})
    assert resp.status_code == 200


def test_failed_layer_reports_message(client):
    client.post("/layers/broken/visibility", json={"visible": True})
    rows = {r["id"]: r for r in client.get("/layers").json()}
    assert rows["broken"]["status"] == "unloaded"
    assert rows["broken"]["failed"] is True
    msgs = client.get("/messages").json()
    assert any(m["level"] == "error" and "broken" in m["text"] for m in msgs)


def test_filters_round_trip(client):
    resp = client.post("/layers/city-hall/filters", json={"values": ["ward"]})
    rows = {r["id"]: r for r in resp.json()}
    assert rows["city-hall"]["activeFilters"] == ["ward"]
    style = client.get("/layers/city-hall/style").json()
    assert style["filter"] == ["in", ["to-string", ["get", "type"]], ["literal", ["ward"]]]

    client.post("/layers/city-hall/filters", json={"values": []})
    assert client.get("/layers/city-hall/style").json()["filter"] is None


def test_toggle_checkin_and_export(client):
    resp = client.post("/checkins/toggle", json={"layerId": "city-hall", "featureId": 42})
    assert resp.json() == {"result": "added", "checkedIn": True}

    popup = client.post(
        "/popup", json={"layerId": "city-hall", "featureId": "42", "properties": {"type": "ward"}}
    ).json()
    assert popup["checkedIn"] is True

    resp = client.get("/checkins/export")
    assert "shubyo-data-" in resp.headers["content-disposition"]
    body = resp.json()
    assert body["shubyoData"] == {"city-hall": ["42"]}
    assert body["totalPoints"] == 1


def test_toggle_without_id_is_400(client):
    resp = client.post("/checkins/toggle", json={"layerId": "city-hall", "featureId": None})
    assert resp.status_code == 400


def test_import_needs_confirm(client):
    client.post("/checkins/toggle", json={"layerId": "city-hall", "featureId": 42})

    resp = client.post("/checkins/import", json={"shubyoData": {}})
    assert resp.json() == {"replacedPoints": 1, "addedPoints": 0, "applied": False}

    resp = client.post("/checkins/import?confirm=true", json={"shubyoData": {}})
    assert resp.json()["applied"] is True
    assert client.get("/checkins/export").json()["shubyoData"] == {}

    resp = client.post("/checkins/import", json={"version": "1.0"})
    assert resp.status_code == 400


def test_clear_checkins(client):
    client.post("/checkins/toggle", json={"layerId": "city-hall", "featureId": 42})
    assert client.delete("/checkins").json() == {"cleared": False}
    assert client.delete("/checkins?confirm=true").json() == {"cleared": True}
    assert client.get("/checkins/export").json()["totalPoints"] == 0


def test_viewport_round_trip(client):
    resp = client.put("/viewport", json={"center": {"lon": 139.7, "lat": 35.7}, "zoom": 12})
    assert resp.status_code == 200
    assert client.get("/viewport").json()["zoom"] == 12.0


def test_state_survives_engine_restart(client):
    client.post("/layers/embassy/visibility", json={"visible": True})
    client.post("/layers/city-hall/visibility", json={"visible": False})
    client.post("/checkins/toggle", json={"layerId": "embassy", "featureId": "e1"})

    reset_engine()

    rows = {r["id"]: r for r in client.get("/layers").json()}
    assert rows["embassy"]["status"] == "loaded"
    assert rows["city-hall"]["status"] == "unloaded"
    assert rows["embassy"]["checkins"] == 1


def test_add_and_remove_layer(client):
    resp = client.post(
        "/layers",
        json={"id": "more", "source": "data/embassy.geojson", "visible": True},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "loaded"
    assert client.post(
        "/layers", json={"id": "more", "source": "data/embassy.geojson"}
    ).status_code == 409
    assert client.delete("/layers/more").json() == {"removed": True}
    assert client.get("/layers/more/data").status_code == 404


def test_import_with_placeholder_id_is_rejected_before_confirm(client):
    client.post("/checkins/toggle", json={"layerId": "city-hall", "featureId": 42})

    resp = client.post("/checkins/import", json={"shubyoData": {"city-hall": ["43", "null"]}})
    assert resp.status_code == 400

    resp = client.post("/checkins/import", json={"shubyoData": {"city-hall": [43, "43", 43.0]}})
    assert resp.json() == {"replacedPoints": 1, "addedPoints": 1, "applied": False}
