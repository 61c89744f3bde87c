from fastapi.testclient import TestClient

import app.main as main
from app.main import app
from app.settings import get_settings

client = TestClient(app)

FOOTPRINT = [[-97.7432, 30.2671], [-97.7430, 30.2671], [-97.7430, 30.2672], [-97.7432, 30.2672], [-97.7432, 30.2671]]


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert "X-Request-Id" in resp.headers


def test_request_id_is_echoed():
    resp = client.get("/health", headers={"X-Request-Id": "abc123"})
    assert resp.headers["X-Request-Id"] == "abc123"


def test_openapi_contains_endpoints():
    schema = client.get("/openapi.json").json()
    assert "/topology" in schema["paths"]
    assert "/topology/geojson" in schema["paths"]


def test_topology_rectangle():
    resp = client.post("/topology", json={"footprint": FOOTPRINT})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "full"
    assert data["shape"] == "rectangle"
    assert len(data["edges"]["ridges"]) == 1
    assert len(data["edges"]["hips"]) == 4
    assert data["facetCount"] == len(data["facets"])
    assert "wkt" not in data["edges"]["ridges"][0]


def test_topology_include_wkt():
    resp = client.post("/topology?include_wkt=true", json={"footprint": FOOTPRINT})
    assert resp.status_code == 200
    data = resp.json()
    assert data["edges"]["ridges"][0]["wkt"].startswith("LINESTRING(")
    assert data["footprintWkt"].startswith("POLYGON((")


def test_topology_with_segments():
    payload = {
        "footprint": FOOTPRINT,
        "segments": [
            {"pitchDegrees": 22.0, "azimuthDegrees": 0.0, "areaM2": 120.0},
            {"pitchDegrees": 22.0, "azimuthDegrees": 180.0, "areaM2": 120.0},
        ],
    }
    data = client.post("/topology", json=payload).json()
    assert data["roofType"] == "gable"
    assert all(r["source"] == "segment" for r in data["edges"]["ridges"])
    assert data["facetCount"] == 2


def test_topology_degenerate_footprint_is_not_an_error():
    resp = client.post("/topology", json={"footprint": [[-97.7432, 30.2671], [-97.7430, 30.2671]]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "fallback"
    assert data["facets"] == [] and data["edges"]["ridges"] == []


def test_topology_bad_coordinates_400():
    resp = client.post("/topology", json={"footprint": [[0.0, 95.0], [1.0, 95.0], [1.0, 96.0]]})
    assert resp.status_code == 400


def test_topology_raster_shape_mismatch_400():
    payload = {
        "footprint": FOOTPRINT,
        "elevationRaster": {
            "data": [[1.0, 2.0], [3.0, 4.0]],
            "bounds": {"minLng": -97.7433, "maxLng": -97.7429, "minLat": 30.2670, "maxLat": 30.2673},
            "width": 2,
            "height": 3,
        },
    }
    assert client.post("/topology", json=payload).status_code == 400


def test_topology_with_raster_accepts_nulls():
    row = [5.0, 6.0, None, 6.0, 5.0]
    payload = {
        "footprint": FOOTPRINT,
        "elevationRaster": {
            "data": [row for _ in range(5)],
            "bounds": {"minLng": -97.7433, "maxLng": -97.7429, "minLat": 30.2670, "maxLat": 30.2673},
            "width": 5,
            "height": 5,
        },
    }
    resp = client.post("/topology", json=payload)
    assert resp.status_code == 200
    assert 0.0 <= resp.json()["qualityScore"] <= 1.0


def test_topology_validation_422():
    payload = {
        "footprint": FOOTPRINT,
        "segments": [{"pitchDegrees": 95.0, "azimuthDegrees": 0.0, "areaM2": 10.0}],
    }
    assert client.post("/topology", json=payload).status_code == 422


def test_topology_geojson():
    resp = client.post("/topology/geojson", json={"footprint": FOOTPRINT})
    assert resp.status_code == 200
    data = resp.json()
    assert data["type"] == "FeatureCollection"
    assert data["features"][0]["properties"]["kind"] == "footprint"


def test_run_serves_app_with_configured_host_and_port(monkeypatch):
    calls = {}

    def fake_run(target, **kwargs):
        calls["target"] = target
        calls.update(kwargs)

    monkeypatch.setattr(main.uvicorn, "run", fake_run)
    main.run()
    assert calls["target"] is app
    assert calls["host"] == main.SETTINGS.host
    assert calls["port"] == main.SETTINGS.port


def test_settings_read_host_and_port_from_env(monkeypatch):
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9123")
    settings = get_settings()
    assert settings.host == "127.0.0.1"
    assert settings.port == 9123
