import json

import pytest

from app.models.topology import TopologyRequest
from app.services.artifacts.geojson_writer import topology_to_feature_collection, write_geojson
from app.services.artifacts.wkt import linestring_wkt, parse_linestring, parse_polygon, polygon_wkt
from app.services.roof_topology import infer_topology

FOOTPRINT = [(-97.7432, 30.2671), (-97.7430, 30.2671), (-97.7430, 30.2672), (-97.7432, 30.2672)]


def test_linestring_wkt_format():
    text = linestring_wkt((-97.5, 30.25), (-97.25, 30.5))
    assert text == "LINESTRING(-97.5 30.25, -97.25 30.5)"
    assert parse_linestring(text) == ((-97.5, 30.25), (-97.25, 30.5))


def test_polygon_wkt_closes_ring():
    text = polygon_wkt([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0)])
    assert text == "POLYGON((0.0 0.0, 1.0 0.0, 1.0 1.0, 0.0 0.0))"
    ring = parse_polygon(text)
    assert ring[0] == ring[-1]
    assert len(ring) == 4


def test_polygon_wkt_keeps_full_precision():
    text = polygon_wkt(FOOTPRINT)
    assert parse_polygon(text)[:-1] == FOOTPRINT


@pytest.mark.parametrize("bad", [
    "POINT(1 2)",
    "LINESTRING(1 2)",
    "LINESTRING(1 2, 3)",
    "POLYGON((0 0, 1 0, 1 1))",
    "POLYGON((0 0, 1 0, 0 0))",
])
def test_parse_rejects_malformed(bad):
    with pytest.raises(ValueError):
        if bad.startswith("POLYGON"):
            parse_polygon(bad)
        else:
            parse_linestring(bad)


def test_feature_collection_layers():
    result = infer_topology(TopologyRequest(footprint=FOOTPRINT))
    fc = topology_to_feature_collection(result)
    assert fc["type"] == "FeatureCollection"
    kinds = [f["properties"]["kind"] for f in fc["features"]]
    assert kinds[0] == "footprint"
    assert kinds.count("facet") == result.facet_count
    assert kinds.count("ridge") == len(result.ridges)
    assert kinds.count("hip") == len(result.hips)
    assert kinds.count("eave") + kinds.count("rake") == len(result.eaves) + len(result.rakes)
    ring = fc["features"][0]["geometry"]["coordinates"][0]
    assert ring[0] == ring[-1]
    assert fc["properties"]["status"] == "full"


def test_write_geojson(tmp_path):
    result = infer_topology(TopologyRequest(footprint=FOOTPRINT))
    path = write_geojson(result, out_dir=str(tmp_path), filename="house")
    assert path.endswith("house.geojson")
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["type"] == "FeatureCollection"
    assert data["properties"]["totals"] == result.totals()


def test_include_wkt_adds_geometry_text():
    out = infer_topology(TopologyRequest(footprint=FOOTPRINT)).to_dict(include_wkt=True)
    assert out["footprintWkt"].startswith("POLYGON((")
    assert all(e["wkt"].startswith("LINESTRING(") for e in out["edges"]["hips"])
    assert all(f["wkt"].startswith("POLYGON((") for f in out["facets"])
