import math

import numpy as np
import pytest

from app.models.topology import BuildingShape, ElevationRaster, RasterBounds, RoofSegment
from app.services.geo_utils import LocalProjection
from app.services.roof_topology.facets import FacetSplitter, degrees_to_pitch_ratio, facet_id, pitch_factor

BASE_LNG, BASE_LAT = -97.74, 30.27
PROJ = LocalProjection(BASE_LNG, BASE_LAT, 111_320.0 * math.cos(math.radians(BASE_LAT)))
FOOTPRINT = [PROJ.to_lonlat(p) for p in [(-10.0, -5.0), (10.0, -5.0), (10.0, 5.0), (-10.0, 5.0)]]
RIDGE = (PROJ.to_lonlat((-5.0, 0.0)), PROJ.to_lonlat((5.0, 0.0)))


def test_pitch_ratio_labels():
    assert degrees_to_pitch_ratio(0.0) == "flat"
    assert degrees_to_pitch_ratio(1.9) == "flat"
    assert degrees_to_pitch_ratio(math.degrees(math.atan(0.5))) == "6/12"
    assert degrees_to_pitch_ratio(45.0) == "12/12"


def test_pitch_factor():
    assert pitch_factor(0.0) == pytest.approx(1.0)
    assert pitch_factor(6.0) == pytest.approx(math.sqrt(180.0) / 12.0)
    with pytest.raises(ValueError):
        pitch_factor(1.0, 0.0)


def test_facet_ids():
    assert facet_id(0) == "A"
    assert facet_id(25) == "Z"
    assert facet_id(26) == "F27"


def test_facets_from_segments():
    sw, ne = FOOTPRINT[0], PROJ.to_lonlat((0.0, 5.0))
    segments = [
        RoofSegment(pitch_degrees=30.0, azimuth_degrees=185.0, area_m2=50.0, bounding_box=(sw, ne)),
        RoofSegment(pitch_degrees=30.0, azimuth_degrees=5.0, area_m2=50.0),
    ]
    split = FacetSplitter().split(FOOTPRINT, PROJ, BuildingShape.RECTANGLE, [RIDGE], 0, segments=segments)
    assert split.method == "segments"
    assert not split.manual_review
    a, b = split.facets
    assert a.id == "A" and b.id == "B"
    assert a.area == pytest.approx(50.0 * 10.7639)
    assert a.plan_area == pytest.approx(a.area * math.cos(math.radians(30.0)))
    assert a.direction == "S"
    assert len(a.polygon) == 4 and not a.requires_review
    assert b.requires_review and "bounding box" in b.review_reason
    assert b.polygon == tuple(FOOTPRINT)


def test_rectangle_split_along_ridge():
    split = FacetSplitter().split(FOOTPRINT, PROJ, BuildingShape.RECTANGLE, [RIDGE], 0)
    assert split.method == "rectangle"
    assert split.manual_review
    assert len(split.facets) == 2
    north, south = split.facets
    expected_plan = 75.0 * 10.7639  # trapezoid (20 + 10) / 2 * 5 m
    expected_pitch = math.degrees(math.atan(0.5))  # rise 2.5 m over a 5 m half-width
    for facet in split.facets:
        assert facet.plan_area == pytest.approx(expected_plan)
        assert facet.pitch == pytest.approx(expected_pitch)
        assert facet.area == pytest.approx(facet.plan_area / math.cos(math.radians(facet.pitch)))
        assert facet.requires_review
        assert len(facet.polygon) == 4
    assert north.direction == "N"
    assert south.direction == "S"


def test_rectangle_pitch_from_dsm_plane_fit():
    width, height = 40, 20
    data = np.zeros((height, width))
    for yi in range(height):
        y = 5.0 - (yi + 0.5) * 0.5
        data[yi, :] = 10.0 - 0.4 * abs(y)
    bounds = RasterBounds(min_lng=FOOTPRINT[0][0], max_lng=FOOTPRINT[1][0], min_lat=FOOTPRINT[0][1], max_lat=FOOTPRINT[2][1])
    raster = ElevationRaster(data=data, bounds=bounds, width=width, height=height)
    split = FacetSplitter().split(FOOTPRINT, PROJ, BuildingShape.RECTANGLE, [RIDGE], 0, raster=raster)
    assert len(split.facets) == 2
    for facet in split.facets:
        assert facet.pitch == pytest.approx(math.degrees(math.atan(0.4)), abs=1e-6)
        assert "DSM" in facet.review_reason


def test_no_fabricated_facets_for_other_shapes():
    splitter = FacetSplitter()
    assert splitter.split(FOOTPRINT, PROJ, BuildingShape.COMPLEX, [RIDGE], 0).facets == []
    assert splitter.split(FOOTPRINT, PROJ, BuildingShape.RECTANGLE, [RIDGE], 1).facets == []
    assert splitter.split(FOOTPRINT, PROJ, BuildingShape.RECTANGLE, [], 0).facets == []
    none = splitter.split(FOOTPRINT, PROJ, None, [], 0)
    assert none.method == "none" and none.manual_review
