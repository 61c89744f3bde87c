import math

import numpy as np
import pytest

from app.models.topology import EdgeSource, EdgeType, ElevationRaster, LinearFeature, RasterBounds, RoofMask
from app.services.elevation_augment import apply_mask, fit_plane, window_stats
from app.services.geo_utils import LocalProjection
from app.services.roof_topology.dsm_refiner import DSMRefiner

BASE_LNG, BASE_LAT = -97.74, 30.27
M_LNG = 111_320.0 * math.cos(math.radians(BASE_LAT))
PROJ = LocalProjection(BASE_LNG, BASE_LAT, M_LNG)


def _ll(x, y):
    return PROJ.to_lonlat((x, y))


def _raster(fn, width=40, height=20, half_w=10.0, half_h=5.0):
    """Raster over a 2*half_w x 2*half_h meter box; fn(x_m, y_m) gives the elevation."""
    px_w = 2 * half_w / width
    px_h = 2 * half_h / height
    data = np.zeros((height, width))
    for yi in range(height):
        for xi in range(width):
            x = -half_w + (xi + 0.5) * px_w
            y = half_h - (yi + 0.5) * px_h
            data[yi, xi] = fn(x, y)
    sw = _ll(-half_w, -half_h)
    ne = _ll(half_w, half_h)
    bounds = RasterBounds(min_lng=sw[0], max_lng=ne[0], min_lat=sw[1], max_lat=ne[1])
    return ElevationRaster(data=data, bounds=bounds, width=width, height=height)


def _gable(x, y):
    return 10.0 - 0.5 * abs(y)


def _feature(a, b, kind, fid="X"):
    return LinearFeature(id=fid, start=_ll(*a), end=_ll(*b), type=kind, length_ft=0.0, confidence=0.6,
                         source=EdgeSource.SKELETON)


FOOTPRINT = [_ll(-10, -5), _ll(10, -5), _ll(10, 5), _ll(-10, 5)]


def test_raster_resolution_is_derived_from_bounds():
    raster = _raster(_gable)
    assert raster.resolution == pytest.approx(0.5, rel=1e-6)


def test_raster_shape_mismatch_raises():
    with pytest.raises(ValueError):
        ElevationRaster(data=np.zeros((3, 4)), bounds=RasterBounds(0, 1, 0, 1), width=3, height=4)


def test_no_raster_gives_flat_default_confidence():
    features = [_feature((-7.5, 0), (7.5, 0), EdgeType.RIDGE), _feature((-10, -5), (-7.5, 0), EdgeType.HIP)]
    result = DSMRefiner().refine(features)
    assert [f.confidence for f in result.features] == [0.6, 0.6]
    assert all(f.requires_review for f in result.features)


def test_ridge_on_crest_scores_high_and_valley_scores_low():
    raster = _raster(_gable)
    refiner = DSMRefiner()
    ridge = refiner.score_edge(raster, _feature((-7.5, 0), (7.5, 0), EdgeType.RIDGE))
    assert ridge.confidence == pytest.approx(0.95)
    assert not ridge.requires_review
    assert len(ridge.samples) == 10

    valley = refiner.score_edge(raster, _feature((-7.5, 0), (7.5, 0), EdgeType.VALLEY))
    assert valley.confidence == pytest.approx(0.5)
    assert valley.requires_review


def test_hip_scored_by_monotonic_slope():
    raster = _raster(_gable)
    refiner = DSMRefiner()
    hip = refiner.score_edge(raster, _feature((-9, -4), (-5, -1), EdgeType.HIP))
    assert hip.confidence == pytest.approx(0.95)

    flat = _raster(lambda x, y: 3.0)
    level = refiner.score_edge(flat, _feature((-9, -4), (-5, -1), EdgeType.HIP))
    assert level.confidence == pytest.approx(0.5)
    assert level.requires_review


def test_ridge_endpoints_snap_and_shared_vertices_follow():
    raster = _raster(_gable)
    ridge = _feature((-7.5, 1.0), (7.5, 1.0), EdgeType.RIDGE, "R")
    hip = _feature((-10, 5), (-7.5, 1.0), EdgeType.HIP, "H")
    result = DSMRefiner().refine([ridge, hip], raster, polygon_ll=FOOTPRINT, projection=PROJ)
    new_ridge, new_hip = result.features
    assert result.snapped == 2
    assert new_ridge.source == EdgeSource.DSM
    for p in (new_ridge.start, new_ridge.end):
        assert abs(PROJ.to_local(p)[1]) < 1.0
    assert new_hip.end == new_ridge.start
    assert new_ridge.length_ft > 0


def test_snapping_can_be_disabled():
    from app.services.roof_topology.config import TopologyConfig

    raster = _raster(_gable)
    ridge = _feature((-7.5, 1.0), (7.5, 1.0), EdgeType.RIDGE)
    result = DSMRefiner(TopologyConfig(dsm_snap_endpoints=False)).refine([ridge], raster)
    assert result.snapped == 0
    assert result.features[0].start == ridge.start


def test_quality_scales_with_valid_pixels():
    raster = _raster(_gable)
    ridge = _feature((-7.5, 0), (7.5, 0), EdgeType.RIDGE)
    refiner = DSMRefiner()
    full = refiner.refine([ridge], raster)
    assert full.quality_score == pytest.approx(0.95)

    mask_data = np.ones((20, 40), dtype=bool)
    mask_data[:, 30:] = False
    masked = refiner.refine([ridge], raster, mask=RoofMask(data=mask_data, width=40, height=20))
    assert masked.quality_score < full.quality_score


def test_apply_mask_resamples_and_blanks_non_roof():
    grid = np.arange(16, dtype=float).reshape(4, 4)
    mask = np.array([[True, False], [True, True]])
    out = apply_mask(grid, mask)
    assert np.isnan(out[0, 2]) and np.isnan(out[1, 3])
    assert out[0, 0] == 0.0 and out[3, 3] == 15.0
    assert not np.isnan(grid).any()


def test_window_stats_ignores_nan():
    stats = window_stats(np.array([[1.0, np.nan], [4.0, 2.0]]))
    assert stats["min"] == 1.0 and stats["max"] == 4.0 and stats["range"] == 3.0
    assert window_stats(np.full((2, 2), np.nan))["range"] == 0.0


def test_fit_plane_recovers_slope_and_aspect():
    # Rises 0.5 m per meter northwards, so the slope faces south
    grid = np.array([[0.5 * (10 - yi) for _ in range(10)] for yi in range(10)], dtype=float)
    fit = fit_plane(grid, np.ones_like(grid, dtype=bool), 1.0, 1.0)
    assert fit is not None
    assert fit.pitch_deg == pytest.approx(math.degrees(math.atan(0.5)))
    assert fit.aspect_deg == pytest.approx(180.0)
    assert fit.residual_rmse == pytest.approx(0.0, abs=1e-9)


def test_estimate_pitch_over_footprint():
    raster = _raster(lambda x, y: 0.5 * y)
    fit = DSMRefiner().estimate_pitch(raster, FOOTPRINT)
    assert fit is not None
    assert fit.pitch_deg == pytest.approx(math.degrees(math.atan(0.5)), abs=1e-3)
    assert fit.aspect_deg == pytest.approx(180.0, abs=1e-3)


def test_estimate_pitch_selects_only_pixels_inside_polygon():
    raster = _raster(_gable)
    north_half = [_ll(-10.0, 0.0), _ll(10.0, 0.0), _ll(10.0, 5.0), _ll(-10.0, 5.0)]
    fit = DSMRefiner().estimate_pitch(raster, north_half)
    assert fit is not None
    assert fit.pixel_count == 40 * 10
    assert fit.pitch_deg == pytest.approx(math.degrees(math.atan(0.5)), abs=1e-3)
    assert min(fit.aspect_deg, 360.0 - fit.aspect_deg) == pytest.approx(0.0, abs=1e-3)


def test_detect_ridge_lines_finds_crest_row():
    data = np.array([[10.0 - 0.5 * abs(yi - 10) for _ in range(30)] for yi in range(21)])
    raster = ElevationRaster(data=data, bounds=RasterBounds(BASE_LNG, BASE_LNG + 0.0003, BASE_LAT, BASE_LAT + 0.0002),
                             width=30, height=21)
    lines = DSMRefiner().detect_ridge_lines(raster)
    ridges = [ln for ln in lines if ln.type == EdgeType.RIDGE]
    assert len(ridges) == 1
    assert ridges[0].length_px == 30
    assert ridges[0].mean_elevation == pytest.approx(10.0)
    assert ridges[0].start[1] == pytest.approx(ridges[0].end[1])
    assert not [ln for ln in lines if ln.type == EdgeType.VALLEY]
