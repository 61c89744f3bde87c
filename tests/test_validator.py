import pytest

from app.models.topology import EdgeType
from app.services.roof_topology.config import TopologyConfig
from app.services.roof_topology.skeleton import SkeletonEdge
from app.services.roof_topology.validator import TopologyValidator, ValidationReport, hips_cross

RECT = [(0.0, 0.0), (20.0, 0.0), (20.0, 10.0), (0.0, 10.0)]


def _validator(**overrides):
    return TopologyValidator(TopologyConfig(**overrides))


def test_clean_hip_roof_passes_untouched():
    r0, r1 = (5.0, 5.0), (15.0, 5.0)
    edges = [
        SkeletonEdge(r0, r1, EdgeType.RIDGE),
        SkeletonEdge((0.0, 0.0), r0, EdgeType.HIP),
        SkeletonEdge((0.0, 10.0), r0, EdgeType.HIP),
        SkeletonEdge((20.0, 0.0), r1, EdgeType.HIP),
        SkeletonEdge((20.0, 10.0), r1, EdgeType.HIP),
    ]
    out, report = _validator().validate(RECT, edges)
    assert len(out) == 5
    assert report.removed == 0
    assert report.is_valid
    assert report.score == 100


def test_edges_are_clipped_and_outside_edges_dropped():
    edges = [
        SkeletonEdge((5.0, 5.0), (15.0, 5.0), EdgeType.RIDGE),
        SkeletonEdge((25.0, 20.0), (30.0, 25.0), EdgeType.HIP),
        SkeletonEdge((0.0, 0.0), (5.0, 5.0), EdgeType.HIP),
    ]
    out, report = _validator().validate(RECT, edges)
    assert report.dropped_outside == 1
    assert len(out) == 2
    assert any("outside footprint" in w for w in report.warnings)


def test_longer_of_crossing_hips_is_removed():
    r0, r1 = (5.0, 5.0), (15.0, 5.0)
    short = SkeletonEdge((0.0, 0.0), r0, EdgeType.HIP)
    crossing = SkeletonEdge((0.0, 10.0), r1, EdgeType.HIP)  # 15.8 m
    blocker = SkeletonEdge((20.0, 8.0), r0, EdgeType.HIP)  # 15.3 m
    assert crossing.length > blocker.length
    assert hips_cross(crossing, blocker)
    edges = [SkeletonEdge(r0, r1, EdgeType.RIDGE), short, crossing, blocker]
    out, report = _validator().validate(RECT, edges)
    assert report.crossing_removed == 1
    hips = [e for e in out if e.type == EdgeType.HIP]
    assert len(hips) == 2
    assert crossing.start not in {h.start for h in hips}
    for i in range(len(hips)):
        for j in range(i + 1, len(hips)):
            assert not hips_cross(hips[i], hips[j])


def test_hips_meeting_at_shared_endpoint_do_not_cross():
    a = SkeletonEdge((0.0, 0.0), (5.0, 5.0), EdgeType.HIP)
    b = SkeletonEdge((0.0, 10.0), (5.0, 5.0), EdgeType.HIP)
    assert not hips_cross(a, b)


def test_overlong_ridge_is_dropped():
    edges = [SkeletonEdge((0.5, 5.0), (19.5, 5.0), EdgeType.RIDGE)]
    out, report = _validator().validate(RECT, edges)
    assert out == []
    assert report.implausible_ridges == 1
    assert not report.is_valid


def test_near_miss_is_snapped_onto_ridge_endpoint():
    r0, r1 = (5.0, 5.0), (15.0, 5.0)
    edges = [
        SkeletonEdge(r0, r1, EdgeType.RIDGE),
        SkeletonEdge((0.0, 0.0), (5.8, 4.6), EdgeType.HIP),
        SkeletonEdge((20.0, 10.0), (14.0, 6.0), EdgeType.VALLEY),
    ]
    out, report = _validator().validate(RECT, edges)
    assert report.snapped == 2
    ends = {e.end for e in out if e.type != EdgeType.RIDGE}
    assert ends == {r0, r1}


def test_dangling_hip_is_removed():
    r0, r1 = (5.0, 5.0), (15.0, 5.0)
    edges = [
        SkeletonEdge(r0, r1, EdgeType.RIDGE),
        SkeletonEdge((0.0, 0.0), r0, EdgeType.HIP),
        SkeletonEdge((20.0, 0.0), (10.0, 1.0), EdgeType.HIP),  # more than 3 m from any ridge endpoint
    ]
    out, report = _validator(snap_radius_m=3.0).validate(RECT, edges)
    assert report.dangling_removed == 1
    assert len([e for e in out if e.type == EdgeType.HIP]) == 1


def test_report_score_weights_errors_and_warnings():
    report = ValidationReport(errors=["a", "b"], warnings=["c"])
    assert report.score == 100 - 20 - 5
    assert ValidationReport(errors=["x"] * 20).score == 0


def test_pyramid_without_ridge_keeps_hips():
    apex = (5.0, 5.0)
    square = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)]
    edges = [SkeletonEdge(v, apex, EdgeType.HIP) for v in square]
    out, report = _validator().validate(square, edges)
    assert len(out) == 4
    assert report.removed == 0
    assert all(e.end == pytest.approx(apex) for e in out)


def test_hips_of_dropped_ridge_are_removed_with_it():
    long_rect = [(0.0, 0.0), (30.0, 0.0), (30.0, 4.0), (0.0, 4.0)]
    r0, r1 = (2.0, 2.0), (28.0, 2.0)  # 26 m, over 80% of the 30 m side
    edges = [SkeletonEdge(r0, r1, EdgeType.RIDGE)]
    edges += [SkeletonEdge(v, r0 if v[0] < 15.0 else r1, EdgeType.HIP) for v in long_rect]
    out, report = _validator().validate(long_rect, edges)
    assert out == []
    assert report.implausible_ridges == 1
    assert report.dangling_removed == 4


def test_ridgeless_hips_with_split_terminals_are_removed():
    square = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)]
    edges = [SkeletonEdge(v, (4.9, 5.0) if v[0] < 5.0 else (5.1, 5.0), EdgeType.HIP) for v in square]
    out, report = _validator().validate(square, edges)
    assert out == []
    assert report.dangling_removed == 4
