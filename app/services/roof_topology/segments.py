from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from app.models.topology import EdgeType, Point, RoofSegment

from ..geo_utils import (
    XY,
    LocalProjection,
    bbox,
    bearing_vector,
    centroid,
    clip_segment,
    compass_direction,
    distance,
    m_to_ft,
    midpoint,
    polygon_centroid,
    to_polygon,
)
from .config import TopologyConfig

logger = logging.getLogger(__name__)


@dataclass
class SegmentLine:
    """Segment-derived line in lon/lat; hips/valleys end on a ridge endpoint."""
    start: Point
    end: Point
    type: EdgeType
    length_m: float
    facets: Tuple[int, int] = (-1, -1)


@dataclass
class SegmentTopology:
    ridges: List[SegmentLine] = field(default_factory=list)
    hips: List[SegmentLine] = field(default_factory=list)
    valleys: List[SegmentLine] = field(default_factory=list)
    roof_type: str = "unknown"

    def totals_ft(self) -> dict:
        def ft(lines: List[SegmentLine]) -> float:
            return m_to_ft(sum(line.length_m for line in lines))

        return {"ridge_ft": ft(self.ridges), "hip_ft": ft(self.hips), "valley_ft": ft(self.valleys)}


def angular_difference(a: float, b: float) -> float:
    """Absolute difference between two compass bearings, in [0, 180]."""
    return abs(((a - b + 180.0) % 360.0) - 180.0)


def circular_mean(a: float, b: float) -> float:
    x = math.sin(math.radians(a)) + math.sin(math.radians(b))
    y = math.cos(math.radians(a)) + math.cos(math.radians(b))
    if abs(x) < 1e-12 and abs(y) < 1e-12:
        return a % 360.0
    return math.degrees(math.atan2(x, y)) % 360.0


def _finite(*points: XY) -> bool:
    return all(math.isfinite(v) for p in points for v in p)


class SegmentTopologyAnalyzer:
    """
    Infer ridge/hip/valley lines from vendor roof-segment metadata.

    Facets are paired exhaustively by azimuth: opposing facets share a ridge,
    perpendicular neighbours share a hip (outside corner) or a valley (inside
    corner). Lengths come from the footprint dimensions rather than from the
    facets themselves, which vendors only report as boxes.
    """

    def __init__(self, config: Optional[TopologyConfig] = None):
        self.config = config or TopologyConfig()

    def _dimensions(self, segments: Sequence[RoofSegment], ring: Optional[List[XY]]) -> Tuple[float, float]:
        if ring:
            minx, miny, maxx, maxy = bbox(ring)
            return max(maxx - minx, maxy - miny), min(maxx - minx, maxy - miny)
        side = math.sqrt(max(0.0, sum(s.area_m2 for s in segments)))
        return 1.2 * side, 0.8 * side

    def _facet_centroids(self, segments: Sequence[RoofSegment], proj: LocalProjection, center: XY) -> List[XY]:
        out: List[XY] = []
        for s in segments:
            if s.center is not None:
                out.append(proj.to_local(s.center))
            elif s.bounding_box is not None:
                sw, ne = s.bounding_box
                out.append(proj.to_local(((sw[0] + ne[0]) / 2.0, (sw[1] + ne[1]) / 2.0)))
            else:
                v = bearing_vector(s.azimuth_degrees)
                out.append((center[0] + v[0] * self.config.facet_offset_m, center[1] + v[1] * self.config.facet_offset_m))
        return out

    def _anchor(self, ridges: List[Tuple[XY, XY]], center: XY, azimuth: float) -> Optional[XY]:
        """Ridge endpoint lying furthest along the given bearing from the center."""
        if not ridges:
            return None
        v = bearing_vector(azimuth)
        pts = [p for r in ridges for p in r]
        return max(pts, key=lambda p: (p[0] - center[0]) * v[0] + (p[1] - center[1]) * v[1])

    def analyze(self, segments: Sequence[RoofSegment], footprint: Optional[Sequence[Point]] = None,
                projection: Optional[LocalProjection] = None) -> SegmentTopology:
        segments = list(segments)
        if not segments:
            return SegmentTopology(roof_type="unknown")

        ring_ll: Optional[List[Point]] = None
        if footprint:
            ring_ll = list(footprint)
            if len(ring_ll) > 1 and ring_ll[0] == ring_ll[-1]:
                ring_ll = ring_ll[:-1]
        anchors: List[Point] = list(ring_ll or [])
        if not anchors:
            for s in segments:
                if s.center is not None:
                    anchors.append(s.center)
                elif s.bounding_box is not None:
                    anchors.extend(s.bounding_box)
        if projection is None:
            projection = LocalProjection.from_points(anchors) if anchors else LocalProjection(0.0, 0.0, 111_320.0)
        proj = projection

        ring = proj.ring_to_local(ring_ll) if ring_ll and len(ring_ll) >= 3 else None
        longer, shorter = self._dimensions(segments, ring)
        if ring:
            center = polygon_centroid(ring)
        else:
            known = [proj.to_local(s.center) for s in segments if s.center is not None]
            center = centroid(known) if known else (0.0, 0.0)
        cents = self._facet_centroids(segments, proj, center)
        avg_area = sum(s.area_m2 for s in segments) / len(segments)
        cfg = self.config

        ridge_pairs: List[Tuple[int, int, XY, XY, float]] = []
        corner_pairs: List[Tuple[int, int, float, float]] = []  # (i, j, mean azimuth, combined area)
        for i in range(len(segments)):
            for j in range(i + 1, len(segments)):
                a1, a2 = segments[i].azimuth_degrees, segments[j].azimuth_degrees
                diff = angular_difference(a1, a2)
                combined = segments[i].area_m2 + segments[j].area_m2
                if diff >= 180.0 - cfg.ridge_angle_tolerance_deg:
                    m = midpoint(cents[i], cents[j])
                    v = bearing_vector(a1 + 90.0)
                    half = cfg.ridge_length_ratio * longer / 2.0
                    ridge_pairs.append((i, j, (m[0] - v[0] * half, m[1] - v[1] * half),
                                        (m[0] + v[0] * half, m[1] + v[1] * half), combined))
                elif abs(diff - 90.0) <= cfg.hip_angle_tolerance_deg:
                    if distance(cents[i], cents[j]) < cfg.adjacency_factor * longer:
                        corner_pairs.append((i, j, circular_mean(a1, a2), combined))

        # Four facets in two opposing pairs is a hip roof: only the larger pair carries the ridge
        if len(segments) == 4 and len(ridge_pairs) == 2:
            (i1, j1, *_), (i2, j2, *_) = ridge_pairs
            if not {i1, j1} & {i2, j2}:
                ridge_pairs = [max(ridge_pairs, key=lambda r: r[4])]

        ridges: List[Tuple[XY, XY]] = [(r[2], r[3]) for r in ridge_pairs]
        ridge_facets = [(r[0], r[1]) for r in ridge_pairs]
        if not ridges and len(segments) >= 2:
            if ring:
                minx, miny, maxx, maxy = bbox(ring)
                axis = (1.0, 0.0) if (maxx - minx) >= (maxy - miny) else (0.0, 1.0)
            else:
                axis = (1.0, 0.0)
            half = cfg.default_ridge_ratio * longer / 2.0
            ridges.append(((center[0] - axis[0] * half, center[1] - axis[1] * half),
                           (center[0] + axis[0] * half, center[1] + axis[1] * half)))
            ridge_facets.append((-1, -1))
            logger.debug("No opposing facet pair; synthesized default ridge")

        poly = to_polygon(ring) if ring else None
        topo = SegmentTopology()
        clipped_ridges: List[Tuple[XY, XY]] = []
        for (a, b), pair in zip(ridges, ridge_facets):
            line = self._emit(a, b, poly)
            if line is None:
                continue
            clipped_ridges.append(line)
            topo.ridges.append(SegmentLine(proj.to_lonlat(line[0]), proj.to_lonlat(line[1]), EdgeType.RIDGE,
                                           distance(*line), pair))

        hip_len = cfg.hip_length_factor * shorter / 2.0
        corners: List[Tuple[int, int, float, EdgeType]] = []
        for i, j, mean_az, combined in corner_pairs:
            kind = EdgeType.HIP if combined > cfg.hip_area_factor * avg_area else EdgeType.VALLEY
            corners.append((i, j, mean_az, kind))
        if not any(k == EdgeType.HIP for *_, k in corners) and len(segments) >= 4:
            corners.extend((-1, -1, az, EdgeType.HIP) for az in (45.0, 135.0, 225.0, 315.0))
            logger.debug("No perpendicular facet pair; synthesized four default hips")

        for i, j, az, kind in corners:
            anchor = self._anchor(clipped_ridges, center, az)
            if anchor is None:
                anchor = center
            v = bearing_vector(az)
            start = (anchor[0] + v[0] * hip_len, anchor[1] + v[1] * hip_len)
            line = self._emit(start, anchor, poly)
            if line is None:
                continue
            if clipped_ridges and line[1] != anchor:
                # Corner line no longer reaches its ridge junction after clipping
                continue
            out = SegmentLine(proj.to_lonlat(line[0]), proj.to_lonlat(line[1]), kind, distance(*line), (i, j))
            (topo.hips if kind == EdgeType.HIP else topo.valleys).append(out)

        topo.roof_type = infer_roof_type(segments, len(topo.ridges), len(topo.hips), len(topo.valleys), cfg.flat_pitch_deg)
        return topo

    def _emit(self, a: XY, b: XY, poly) -> Optional[Tuple[XY, XY]]:
        if not _finite(a, b):
            logger.debug("Dropped non-finite segment-derived line")
            return None
        if poly is not None:
            clipped = clip_segment(poly, a, b)
            if clipped is None:
                return None
            a, b = clipped
        if distance(a, b) <= 1e-6:
            return None
        return a, b


def infer_roof_type(segments: Sequence[RoofSegment], ridges: int, hips: int, valleys: int,
                    flat_pitch_deg: float = 5.0) -> str:
    n = len(segments)
    if n == 0 or all(s.pitch_degrees < flat_pitch_deg for s in segments):
        return "flat"
    if n == 2 and ridges == 1:
        return "gable"
    if n == 4 and ridges == 1 and hips >= 2:
        return "hip"
    directions = {compass_direction(s.azimuth_degrees) for s in segments}
    l_pattern = {"N", "S"} <= directions and {"E", "W"} <= directions and n >= 6
    if ridges >= 2 or valleys > 0 or l_pattern:
        return "cross_gable"
    return "complex"


__all__ = [
    "SegmentTopologyAnalyzer",
    "SegmentTopology",
    "SegmentLine",
    "angular_difference",
    "circular_mean",
    "infer_roof_type",
]
