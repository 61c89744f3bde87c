from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from app.models.topology import EdgeType

from ..geo_utils import XY, bbox, clip_segment, distance, point_in_polygon, segment_intersection, to_polygon
from .config import TopologyConfig
from .skeleton import SkeletonEdge

logger = logging.getLogger(__name__)

SHARED_VERTEX_TOL_M = 1e-6


@dataclass
class ValidationReport:
    clipped: int = 0
    dropped_outside: int = 0
    crossing_removed: int = 0
    implausible_ridges: int = 0
    snapped: int = 0
    dangling_removed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return self.dropped_outside + self.crossing_removed + self.implausible_ridges + self.dangling_removed

    @property
    def score(self) -> int:
        return max(0, 100 - 10 * len(self.errors) - 5 * len(self.warnings))

    @property
    def is_valid(self) -> bool:
        return not self.errors


def hips_cross(a: SkeletonEdge, b: SkeletonEdge, tol: float = SHARED_VERTEX_TOL_M) -> bool:
    """True when two edges cross anywhere other than at a shared endpoint."""
    for p in (a.start, a.end):
        for q in (b.start, b.end):
            if distance(p, q) <= tol:
                return False
    return segment_intersection(a.start, a.end, b.start, b.end) is not None


class TopologyValidator:
    """
    Turn raw skeleton output into a planar, gap-free topology.

    Steps: clip to the footprint, drop the longer of each crossing hip pair,
    drop implausible ridges, snap hip/valley terminals onto ridge endpoints,
    and finally drop hips/valleys left dangling. Every removal is logged and
    counted in the report; nothing here raises.
    """

    def __init__(self, config: Optional[TopologyConfig] = None):
        self.config = config or TopologyConfig()

    def validate(self, ring: Sequence[XY], edges: Sequence[SkeletonEdge]) -> Tuple[List[SkeletonEdge], ValidationReport]:
        report = ValidationReport()
        poly = to_polygon(ring)

        out = self._clip(poly, edges, report)
        out = self._remove_crossing_hips(out, report)
        out = self._remove_implausible_ridges(poly, ring, out, report)
        out = self._snap_to_ridges(out, report)
        out = self._remove_crossing_hips(out, report)
        out = self._remove_dangling(out, report)
        logger.debug(
            f"Validation: clipped={report.clipped} outside={report.dropped_outside} "
            f"crossing={report.crossing_removed} ridges={report.implausible_ridges} "
            f"snapped={report.snapped} dangling={report.dangling_removed} score={report.score}"
        )
        return out, report

    def _clip(self, poly, edges: Sequence[SkeletonEdge], report: ValidationReport) -> List[SkeletonEdge]:
        out: List[SkeletonEdge] = []
        for e in edges:
            clipped = clip_segment(poly, e.start, e.end)
            if clipped is None:
                report.dropped_outside += 1
                report.warnings.append(f"{e.type.value} outside footprint discarded")
                logger.info(f"Discarded {e.type.value} lying outside the footprint")
                continue
            start, end = clipped
            if start != e.start or end != e.end:
                report.clipped += 1
                report.warnings.append(f"{e.type.value} clipped to footprint")
            out.append(SkeletonEdge(start, end, e.type, wing=e.wing))
        return out

    def _remove_crossing_hips(self, edges: List[SkeletonEdge], report: ValidationReport) -> List[SkeletonEdge]:
        edges = list(edges)
        while True:
            hips = [k for k, e in enumerate(edges) if e.type == EdgeType.HIP]
            victim: Optional[int] = None
            for a in range(len(hips)):
                for b in range(a + 1, len(hips)):
                    ea, eb = edges[hips[a]], edges[hips[b]]
                    if hips_cross(ea, eb):
                        # Shorter hips are more often the correct corner-to-ridge connection
                        victim = hips[a] if ea.length > eb.length else hips[b]
                        break
                if victim is not None:
                    break
            if victim is None:
                return edges
            report.crossing_removed += 1
            report.errors.append("crossing hip removed")
            logger.debug(f"Removed crossing hip of length {edges[victim].length:.2f} m")
            del edges[victim]

    def _remove_implausible_ridges(self, poly, ring: Sequence[XY], edges: List[SkeletonEdge],
                                   report: ValidationReport) -> List[SkeletonEdge]:
        minx, miny, maxx, maxy = bbox(ring)
        limit = self.config.max_ridge_ratio * max(maxx - minx, maxy - miny)
        out: List[SkeletonEdge] = []
        for e in edges:
            if e.type == EdgeType.RIDGE:
                if e.length > limit:
                    report.implausible_ridges += 1
                    report.errors.append(f"ridge of {e.length:.1f} m exceeds {limit:.1f} m")
                    logger.info(f"Discarded ridge of {e.length:.2f} m (limit {limit:.2f} m)")
                    continue
                if not (point_in_polygon(poly, e.start) and point_in_polygon(poly, e.end)):
                    report.implausible_ridges += 1
                    report.errors.append("ridge endpoint outside footprint")
                    logger.info("Discarded ridge with endpoint outside the footprint")
                    continue
            out.append(e)
        return out

    def _snap_to_ridges(self, edges: List[SkeletonEdge], report: ValidationReport) -> List[SkeletonEdge]:
        endpoints: List[XY] = []
        for e in edges:
            if e.type == EdgeType.RIDGE:
                endpoints.extend([e.start, e.end])
        if not endpoints:
            return edges
        out: List[SkeletonEdge] = []
        for e in edges:
            if e.type in (EdgeType.HIP, EdgeType.VALLEY):
                nearest = min(endpoints, key=lambda p: distance(p, e.end))
                d = distance(nearest, e.end)
                if 0 < d <= self.config.snap_radius_m:
                    report.snapped += 1
                    e = SkeletonEdge(e.start, nearest, e.type, wing=e.wing)
                if e.length <= SHARED_VERTEX_TOL_M:
                    continue
            out.append(e)
        return out

    def _remove_dangling(self, edges: List[SkeletonEdge], report: ValidationReport) -> List[SkeletonEdge]:
        endpoints = [p for e in edges if e.type == EdgeType.RIDGE for p in (e.start, e.end)]
        if not endpoints:
            # Without a ridge only a single shared apex (pyramid) is a valid terminal
            terminals = {e.end for e in edges if e.type in (EdgeType.HIP, EdgeType.VALLEY)}
            if len(terminals) <= 1:
                return edges
        out: List[SkeletonEdge] = []
        for e in edges:
            if e.type in (EdgeType.HIP, EdgeType.VALLEY) and e.end not in endpoints:
                report.dangling_removed += 1
                report.errors.append(f"{e.type.value} not connected to a ridge")
                logger.debug(f"Removed {e.type.value} not terminating on a ridge endpoint")
                continue
            out.append(e)
        return out


__all__ = ["TopologyValidator", "ValidationReport", "hips_cross"]
