from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from app.models.topology import EdgeType, LinearFeature, Point, RidgeOverride

from ..geo_utils import XY, LocalProjection, distance, ft_to_m, normalize
from .config import TopologyConfig
from .skeleton import SkeletonEdge

logger = logging.getLogger(__name__)

Segment = Tuple[XY, XY]


@dataclass
class BoundaryClassification:
    eaves: List[Segment] = field(default_factory=list)
    rakes: List[Segment] = field(default_factory=list)
    used_override: bool = False


class BoundaryClassifier:
    """Label each perimeter edge eave or rake against the dominant ridge direction."""

    def __init__(self, config: Optional[TopologyConfig] = None):
        self.config = config or TopologyConfig()

    def _perimeter(self, ring: Sequence[XY]) -> List[Segment]:
        n = len(ring)
        min_len = ft_to_m(self.config.min_perimeter_edge_ft)
        edges = [(ring[i], ring[(i + 1) % n]) for i in range(n)]
        return [e for e in edges if distance(*e) > min_len]

    def classify(self, ring: Sequence[XY], edges: Sequence[SkeletonEdge],
                 override: Optional[Segment] = None) -> BoundaryClassification:
        result = BoundaryClassification()
        perimeter = self._perimeter(ring)

        reference: Optional[XY] = None
        if override is not None:
            reference = normalize((override[1][0] - override[0][0], override[1][1] - override[0][1]))
            result.used_override = reference is not None
        if reference is None:
            ridges = [e for e in edges if e.type == EdgeType.RIDGE]
            if ridges:
                longest = max(ridges, key=lambda e: e.length)
                reference = normalize((longest.end[0] - longest.start[0], longest.end[1] - longest.start[1]))

        if reference is None:
            # No ridge at all: treat as a hip roof without gable ends
            result.eaves = list(perimeter)
            return result

        hip_points: List[XY] = []
        if not result.used_override:
            for e in edges:
                if e.type == EdgeType.HIP:
                    hip_points.extend([e.start, e.end])

        radius = self.config.hip_corner_radius_m
        for a, b in perimeter:
            direction = normalize((b[0] - a[0], b[1] - a[1]))
            if direction is None:
                continue
            cos = abs(direction[0] * reference[0] + direction[1] * reference[1])
            if cos > self.config.eave_dot_threshold:
                result.eaves.append((a, b))
            elif any(distance(p, a) <= radius or distance(p, b) <= radius for p in hip_points):
                result.eaves.append((a, b))
            else:
                result.rakes.append((a, b))
        return result

    def classify_perimeter_only(self, ring: Sequence[XY]) -> BoundaryClassification:
        """Degraded classification with no skeleton: long edges are eaves, short ones rakes."""
        result = BoundaryClassification()
        perimeter = self._perimeter(ring)
        if not perimeter:
            return result
        mean = sum(distance(a, b) for a, b in perimeter) / len(perimeter)
        for a, b in perimeter:
            if distance(a, b) >= self.config.fallback_eave_ratio * mean:
                result.eaves.append((a, b))
            else:
                result.rakes.append((a, b))
        return result


def classify_boundary_edges(ring: Sequence[Point], features: Sequence[LinearFeature],
                            ridge_override: Optional[RidgeOverride] = None,
                            config: Optional[TopologyConfig] = None) -> BoundaryClassification:
    """
    Classify the perimeter of a lon/lat ring given lon/lat linear features.

    Returns eave and rake segments in lon/lat. Closing vertices are ignored.
    """
    pts = list(ring)
    if len(pts) > 1 and pts[0] == pts[-1]:
        pts = pts[:-1]
    if len(pts) < 3:
        return BoundaryClassification()
    proj = LocalProjection.from_points(pts)
    local_ring = proj.ring_to_local(pts)
    edges = [
        SkeletonEdge(proj.to_local(f.start), proj.to_local(f.end), f.type)
        for f in features
        if f.type in (EdgeType.RIDGE, EdgeType.HIP, EdgeType.VALLEY)
    ]
    override = None
    if ridge_override is not None:
        override = (proj.to_local(ridge_override.start), proj.to_local(ridge_override.end))
    local = BoundaryClassifier(config).classify(local_ring, edges, override)
    to_ll = proj.to_lonlat
    return BoundaryClassification(
        eaves=[(to_ll(a), to_ll(b)) for a, b in local.eaves],
        rakes=[(to_ll(a), to_ll(b)) for a, b in local.rakes],
        used_override=local.used_override,
    )


__all__ = ["BoundaryClassifier", "BoundaryClassification", "classify_boundary_edges"]
