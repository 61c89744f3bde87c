from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from app.models.topology import BuildingShape, EdgeType

from ..geo_utils import (
    XY,
    distance,
    ft_to_m,
    interior_bisector,
    lerp,
    line_intersection,
    midpoint,
    normalize,
    point_in_polygon,
    polygon_centroid,
    project_onto,
    ray_segment_intersection,
    rotate,
    segment_intersection,
    to_polygon,
)
from .config import TopologyConfig
from .shape import ShapeClassification
from .wings import Wing, WingDecomposer

logger = logging.getLogger(__name__)


@dataclass
class SkeletonEdge:
    """Edge in local meters. Hips and valleys run from the eave corner (start) to the ridge (end)."""
    start: XY
    end: XY
    type: EdgeType
    wing: Optional[int] = None

    @property
    def length(self) -> float:
        return distance(self.start, self.end)


@dataclass
class Skeleton:
    shape: BuildingShape
    edges: List[SkeletonEdge] = field(default_factory=list)

    def of_type(self, edge_type: EdgeType) -> List[SkeletonEdge]:
        return [e for e in self.edges if e.type == edge_type]


class SkeletonBuilder:
    """
    Shape-keyed approximate straight skeleton.

    One strategy per BuildingShape: a bisector-based hip roof for rectangles,
    one ridge per wing for L/T/U footprints and a single medial ridge for
    everything else. Hips and valleys always terminate on a vertex that is
    also a ridge endpoint.
    """

    def __init__(self, config: Optional[TopologyConfig] = None, decomposer: Optional[WingDecomposer] = None):
        self.config = config or TopologyConfig()
        self.decomposer = decomposer or WingDecomposer(max_wings=self.config.max_wings)
        self._strategies: Dict[BuildingShape, Callable[[List[XY], ShapeClassification], Skeleton]] = {
            BuildingShape.RECTANGLE: self._build_rectangle,
            BuildingShape.L_SHAPE: self._build_multi_wing,
            BuildingShape.T_SHAPE: self._build_multi_wing,
            BuildingShape.U_SHAPE: self._build_multi_wing,
            BuildingShape.COMPLEX: self._build_complex,
        }

    @property
    def min_feature_m(self) -> float:
        return ft_to_m(self.config.min_feature_ft)

    def build(self, ring: Sequence[XY], classification: ShapeClassification) -> Skeleton:
        ring = list(ring)
        skeleton = self._strategies[classification.shape](ring, classification)
        kept = [e for e in skeleton.edges if e.length >= self.min_feature_m]
        if len(kept) != len(skeleton.edges):
            logger.debug(f"Skipped {len(skeleton.edges) - len(kept)} skeleton features shorter than {self.config.min_feature_ft} ft")
        skeleton.edges = kept
        logger.debug(
            f"Skeleton {skeleton.shape.value}: ridges={len(skeleton.of_type(EdgeType.RIDGE))} "
            f"hips={len(skeleton.of_type(EdgeType.HIP))} valleys={len(skeleton.of_type(EdgeType.VALLEY))}"
        )
        return skeleton

    # Rectangle -------------------------------------------------------------------

    def _build_rectangle(self, ring: List[XY], classification: ShapeClassification) -> Skeleton:
        poly = to_polygon(ring)
        cen = polygon_centroid(ring)
        n = len(ring)
        longest = max(range(n), key=lambda i: (round(distance(ring[i], ring[(i + 1) % n]), 9), -i))

        endpoints: List[XY] = []
        for s in ((longest + 1) % n, (longest + 3) % n):
            a, b = ring[s], ring[(s + 1) % n]
            da = interior_bisector(ring[s - 1], a, b)
            db = interior_bisector(a, b, ring[(s + 2) % n])
            p = line_intersection(a, da, b, db)
            if p is None or not point_in_polygon(poly, p):
                p = lerp(midpoint(a, b), cen, self.config.rectangle_fallback_inset)
                logger.debug("Rectangle ridge endpoint fell outside footprint; using inset midpoint")
            endpoints.append(p)

        r0, r1 = endpoints
        edges: List[SkeletonEdge] = []
        if distance(r0, r1) < self.min_feature_m:
            # Square or near-square: hips meet at a single apex
            apex = r0 if r0 == r1 else midpoint(r0, r1)
            for v in ring:
                edges.append(SkeletonEdge(v, apex, EdgeType.HIP))
            return Skeleton(shape=BuildingShape.RECTANGLE, edges=edges)

        edges.append(SkeletonEdge(r0, r1, EdgeType.RIDGE))
        direction = normalize((r1[0] - r0[0], r1[1] - r0[1]))
        mid = midpoint(r0, r1)
        for v in ring:
            side = project_onto(v, mid, direction)  # type: ignore[arg-type]
            edges.append(SkeletonEdge(v, r1 if side > 0 else r0, EdgeType.HIP))
        return Skeleton(shape=BuildingShape.RECTANGLE, edges=edges)

    # L / T / U --------------------------------------------------------------------

    def _split_ridge(self, ridge: SkeletonEdge, p: XY) -> List[SkeletonEdge]:
        return [
            SkeletonEdge(ridge.start, p, EdgeType.RIDGE, wing=ridge.wing),
            SkeletonEdge(p, ridge.end, EdgeType.RIDGE, wing=ridge.wing),
        ]

    def _snap_to_endpoint(self, ridge: SkeletonEdge, p: XY) -> Optional[XY]:
        """Return the ridge endpoint when p would leave a sliver, else None."""
        if distance(p, ridge.start) < self.min_feature_m:
            return ridge.start
        if distance(p, ridge.end) < self.min_feature_m:
            return ridge.end
        return None

    def _resolve_ridge_crossings(self, ridges: List[SkeletonEdge]) -> List[SkeletonEdge]:
        """Turn crossing wing ridges into a shared junction.

        The shorter ridge is trimmed back to the junction (keeping its longer
        piece) and the longer ridge is split there.
        """
        ridges = list(ridges)
        for _ in range(4 * max(1, len(ridges))):
            crossing: Optional[Tuple[int, int, XY]] = None
            for i in range(len(ridges)):
                for j in range(i + 1, len(ridges)):
                    if ridges[i].wing == ridges[j].wing:
                        continue
                    p = segment_intersection(ridges[i].start, ridges[i].end, ridges[j].start, ridges[j].end, margin=1e-6)
                    if p is not None:
                        crossing = (i, j, p)
                        break
                if crossing:
                    break
            if crossing is None:
                return ridges
            i, j, p = crossing
            long_idx, short_idx = (i, j) if ridges[i].length >= ridges[j].length else (j, i)
            longer, shorter = ridges[long_idx], ridges[short_idx]
            snapped = self._snap_to_endpoint(longer, p)
            junction = snapped if snapped is not None else p
            pieces_short = [
                SkeletonEdge(shorter.start, junction, EdgeType.RIDGE, wing=shorter.wing),
                SkeletonEdge(junction, shorter.end, EdgeType.RIDGE, wing=shorter.wing),
            ]
            trimmed = max(pieces_short, key=lambda e: e.length)
            replacement = [longer] if snapped is not None else self._split_ridge(longer, junction)
            rest = [r for k, r in enumerate(ridges) if k not in (long_idx, short_idx)]
            ridges = rest + replacement + [trimmed]
        logger.debug("Ridge crossing resolution did not converge; keeping current ridges")
        return ridges

    def _wing_extremes(self, ridges: Sequence[SkeletonEdge], wing: Wing) -> Optional[Tuple[XY, XY]]:
        pts: List[XY] = []
        for r in ridges:
            if r.wing == wing.index:
                pts.extend([r.start, r.end])
        if not pts:
            return None
        lo = min(pts, key=lambda p: project_onto(p, wing.center, wing.axis))
        hi = max(pts, key=lambda p: project_onto(p, wing.center, wing.axis))
        return lo, hi

    def _nearest_ridge_endpoint(self, ridges: Sequence[SkeletonEdge], p: XY) -> XY:
        best = ridges[0].start
        best_d = math.inf
        for r in ridges:
            for q in (r.start, r.end):
                d = distance(p, q)
                if d < best_d - 1e-9:
                    best, best_d = q, d
        return best

    def _build_multi_wing(self, ring: List[XY], classification: ShapeClassification) -> Skeleton:
        wings = self.decomposer.decompose(ring)
        if not wings:
            logger.info(f"No wings found for {classification.shape.value} footprint; using medial ridge")
            return self._build_complex(ring, classification, shape=classification.shape)

        ridges: List[SkeletonEdge] = []
        for wg in wings:
            a, b = wg.ridge(self.config.wing_ridge_inset)
            if distance(a, b) >= self.min_feature_m:
                ridges.append(SkeletonEdge(a, b, EdgeType.RIDGE, wing=wg.index))
        if not ridges:
            return self._build_complex(ring, classification, shape=classification.shape)
        ridges = self._resolve_ridge_crossings(ridges)

        edges: List[SkeletonEdge] = []
        reflex = set(classification.reflex_indices)
        n = len(ring)

        # Convex corners: own wing only, endpoint chosen by side of the ridge
        for i in range(n):
            if i in reflex:
                continue
            v = ring[i]
            wg = self.decomposer.owner(wings, v)
            extremes = self._wing_extremes(ridges, wg) if wg is not None else None
            if extremes is None:
                end = self._nearest_ridge_endpoint(ridges, v)
            else:
                lo, hi = extremes
                end = hi if project_onto(v, wg.center, wg.axis) >= 0 else lo  # type: ignore[union-attr]
            edges.append(SkeletonEdge(v, end, EdgeType.HIP, wing=wg.index if wg else None))

        # Reflex corners: bisector ray to the first ridge hit
        for i in sorted(reflex):
            v = ring[i]
            direction = interior_bisector(ring[i - 1], v, ring[(i + 1) % n])
            hit: Optional[Tuple[float, int, XY]] = None
            for k, r in enumerate(ridges):
                res = ray_segment_intersection(v, direction, r.start, r.end)
                if res is not None and (hit is None or res[0] < hit[0]):
                    hit = (res[0], k, res[1])
            if hit is None:
                end = self._nearest_ridge_endpoint(ridges, v)
                wing_idx = None
            else:
                _, k, p = hit
                ridge = ridges[k]
                snapped = self._snap_to_endpoint(ridge, p)
                if snapped is not None:
                    end = snapped
                else:
                    end = p
                    ridges = ridges[:k] + self._split_ridge(ridge, p) + ridges[k + 1:]
                wing_idx = ridge.wing
            edges.append(SkeletonEdge(v, end, EdgeType.VALLEY, wing=wing_idx))

        return Skeleton(shape=classification.shape, edges=ridges + edges)

    # Complex ----------------------------------------------------------------------

    def _build_complex(self, ring: List[XY], classification: ShapeClassification,
                       shape: BuildingShape = BuildingShape.COMPLEX) -> Skeleton:
        theta = self.decomposer.frame_angle(ring)
        rot = [rotate(p, -theta) for p in ring]
        w = max(p[0] for p in rot) - min(p[0] for p in rot)
        h = max(p[1] for p in rot) - min(p[1] for p in rot)
        axis = rotate((1.0, 0.0) if w >= h else (0.0, 1.0), theta)
        half = max(w, h) * max(0.0, 0.5 - self.config.complex_ridge_inset)
        c = polygon_centroid(ring)
        r0 = (c[0] - axis[0] * half, c[1] - axis[1] * half)
        r1 = (c[0] + axis[0] * half, c[1] + axis[1] * half)

        edges = [SkeletonEdge(r0, r1, EdgeType.RIDGE)]
        reflex = set(classification.reflex_indices)
        for i, v in enumerate(ring):
            end = r0 if distance(v, r0) <= distance(v, r1) else r1
            edges.append(SkeletonEdge(v, end, EdgeType.VALLEY if i in reflex else EdgeType.HIP))
        return Skeleton(shape=shape, edges=edges)


__all__ = ["SkeletonBuilder", "Skeleton", "SkeletonEdge"]
