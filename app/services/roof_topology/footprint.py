from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

from ..geo_utils import (
    XY,
    SQFT_PER_M2,
    distance,
    normalize,
    signed_area,
    to_polygon,
    turn_cross,
)

logger = logging.getLogger(__name__)


@dataclass
class FootprintReport:
    vertex_count: int
    area_sqft: float
    warnings: List[str] = field(default_factory=list)


def normalize_ring(points: Sequence[XY], collinear_tolerance_deg: float = 1.0, tol: float = 1e-6) -> List[XY]:
    """
    Return an open, counter-clockwise ring without duplicate or straight vertices.

    Input may be closed or open and in either winding. The result may have
    fewer than 3 vertices when the footprint is degenerate; callers check.
    """
    ring: List[XY] = []
    for p in points:
        p = (float(p[0]), float(p[1]))
        if ring and distance(ring[-1], p) <= tol:
            continue
        ring.append(p)
    while len(ring) > 1 and distance(ring[0], ring[-1]) <= tol:
        ring.pop()

    # Drop vertices that do not turn; repeat since removals expose new ones
    sin_tol = math.sin(math.radians(collinear_tolerance_deg))
    changed = True
    while changed and len(ring) >= 3:
        changed = False
        for i in range(len(ring)):
            prev, curr, nxt = ring[i - 1], ring[i], ring[(i + 1) % len(ring)]
            a = distance(prev, curr)
            b = distance(curr, nxt)
            if a <= tol or b <= tol:
                del ring[i]
                changed = True
                break
            sin_turn = turn_cross(prev, curr, nxt) / (a * b)
            forward = (curr[0] - prev[0]) * (nxt[0] - curr[0]) + (curr[1] - prev[1]) * (nxt[1] - curr[1])
            if abs(sin_turn) <= sin_tol and forward > 0:
                del ring[i]
                changed = True
                break

    if len(ring) >= 3 and signed_area(ring) < 0:
        ring.reverse()
    return ring


def offset_ring(ring: Sequence[XY], offset_m: float, max_factor: float = 2.0) -> List[XY]:
    """
    Push every vertex of a CCW ring outward by the soffit offset.

    Each vertex moves along the bisector of the outward normals of its two
    edges by offset / sin(half interior angle), capped at max_factor * offset
    so acute corners do not explode. An offset of 0 returns a copy.
    """
    if offset_m <= 0:
        return list(ring)
    n = len(ring)
    out: List[XY] = []
    for i in range(n):
        prev, curr, nxt = ring[i - 1], ring[i], ring[(i + 1) % n]
        e1 = normalize((curr[0] - prev[0], curr[1] - prev[1]))
        e2 = normalize((nxt[0] - curr[0], nxt[1] - curr[1]))
        if e1 is None or e2 is None:
            out.append(curr)
            continue
        # Outward normal of a CCW edge is its right-hand side
        n1 = (e1[1], -e1[0])
        n2 = (e2[1], -e2[0])
        bis = normalize((n1[0] + n2[0], n1[1] + n2[1]))
        if bis is None:
            bis = n1
        sin_half = math.sqrt(max(0.0, (1.0 + n1[0] * n2[0] + n1[1] * n2[1]) / 2.0))
        factor = 1.0 / sin_half if sin_half > 1e-6 else max_factor
        factor = min(factor, max_factor)
        d = offset_m * factor
        out.append((curr[0] + bis[0] * d, curr[1] + bis[1] * d))
    return out


def validate_footprint(ring: Sequence[XY]) -> FootprintReport:
    """Basic QA on a local-meter ring: size sanity and self-intersection."""
    n = len(ring)
    if n < 3:
        return FootprintReport(vertex_count=n, area_sqft=0.0,
                               warnings=["footprint has fewer than 3 distinct vertices"])
    area_sqft = abs(signed_area(ring)) * SQFT_PER_M2
    warnings: List[str] = []
    if not to_polygon(ring).is_valid:
        warnings.append("footprint is self-intersecting")
    if area_sqft < 100:
        warnings.append(f"footprint area {area_sqft:.0f} sq ft is implausibly small")
    elif area_sqft > 50_000:
        warnings.append(f"footprint area {area_sqft:.0f} sq ft is implausibly large")
    if n > 20:
        warnings.append(f"footprint has {n} vertices; consider simplification")
    for w in warnings:
        logger.debug(f"Footprint QA: {w}")
    return FootprintReport(vertex_count=n, area_sqft=area_sqft, warnings=warnings)


__all__ = ["FootprintReport", "normalize_ring", "offset_ring", "validate_footprint"]
