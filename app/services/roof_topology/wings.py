from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..geo_utils import XY, distance, point_in_polygon, rotate, to_polygon

logger = logging.getLogger(__name__)


@dataclass
class GridRect:
    """Axis-aligned block of grid cells [i0, i1] x [j0, j1] (inclusive)."""
    i0: int
    j0: int
    i1: int
    j1: int


@dataclass
class Wing:
    index: int
    corners: Tuple[XY, XY, XY, XY]  # local meters, CCW
    axis: XY  # unit vector along the longer side
    length: float
    width: float
    center: XY

    @property
    def area(self) -> float:
        return self.length * self.width

    def ridge(self, inset: float) -> Tuple[XY, XY]:
        half = self.length * max(0.0, 0.5 - inset)
        ax, ay = self.axis
        cx, cy = self.center
        return (cx - ax * half, cy - ay * half), (cx + ax * half, cy + ay * half)


class WingDecomposer:
    """
    Split an L/T/U footprint into overlapping rectangular wings.

    The ring is rotated into the frame of its longest edge and its vertex
    coordinates cut the bounding box into a coarse grid. Cells whose centers
    fall inside the footprint are marked, and every maximal all-inside block
    of cells becomes a wing. An L yields two arms that overlap at the elbow,
    a U yields the base plus two legs.
    """

    def __init__(self, merge_tol_m: float = 0.25, max_wings: int = 6):
        self.merge_tol_m = merge_tol_m
        self.max_wings = max_wings

    def frame_angle(self, ring: Sequence[XY]) -> float:
        n = len(ring)
        best_len = -1.0
        best_angle = 0.0
        for i in range(n):
            a, b = ring[i], ring[(i + 1) % n]
            length = distance(a, b)
            if length > best_len + 1e-9:
                best_len = length
                best_angle = math.atan2(b[1] - a[1], b[0] - a[0])
        return best_angle

    def _cluster(self, values: Sequence[float], tol: float) -> List[float]:
        out: List[List[float]] = []
        for v in sorted(values):
            if out and v - out[-1][-1] <= tol:
                out[-1].append(v)
            else:
                out.append([v])
        return [sum(c) / len(c) for c in out]

    def _full_rects(self, inside: np.ndarray) -> List[GridRect]:
        rows, cols = inside.shape
        # 2D prefix sums so every block test is O(1)
        acc = np.zeros((rows + 1, cols + 1), dtype=np.int64)
        acc[1:, 1:] = np.cumsum(np.cumsum(inside.astype(np.int64), axis=0), axis=1)

        def full(r: GridRect) -> bool:
            if r.i0 < 0 or r.j0 < 0 or r.i1 >= cols or r.j1 >= rows:
                return False
            total = acc[r.j1 + 1, r.i1 + 1] - acc[r.j0, r.i1 + 1] - acc[r.j1 + 1, r.i0] + acc[r.j0, r.i0]
            return int(total) == (r.i1 - r.i0 + 1) * (r.j1 - r.j0 + 1)

        maximal: List[GridRect] = []
        for j0 in range(rows):
            for j1 in range(j0, rows):
                for i0 in range(cols):
                    for i1 in range(i0, cols):
                        r = GridRect(i0, j0, i1, j1)
                        if not full(r):
                            continue
                        grows = (
                            GridRect(i0 - 1, j0, i1, j1), GridRect(i0, j0, i1 + 1, j1),
                            GridRect(i0, j0 - 1, i1, j1), GridRect(i0, j0, i1, j1 + 1),
                        )
                        if any(full(g) for g in grows):
                            continue
                        maximal.append(r)
        return maximal

    def decompose(self, ring: Sequence[XY]) -> List[Wing]:
        if len(ring) < 4:
            return []
        theta = self.frame_angle(ring)
        local = [rotate(p, -theta) for p in ring]
        xs_raw = [p[0] for p in local]
        ys_raw = [p[1] for p in local]
        extent = max(max(xs_raw) - min(xs_raw), max(ys_raw) - min(ys_raw))
        tol = max(self.merge_tol_m, 0.02 * extent)
        xs = self._cluster(xs_raw, tol)
        ys = self._cluster(ys_raw, tol)
        if len(xs) < 2 or len(ys) < 2:
            return []

        poly = to_polygon(local)
        inside = np.zeros((len(ys) - 1, len(xs) - 1), dtype=bool)
        for j in range(len(ys) - 1):
            for i in range(len(xs) - 1):
                c = ((xs[i] + xs[i + 1]) / 2.0, (ys[j] + ys[j + 1]) / 2.0)
                inside[j, i] = point_in_polygon(poly, c, tol=0.0)
        if not inside.any():
            return []

        rects = self._full_rects(inside)
        if not rects or len(rects) > self.max_wings:
            logger.debug(f"Wing decomposition produced {len(rects)} parts; deferring to complex path")
            return []

        wings: List[Wing] = []
        for r in rects:
            x0, x1 = xs[r.i0], xs[r.i1 + 1]
            y0, y1 = ys[r.j0], ys[r.j1 + 1]
            corners_rot = [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]
            corners = tuple(rotate(p, theta) for p in corners_rot)
            w, h = x1 - x0, y1 - y0
            axis_rot = (1.0, 0.0) if w >= h else (0.0, 1.0)
            axis = rotate(axis_rot, theta)
            center = rotate(((x0 + x1) / 2.0, (y0 + y1) / 2.0), theta)
            wings.append(Wing(index=0, corners=corners, axis=axis, length=max(w, h), width=min(w, h), center=center))  # type: ignore[arg-type]

        # Larger wings first; stable tie-break on position keeps output deterministic
        wings.sort(key=lambda wg: (-round(wg.area, 6), round(wg.center[0], 6), round(wg.center[1], 6)))
        for idx, wg in enumerate(wings):
            wg.index = idx
        return wings

    def owner(self, wings: Sequence[Wing], p: XY) -> Optional[Wing]:
        """Wing whose nearest corner is closest to p; larger wings win ties."""
        best: Optional[Wing] = None
        best_d = math.inf
        for wg in wings:
            d = min(distance(c, p) for c in wg.corners)
            if d < best_d - 1e-6:
                best, best_d = wg, d
        return best


__all__ = ["Wing", "WingDecomposer", "GridRect"]
