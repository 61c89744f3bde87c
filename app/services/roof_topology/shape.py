from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from app.models.topology import BuildingShape

from ..geo_utils import XY, interior_angle, is_reflex


@dataclass
class ShapeClassification:
    shape: BuildingShape
    angles: List[float]  # interior angles, degrees
    reflex_indices: List[int]

    @property
    def vertex_count(self) -> int:
        return len(self.angles)


class ShapeClassifier:
    """
    Bucket a CCW footprint into rectangle / L / T / U / complex.

    This is a heuristic gate on vertex count and angle regularity, not a
    polygon taxonomy. Anything it cannot place goes to the complex path.
    """

    def __init__(self, angle_tolerance_deg: float = 10.0, orthogonal_ratio: float = 0.8):
        self.angle_tolerance_deg = angle_tolerance_deg
        self.orthogonal_ratio = orthogonal_ratio

    def _near(self, angle: float, target: float) -> bool:
        return abs(angle - target) <= self.angle_tolerance_deg

    def classify(self, ring: Sequence[XY]) -> ShapeClassification:
        n = len(ring)
        angles: List[float] = []
        reflex: List[int] = []
        for i in range(n):
            prev, curr, nxt = ring[i - 1], ring[i], ring[(i + 1) % n]
            angles.append(interior_angle(prev, curr, nxt))
            if is_reflex(prev, curr, nxt):
                reflex.append(i)

        shape = BuildingShape.COMPLEX
        if n == 4 and all(self._near(a, 90.0) for a in angles):
            shape = BuildingShape.RECTANGLE
        elif 6 <= n <= 12:
            orthogonal = sum(1 for a in angles if self._near(a, 90.0) or self._near(a, 270.0))
            if orthogonal / n > self.orthogonal_ratio:
                if n == 6:
                    shape = BuildingShape.L_SHAPE
                elif n == 8:
                    shape = BuildingShape.T_SHAPE
                elif n >= 10:
                    shape = BuildingShape.U_SHAPE
        return ShapeClassification(shape=shape, angles=angles, reflex_indices=reflex)


__all__ = ["ShapeClassifier", "ShapeClassification"]
