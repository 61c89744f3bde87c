from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from app.models.topology import BuildingShape, ElevationRaster, Facet, Point, RoofMask, RoofSegment

from ..geo_utils import (
    XY,
    SQFT_PER_M2,
    LocalProjection,
    bearing_degrees,
    compass_direction,
    cross,
    centroid,
    midpoint,
    normalize,
    signed_area,
)
from .config import TopologyConfig
from .dsm_refiner import DSMRefiner

logger = logging.getLogger(__name__)


def degrees_to_pitch_ratio(pitch_deg: float) -> str:
    """Rise-over-12 label such as "6/12"; anything under 2 degrees is "flat"."""
    if pitch_deg < 2.0:
        return "flat"
    rise = round(math.tan(math.radians(pitch_deg)) * 12.0)
    return f"{rise}/12"


def pitch_factor(rise: float, run: float = 12.0) -> float:
    """Sloped-to-plan area multiplier for a rise/run pitch."""
    if run <= 0:
        raise ValueError("run must be positive")
    return math.sqrt(rise * rise + run * run) / run


def facet_id(index: int) -> str:
    return chr(ord("A") + index) if index < 26 else f"F{index + 1}"


@dataclass
class FacetSplit:
    facets: List[Facet] = field(default_factory=list)
    method: str = "none"  # segments | rectangle | none
    manual_review: bool = True


class FacetSplitter:
    """
    Partition the roof into pitched facets.

    Vendor segments are used directly when present. A plain rectangle with a
    single ridge is split along it. Anything else returns no facets so that
    ambiguous footprints never produce fabricated areas.
    """

    def __init__(self, config: Optional[TopologyConfig] = None, dsm: Optional[DSMRefiner] = None):
        self.config = config or TopologyConfig()
        self.dsm = dsm or DSMRefiner(self.config)

    def split(self, footprint_ll: Sequence[Point], projection: LocalProjection, shape: Optional[BuildingShape],
              ridges: Sequence[tuple], valley_count: int, segments: Sequence[RoofSegment] = (),
              raster: Optional[ElevationRaster] = None, mask: Optional[RoofMask] = None) -> FacetSplit:
        if segments:
            return FacetSplit(facets=self.from_segments(segments, footprint_ll), method="segments", manual_review=False)
        if shape == BuildingShape.RECTANGLE and len(footprint_ll) == 4 and len(ridges) == 1 and valley_count == 0:
            facets = self.split_rectangle(footprint_ll, ridges[0], projection, raster, mask)
            if facets:
                return FacetSplit(facets=facets, method="rectangle", manual_review=True)
        logger.info("No reliable facet partition for this footprint; returning zero facets for manual review")
        return FacetSplit()

    def from_segments(self, segments: Sequence[RoofSegment], footprint_ll: Sequence[Point]) -> List[Facet]:
        facets: List[Facet] = []
        for i, s in enumerate(segments):
            pitch = float(s.pitch_degrees)
            area = float(s.area_m2) * SQFT_PER_M2
            plan = area * math.cos(math.radians(pitch))
            reason = None
            if s.bounding_box is not None:
                sw, ne = s.bounding_box
                polygon = ((sw[0], sw[1]), (ne[0], sw[1]), (ne[0], ne[1]), (sw[0], ne[1]))
            else:
                polygon = tuple(footprint_ll)
                reason = "segment has no bounding box; polygon approximated by footprint"
            azimuth = float(s.azimuth_degrees) % 360.0
            facets.append(Facet(
                id=facet_id(i),
                polygon=polygon,
                plan_area=plan,
                area=area,
                pitch=pitch,
                pitch_ratio=degrees_to_pitch_ratio(pitch),
                azimuth=azimuth,
                direction=compass_direction(azimuth),
                requires_review=reason is not None,
                review_reason=reason,
            ))
        return facets

    def split_rectangle(self, footprint_ll: Sequence[Point], ridge: tuple, projection: LocalProjection,
                        raster: Optional[ElevationRaster] = None, mask: Optional[RoofMask] = None) -> List[Facet]:
        ring = projection.ring_to_local(footprint_ll)
        r0, r1 = projection.to_local(ridge[0]), projection.to_local(ridge[1])
        direction = normalize((r1[0] - r0[0], r1[1] - r0[1]))
        if direction is None:
            return []
        mid = midpoint(r0, r1)
        left: List[XY] = []
        right: List[XY] = []
        for v in ring:
            side = cross(direction, (v[0] - mid[0], v[1] - mid[1]))
            (left if side > 0 else right).append(v)
        if len(left) != 2 or len(right) != 2:
            logger.debug("Ridge does not split the rectangle two-and-two; skipping facet split")
            return []

        half_width = sum(abs(cross(direction, (v[0] - mid[0], v[1] - mid[1]))) for v in ring) / 4.0
        if half_width <= 0:
            return []
        rise = self.config.assumed_rise_ratio * 2.0 * half_width
        width_pitch = math.degrees(math.atan2(rise, half_width))

        facets: List[Facet] = []
        for k, group in enumerate((left, right)):
            pts = group + [r0, r1]
            c = centroid(pts)
            pts.sort(key=lambda p: math.atan2(p[1] - c[1], p[0] - c[0]))
            polygon_ll = tuple(projection.to_lonlat(p) for p in pts)
            plan = abs(signed_area(pts)) * SQFT_PER_M2
            outward = (-direction[1], direction[0]) if k == 0 else (direction[1], -direction[0])
            azimuth = bearing_degrees(outward)

            pitch = width_pitch
            area = plan * pitch_factor(rise, half_width)
            reason = "pitch estimated from building width"
            if raster is not None:
                fit = self.dsm.estimate_pitch(raster, polygon_ll, mask)
                if fit is not None and fit.pitch_deg > 0:
                    pitch = fit.pitch_deg
                    area = plan / math.cos(math.radians(pitch))
                    reason = "pitch from DSM plane fit; facet outline split geometrically"
            facets.append(Facet(
                id=facet_id(k),
                polygon=polygon_ll,
                plan_area=plan,
                area=area,
                pitch=pitch,
                pitch_ratio=degrees_to_pitch_ratio(pitch),
                azimuth=azimuth,
                direction=compass_direction(azimuth),
                requires_review=True,
                review_reason=reason,
            ))
        return facets


__all__ = ["FacetSplitter", "FacetSplit", "degrees_to_pitch_ratio", "pitch_factor", "facet_id"]
