from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

import math

import numpy as np

from app.services.artifacts.wkt import linestring_wkt, polygon_wkt


Point = Tuple[float, float]  # (lng, lat) in degrees, or (x, y) in local meters


class EdgeType(str, Enum):
    RIDGE = "ridge"
    HIP = "hip"
    VALLEY = "valley"
    EAVE = "eave"
    RAKE = "rake"


class EdgeSource(str, Enum):
    SKELETON = "skeleton"
    SEGMENT = "segment"
    DSM = "dsm"
    MANUAL = "manual"


class BuildingShape(str, Enum):
    RECTANGLE = "rectangle"
    L_SHAPE = "L-shape"
    T_SHAPE = "T-shape"
    U_SHAPE = "U-shape"
    COMPLEX = "complex"


@dataclass(frozen=True)
class LinearFeature:
    id: str
    start: Point
    end: Point
    type: EdgeType
    length_ft: float
    confidence: float
    source: EdgeSource
    requires_review: bool = False

    def to_dict(self, include_wkt: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "start": [self.start[0], self.start[1]],
            "end": [self.end[0], self.end[1]],
            "type": self.type.value,
            "lengthFt": round(self.length_ft, 2),
            "confidence": round(self.confidence, 3),
            "source": self.source.value,
            "requiresReview": self.requires_review,
        }
        if include_wkt:
            out["wkt"] = linestring_wkt(self.start, self.end)
        return out


@dataclass(frozen=True)
class Facet:
    id: str
    polygon: Tuple[Point, ...]
    plan_area: float  # flat sq ft
    area: float  # pitch-adjusted sq ft
    pitch: float  # degrees
    pitch_ratio: str
    azimuth: float  # compass degrees the slope faces
    direction: str
    requires_review: bool = False
    review_reason: Optional[str] = None

    def to_dict(self, include_wkt: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "polygon": [[lng, lat] for lng, lat in self.polygon],
            "planArea": round(self.plan_area, 1),
            "area": round(self.area, 1),
            "pitch": round(self.pitch, 2),
            "pitchRatio": self.pitch_ratio,
            "azimuth": round(self.azimuth, 1),
            "direction": self.direction,
            "requiresReview": self.requires_review,
        }
        if self.review_reason:
            out["reviewReason"] = self.review_reason
        if include_wkt:
            out["wkt"] = polygon_wkt(list(self.polygon))
        return out


@dataclass(frozen=True)
class RasterBounds:
    min_lng: float
    max_lng: float
    min_lat: float
    max_lat: float

    @property
    def lng_span(self) -> float:
        return self.max_lng - self.min_lng

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat


@dataclass
class ElevationRaster:
    """DSM grid, row 0 at max_lat. Non-roof pixels are NaN once masked."""
    data: np.ndarray
    bounds: RasterBounds
    width: int
    height: int
    resolution: Optional[float] = None  # meters per pixel

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=float)
        if self.data.ndim != 2:
            raise ValueError("elevation raster data must be a 2D grid")
        if self.data.shape != (self.height, self.width):
            raise ValueError(
                f"elevation raster grid is {self.data.shape[0]}x{self.data.shape[1]} "
                f"but declared {self.height}x{self.width}"
            )
        if self.bounds.lng_span <= 0 or self.bounds.lat_span <= 0:
            raise ValueError("elevation raster bounds must have positive extent")
        if self.resolution is None:
            mid_lat = (self.bounds.min_lat + self.bounds.max_lat) / 2.0
            m_lng = self.bounds.lng_span * 111_320.0 * math.cos(math.radians(mid_lat)) / self.width
            m_lat = self.bounds.lat_span * 111_320.0 / self.height
            self.resolution = float((m_lng + m_lat) / 2.0)

    @property
    def valid_ratio(self) -> float:
        if self.data.size == 0:
            return 0.0
        return float(np.isfinite(self.data).sum()) / float(self.data.size)


@dataclass
class RoofMask:
    data: np.ndarray
    width: int
    height: int

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=bool)
        if self.data.shape != (self.height, self.width):
            raise ValueError(
                f"roof mask grid is {self.data.shape} but declared {self.height}x{self.width}"
            )


@dataclass(frozen=True)
class RoofSegment:
    """Vendor roof-segment metadata for one facet."""
    pitch_degrees: float
    azimuth_degrees: float
    area_m2: float
    center: Optional[Point] = None
    bounding_box: Optional[Tuple[Point, Point]] = None  # (sw, ne)


@dataclass(frozen=True)
class RidgeOverride:
    start: Point
    end: Point


@dataclass
class TopologyRequest:
    footprint: List[Point]
    segments: List[RoofSegment] = field(default_factory=list)
    elevation_raster: Optional[ElevationRaster] = None
    roof_mask: Optional[RoofMask] = None
    ridge_override: Optional[RidgeOverride] = None
    soffit_offset_ft: Optional[float] = None


@dataclass(frozen=True)
class TopologyResult:
    facets: Tuple[Facet, ...] = ()
    ridges: Tuple[LinearFeature, ...] = ()
    hips: Tuple[LinearFeature, ...] = ()
    valleys: Tuple[LinearFeature, ...] = ()
    eaves: Tuple[LinearFeature, ...] = ()
    rakes: Tuple[LinearFeature, ...] = ()
    roof_type: str = "unknown"
    quality_score: float = 0.0
    manual_review_recommended: bool = True
    shape: Optional[BuildingShape] = None
    footprint: Tuple[Point, ...] = ()
    warnings: Tuple[str, ...] = ()

    status: ClassVar[str] = "full"

    @property
    def facet_count(self) -> int:
        return len(self.facets)

    @property
    def is_fallback(self) -> bool:
        return self.status == "fallback"

    def totals(self) -> Dict[str, float]:
        return {
            "ridge_ft": round(sum(f.length_ft for f in self.ridges), 2),
            "hip_ft": round(sum(f.length_ft for f in self.hips), 2),
            "valley_ft": round(sum(f.length_ft for f in self.valleys), 2),
            "eave_ft": round(sum(f.length_ft for f in self.eaves), 2),
            "rake_ft": round(sum(f.length_ft for f in self.rakes), 2),
        }

    def to_dict(self, include_wkt: bool = False) -> Dict[str, Any]:
        def edges(items: Tuple[LinearFeature, ...]) -> List[Dict[str, Any]]:
            return [e.to_dict(include_wkt=include_wkt) for e in items]

        out: Dict[str, Any] = {
            "facets": [f.to_dict(include_wkt=include_wkt) for f in self.facets],
            "edges": {
                "ridges": edges(self.ridges),
                "hips": edges(self.hips),
                "valleys": edges(self.valleys),
                "eaves": edges(self.eaves),
                "rakes": edges(self.rakes),
            },
            "roofType": self.roof_type,
            "facetCount": self.facet_count,
            "qualityScore": round(self.quality_score, 3),
            "manualReviewRecommended": self.manual_review_recommended,
            "status": self.status,
            "shape": self.shape.value if self.shape else None,
            "totals": self.totals(),
            "warnings": list(self.warnings),
        }
        if include_wkt and self.footprint:
            out["footprintWkt"] = polygon_wkt(list(self.footprint))
        return out


@dataclass(frozen=True)
class FullTopology(TopologyResult):
    status: ClassVar[str] = "full"


@dataclass(frozen=True)
class FallbackTopology(TopologyResult):
    fallback_reason: str = ""

    status: ClassVar[str] = "fallback"

    @classmethod
    def empty(cls, reason: str) -> "FallbackTopology":
        return cls(roof_type="unknown", quality_score=0.0, manual_review_recommended=True, fallback_reason=reason)

    def to_dict(self, include_wkt: bool = False) -> Dict[str, Any]:
        out = super().to_dict(include_wkt=include_wkt)
        out["fallbackReason"] = self.fallback_reason
        return out


__all__ = [
    "Point",
    "EdgeType",
    "EdgeSource",
    "BuildingShape",
    "LinearFeature",
    "Facet",
    "RasterBounds",
    "ElevationRaster",
    "RoofMask",
    "RoofSegment",
    "RidgeOverride",
    "TopologyRequest",
    "TopologyResult",
    "FullTopology",
    "FallbackTopology",
]
