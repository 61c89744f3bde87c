from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from app.models.topology import (
    BuildingShape,
    EdgeSource,
    EdgeType,
    FallbackTopology,
    FullTopology,
    LinearFeature,
    Point,
    TopologyRequest,
    TopologyResult,
)

from ..geo_utils import XY, LocalProjection, distance, ft_to_m, m_to_ft
from .boundary import BoundaryClassifier
from .config import TopologyConfig
from .dsm_refiner import DSMRefiner
from .facets import FacetSplitter
from .footprint import normalize_ring, offset_ring, validate_footprint
from .segments import SegmentTopologyAnalyzer
from .shape import ShapeClassifier
from .skeleton import SkeletonBuilder, SkeletonEdge
from .validator import TopologyValidator

logger = logging.getLogger(__name__)

ID_PREFIX: Dict[EdgeType, str] = {
    EdgeType.RIDGE: "R",
    EdgeType.HIP: "H",
    EdgeType.VALLEY: "V",
    EdgeType.EAVE: "E",
    EdgeType.RAKE: "K",
}


def _check_footprint(points: Sequence[Sequence[float]]) -> List[Point]:
    out: List[Point] = []
    for p in points:
        if len(p) != 2:
            raise ValueError("footprint coordinates must be [lng, lat] pairs")
        lng, lat = float(p[0]), float(p[1])
        if not (math.isfinite(lng) and math.isfinite(lat)):
            raise ValueError("footprint coordinates must be finite")
        if not (-180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0):
            raise ValueError(f"footprint coordinate out of range: [{lng}, {lat}]")
        out.append((lng, lat))
    return out


def infer_skeleton_roof_type(shape: Optional[BuildingShape], ridges: int, hips: int, valleys: int) -> str:
    if shape is None:
        return "unknown"
    if shape == BuildingShape.COMPLEX:
        return "complex"
    if valleys > 0 or ridges >= 2:
        return "cross_gable"
    if ridges == 1 and hips >= 2:
        return "hip"
    if ridges == 1:
        return "gable"
    if hips >= 3:
        return "pyramid"
    return "unknown"


class RoofTopologyEngine:
    """
    Roof topology inference from a footprint and optional vendor/DSM inputs.

    footprint -> offset -> shape class -> skeleton -> validation -> eave/rake,
    with segment-derived lines replacing skeleton ridges/hips/valleys when
    vendor segments are present, DSM refinement of confidences, and a facet
    split. The engine holds no per-call state; identical requests produce
    identical results.
    """

    def __init__(self, config: Optional[TopologyConfig] = None):
        self.config = config or TopologyConfig()
        cfg = self.config
        self.classifier = ShapeClassifier(cfg.right_angle_tolerance_deg, cfg.orthogonal_ratio)
        self.skeleton_builder = SkeletonBuilder(cfg)
        self.validator = TopologyValidator(cfg)
        self.boundary = BoundaryClassifier(cfg)
        self.segment_analyzer = SegmentTopologyAnalyzer(cfg)
        self.dsm = DSMRefiner(cfg)
        self.facet_splitter = FacetSplitter(cfg, dsm=self.dsm)

    def _feature(self, proj: LocalProjection, a: XY, b: XY, edge_type: EdgeType, source: EdgeSource,
                 confidence: float, review: bool = False) -> LinearFeature:
        return LinearFeature(
            id="",
            start=proj.to_lonlat(a),
            end=proj.to_lonlat(b),
            type=edge_type,
            length_ft=m_to_ft(distance(a, b)),
            confidence=confidence,
            source=source,
            requires_review=review,
        )

    def _with_ids(self, features: Sequence[LinearFeature]) -> Tuple[LinearFeature, ...]:
        return tuple(replace(f, id=f"{ID_PREFIX[f.type]}{i}") for i, f in enumerate(features))

    def infer(self, request: TopologyRequest) -> TopologyResult:
        cfg = self.config
        footprint = _check_footprint(request.footprint)
        distinct = list(dict.fromkeys(footprint))
        if len(distinct) < 3:
            logger.info(f"Footprint has {len(distinct)} distinct vertices; returning empty topology")
            return FallbackTopology.empty("footprint has fewer than 3 distinct vertices")

        proj = LocalProjection.from_points(distinct)
        ring = normalize_ring(proj.ring_to_local(footprint), cfg.collinear_tolerance_deg)
        if len(ring) < 3:
            logger.info("Footprint collapses to fewer than 3 vertices after normalization")
            return FallbackTopology.empty("footprint is degenerate after removing repeated or collinear vertices")

        qa = validate_footprint(ring)
        warnings: List[str] = list(qa.warnings)
        offset_ft = cfg.soffit_offset_ft if request.soffit_offset_ft is None else request.soffit_offset_ft
        working = offset_ring(ring, ft_to_m(max(0.0, offset_ft)), cfg.max_offset_factor)
        working_ll = proj.ring_to_lonlat(working)

        override = None
        if request.ridge_override is not None:
            override = (proj.to_local(request.ridge_override.start), proj.to_local(request.ridge_override.end))

        shape: Optional[BuildingShape] = None
        skeleton_edges: List[SkeletonEdge] = []
        removed = 0
        fallback_reason: Optional[str] = None
        try:
            classification = self.classifier.classify(working)
            shape = classification.shape
            skeleton = self.skeleton_builder.build(working, classification)
            skeleton_edges, report = self.validator.validate(working, skeleton.edges)
            removed = report.removed
            warnings.extend(report.warnings)
            warnings.extend(report.errors)
            boundary = self.boundary.classify(working, skeleton_edges, override)
        except Exception as e:
            logger.warning(f"Skeleton construction failed; using perimeter-only classification: {e}", exc_info=True)
            fallback_reason = f"skeleton construction failed: {e}"
            skeleton_edges = []
            boundary = self.boundary.classify_perimeter_only(working)

        is_fallback = fallback_reason is not None
        boundary_source = EdgeSource.MANUAL if boundary.used_override else EdgeSource.SKELETON
        boundary_conf = 0.5 if is_fallback else cfg.boundary_confidence
        eaves = [self._feature(proj, a, b, EdgeType.EAVE, boundary_source, boundary_conf, is_fallback)
                 for a, b in boundary.eaves]
        rakes = [self._feature(proj, a, b, EdgeType.RAKE, boundary_source, boundary_conf, is_fallback)
                 for a, b in boundary.rakes]

        if request.segments:
            seg = self.segment_analyzer.analyze(request.segments, working_ll, proj)
            lines = [
                LinearFeature(id="", start=line.start, end=line.end, type=line.type, length_ft=m_to_ft(line.length_m),
                              confidence=cfg.segment_confidence, source=EdgeSource.SEGMENT)
                for line in seg.ridges + seg.hips + seg.valleys
            ]
            roof_type = seg.roof_type
        else:
            lines = [self._feature(proj, e.start, e.end, e.type, EdgeSource.SKELETON, cfg.no_raster_confidence)
                     for e in skeleton_edges]
            counts = {t: sum(1 for e in skeleton_edges if e.type == t) for t in (EdgeType.RIDGE, EdgeType.HIP, EdgeType.VALLEY)}
            roof_type = infer_skeleton_roof_type(shape, counts[EdgeType.RIDGE], counts[EdgeType.HIP], counts[EdgeType.VALLEY])

        raster = request.elevation_raster
        refined = self.dsm.refine(lines, raster, request.roof_mask, working_ll, proj)
        ridges = [f for f in refined.features if f.type == EdgeType.RIDGE]
        hips = [f for f in refined.features if f.type == EdgeType.HIP]
        valleys = [f for f in refined.features if f.type == EdgeType.VALLEY]

        if raster is not None and not ridges:
            candidates = [ln for ln in self.dsm.detect_ridge_lines(raster, request.roof_mask) if ln.type == EdgeType.RIDGE]
            if candidates:
                warnings.append(f"DSM shows {len(candidates)} ridge line candidates but no ridge was inferred")

        split = self.facet_splitter.split(
            working_ll, proj, shape, [(r.start, r.end) for r in ridges], len(valleys),
            segments=request.segments, raster=raster, mask=request.roof_mask,
        )

        confidences = [f.confidence for f in ridges + hips + valleys]
        if raster is not None:
            score = refined.quality_score
        else:
            score = sum(confidences) / len(confidences) if confidences else 0.5
        score -= min(cfg.max_validator_penalty, cfg.validator_penalty * removed)
        if not split.facets:
            score = min(score, cfg.no_facet_quality_cap)
        if is_fallback:
            score = min(score, cfg.fallback_quality_cap)
        score = round(max(0.0, min(1.0, score)), 3)

        manual = (
            is_fallback
            or not split.facets
            or any(f.requires_review for f in split.facets)
            or score < cfg.review_threshold
        )

        fields = dict(
            facets=tuple(split.facets),
            ridges=self._with_ids(ridges),
            hips=self._with_ids(hips),
            valleys=self._with_ids(valleys),
            eaves=self._with_ids(eaves),
            rakes=self._with_ids(rakes),
            roof_type=roof_type,
            quality_score=score,
            manual_review_recommended=manual,
            shape=shape,
            footprint=tuple(working_ll),
            warnings=tuple(warnings),
        )
        logger.info(
            f"Topology {shape.value if shape else 'unknown'} roof={roof_type} ridges={len(ridges)} hips={len(hips)} "
            f"valleys={len(valleys)} facets={len(split.facets)} quality={score} fallback={is_fallback}"
        )
        if is_fallback:
            return FallbackTopology(fallback_reason=fallback_reason or "", **fields)
        return FullTopology(**fields)


def infer_topology(request: TopologyRequest, config: Optional[TopologyConfig] = None) -> TopologyResult:
    return RoofTopologyEngine(config).infer(request)


__all__ = ["RoofTopologyEngine", "infer_topology", "infer_skeleton_roof_type"]
