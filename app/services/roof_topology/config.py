from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TopologyConfig:
    """Tunable constants of the topology engine.

    Defaults are empirically tuned for typical residential proportions.
    """
    # Footprint preprocessing
    soffit_offset_ft: float = 1.0
    max_offset_factor: float = 2.0
    collinear_tolerance_deg: float = 1.0

    # Shape classification
    right_angle_tolerance_deg: float = 10.0
    orthogonal_ratio: float = 0.8

    # Skeleton construction
    rectangle_fallback_inset: float = 0.30
    wing_ridge_inset: float = 0.20
    complex_ridge_inset: float = 0.25
    min_feature_ft: float = 3.0
    max_wings: int = 6

    # Validation
    max_ridge_ratio: float = 0.8
    snap_radius_m: float = 3.0

    # Boundary classification
    eave_dot_threshold: float = 0.5
    hip_corner_radius_m: float = 0.5
    min_perimeter_edge_ft: float = 2.0
    fallback_eave_ratio: float = 0.7

    # Segment topology
    ridge_angle_tolerance_deg: float = 30.0
    hip_angle_tolerance_deg: float = 30.0
    adjacency_factor: float = 1.5
    ridge_length_ratio: float = 0.75
    default_ridge_ratio: float = 0.7
    hip_length_factor: float = 1.4
    hip_area_factor: float = 1.2
    facet_offset_m: float = 5.0
    flat_pitch_deg: float = 5.0

    # DSM refinement
    dsm_samples: int = 10
    dsm_peak_band: float = 0.10
    dsm_agreement_ratio: float = 0.7
    dsm_snap_radius_px: int = 3
    dsm_snap_endpoints: bool = True
    dsm_min_relief_m: float = 0.1
    no_raster_confidence: float = 0.6
    min_line_px: int = 5

    # Facets and scoring
    assumed_rise_ratio: float = 0.25
    boundary_confidence: float = 0.85
    segment_confidence: float = 0.85
    review_threshold: float = 0.5
    validator_penalty: float = 0.05
    max_validator_penalty: float = 0.3
    no_facet_quality_cap: float = 0.3
    fallback_quality_cap: float = 0.25


__all__ = ["TopologyConfig"]
