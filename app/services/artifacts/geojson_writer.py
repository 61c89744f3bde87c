from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from app.models.topology import LinearFeature, TopologyResult
from app.services.artifacts.wkt import _ensure_ring_closed


def _clip_lon_lat(lon: float, lat: float) -> Tuple[float, float]:
    lon_c = float(min(180.0, max(-180.0, lon)))
    lat_c = float(min(90.0, max(-90.0, lat)))
    return lon_c, lat_c


def _polygon_feature_2d(ring_ll: List[Tuple[float, float]], props: Dict[str, Any]) -> Dict[str, Any]:
    ring_ll = [_clip_lon_lat(lon, lat) for lon, lat in ring_ll]
    ring_ll = _ensure_ring_closed(ring_ll)
    return {
        "type": "Feature",
        "geometry": {"type": "Polygon", "coordinates": [[list(coord) for coord in ring_ll]]},
        "properties": props,
    }


def _line_feature_2d(edge: LinearFeature) -> Dict[str, Any]:
    a_c = _clip_lon_lat(*edge.start)
    b_c = _clip_lon_lat(*edge.end)
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": [[a_c[0], a_c[1]], [b_c[0], b_c[1]]]},
        "properties": {
            "kind": edge.type.value,
            "id": edge.id,
            "length_ft": round(edge.length_ft, 2),
            "confidence": round(edge.confidence, 3),
            "source": edge.source.value,
            "requires_review": edge.requires_review,
        },
    }


def topology_to_feature_collection(result: TopologyResult) -> Dict[str, Any]:
    feats: List[Dict[str, Any]] = []

    # Working (offset) footprint
    if result.footprint:
        feats.append(_polygon_feature_2d(list(result.footprint), {
            "kind": "footprint",
            "shape": result.shape.value if result.shape else None,
            "roof_type": result.roof_type,
        }))

    for facet in result.facets:
        props = {
            "kind": "facet",
            "id": facet.id,
            "pitch_deg": float(facet.pitch),
            "pitch_ratio": facet.pitch_ratio,
            "azimuth_deg": float(facet.azimuth),
            "direction": facet.direction,
            "plan_area_sqft": float(facet.plan_area),
            "area_sqft": float(facet.area),
            "requires_review": facet.requires_review,
        }
        if facet.review_reason:
            props["review_reason"] = facet.review_reason
        feats.append(_polygon_feature_2d(list(facet.polygon), props))

    for group in (result.ridges, result.hips, result.valleys, result.eaves, result.rakes):
        for edge in group:
            feats.append(_line_feature_2d(edge))

    return {
        "type": "FeatureCollection",
        "features": feats,
        "properties": {
            "status": result.status,
            "quality_score": result.quality_score,
            "manual_review_recommended": result.manual_review_recommended,
            "totals": result.totals(),
        },
    }


def write_geojson(result: TopologyResult, out_dir: Optional[str] = None, filename: str = "roof_topology") -> str:
    """
    Write the topology as a GeoJSON FeatureCollection.
    Returns the local path to the written file.
    """
    out = topology_to_feature_collection(result)
    base_dir = Path(out_dir or os.getenv("ARTIFACT_DIR", "./artifacts"))
    base_dir.mkdir(parents=True, exist_ok=True)
    path = base_dir / f"{filename}.geojson"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(out, f, ensure_ascii=False, indent=2)
    return str(path)


__all__ = ["write_geojson", "topology_to_feature_collection"]
