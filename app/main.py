import logging
import math
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import numpy as np
import uvicorn

from app.middleware.request_id import add_request_id_middleware
from app.models.topology import (
    ElevationRaster,
    RasterBounds,
    RidgeOverride,
    RoofMask,
    RoofSegment,
    TopologyRequest,
)
from app.services.artifacts.geojson_writer import topology_to_feature_collection
from app.services.roof_topology import RoofTopologyEngine
from app.settings import get_settings

SETTINGS = get_settings()
logging.basicConfig(level=SETTINGS.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Roof Topology Service",
    description="Infers ridge/hip/valley/eave/rake lines and pitched facets from building footprints",
    version="1.0.0"
)

# Register request ID middleware
add_request_id_middleware(app, log_requests=SETTINGS.enable_request_id_logging)

# CORS middleware (configurable via CORS_ALLOW_ORIGINS, comma-separated)
allow_origins = SETTINGS.cors_allow_origins or [
    "http://localhost:3000",
    "http://localhost:8081",
    "http://127.0.0.1:8081",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],  # includes OPTIONS
    allow_headers=["*"],
)

engine = RoofTopologyEngine(SETTINGS.topology_config())


# Request models mirror the camelCase JSON contract

class RasterBoundsModel(BaseModel):
    minLng: float
    maxLng: float
    minLat: float
    maxLat: float


class ElevationRasterModel(BaseModel):
    data: List[List[Optional[float]]] = Field(..., description="Row-major elevations, row 0 at maxLat; null = no data")
    bounds: RasterBoundsModel
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    resolution: Optional[float] = Field(None, gt=0, description="Meters per pixel; derived from bounds when omitted")


class RoofMaskModel(BaseModel):
    data: List[List[bool]]
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class BoundingBoxModel(BaseModel):
    sw: List[float] = Field(..., min_length=2, max_length=2, description="[lng, lat]")
    ne: List[float] = Field(..., min_length=2, max_length=2, description="[lng, lat]")


class SegmentModel(BaseModel):
    pitchDegrees: float = Field(..., ge=0, lt=90)
    azimuthDegrees: float = Field(..., ge=0, le=360)
    areaM2: float = Field(..., gt=0)
    center: Optional[List[float]] = Field(None, min_length=2, max_length=2, description="[lng, lat]")
    boundingBox: Optional[BoundingBoxModel] = None


class RidgeOverrideModel(BaseModel):
    start: List[float] = Field(..., min_length=2, max_length=2)
    end: List[float] = Field(..., min_length=2, max_length=2)


class TopologyRequestModel(BaseModel):
    footprint: List[List[float]] = Field(..., description="Ring of [lng, lat]; closed or auto-closed")
    segments: Optional[List[SegmentModel]] = None
    elevationRaster: Optional[ElevationRasterModel] = None
    roofMask: Optional[RoofMaskModel] = None
    ridgeOverride: Optional[RidgeOverrideModel] = None
    soffitOffsetFt: Optional[float] = Field(None, ge=0, le=10)


def _lnglat(values: List[float]) -> tuple:
    lng, lat = float(values[0]), float(values[1])
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValueError("coordinates must be finite")
    return (lng, lat)


def to_engine_request(req: TopologyRequestModel) -> TopologyRequest:
    """Convert the API payload into the engine's plain-value request. Raises ValueError on bad shapes."""
    segments = []
    for s in req.segments or []:
        bbox = None
        if s.boundingBox is not None:
            bbox = (_lnglat(s.boundingBox.sw), _lnglat(s.boundingBox.ne))
        segments.append(RoofSegment(
            pitch_degrees=s.pitchDegrees,
            azimuth_degrees=s.azimuthDegrees,
            area_m2=s.areaM2,
            center=_lnglat(s.center) if s.center is not None else None,
            bounding_box=bbox,
        ))

    raster = None
    if req.elevationRaster is not None:
        r = req.elevationRaster
        rows = [[np.nan if v is None else v for v in row] for row in r.data]
        if any(len(row) != r.width for row in rows):
            raise ValueError("elevationRaster rows must all have `width` values")
        raster = ElevationRaster(
            data=np.array(rows, dtype=float),
            bounds=RasterBounds(min_lng=r.bounds.minLng, max_lng=r.bounds.maxLng,
                                min_lat=r.bounds.minLat, max_lat=r.bounds.maxLat),
            width=r.width,
            height=r.height,
            resolution=r.resolution,
        )

    mask = None
    if req.roofMask is not None:
        if any(len(row) != req.roofMask.width for row in req.roofMask.data):
            raise ValueError("roofMask rows must all have `width` values")
        mask = RoofMask(data=np.array(req.roofMask.data, dtype=bool), width=req.roofMask.width, height=req.roofMask.height)

    override = None
    if req.ridgeOverride is not None:
        override = RidgeOverride(start=_lnglat(req.ridgeOverride.start), end=_lnglat(req.ridgeOverride.end))

    return TopologyRequest(
        footprint=[tuple(p) for p in req.footprint],
        segments=segments,
        elevation_raster=raster,
        roof_mask=mask,
        ridge_override=override,
        soffit_offset_ft=req.soffitOffsetFt,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "roof-topology"}


@app.post("/topology")
async def infer_topology(req: TopologyRequestModel, include_wkt: bool = False):
    """
    Infer roof topology for one footprint.

    Returns facets, ridge/hip/valley/eave/rake lines, roof type and a quality
    score. Geometry problems never fail the request; they lower the score and
    set manualReviewRecommended. Pass include_wkt=true for WKT geometry.
    """
    try:
        result = engine.infer(to_engine_request(req))
        return result.to_dict(include_wkt=include_wkt)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Topology inference failed")
        raise HTTPException(status_code=500, detail=f"topology failed: {str(e)}")


@app.post("/topology/geojson")
async def infer_topology_geojson(req: TopologyRequestModel):
    """Same inference as /topology, returned as a GeoJSON FeatureCollection."""
    try:
        result = engine.infer(to_engine_request(req))
        return topology_to_feature_collection(result)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Topology GeoJSON export failed")
        raise HTTPException(status_code=500, detail=f"topology geojson failed: {str(e)}")


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "Roof Topology Service",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "topology": "/topology",
            "geojson": "/topology/geojson",
        },
    }


def run() -> None:
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port, log_level=SETTINGS.log_level.lower())


if __name__ == "__main__":
    run()
