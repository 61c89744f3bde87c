from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import shapely

from app.models.topology import EdgeSource, EdgeType, ElevationRaster, LinearFeature, Point, RoofMask

from ..elevation_augment import PlaneFitResult, _bilinear_sample, apply_mask, fit_plane, window_stats
from ..geo_utils import LocalProjection, m_to_ft, point_in_polygon, to_polygon
from .config import TopologyConfig

logger = logging.getLogger(__name__)


@dataclass
class RefinementResult:
    features: List[LinearFeature]
    quality_score: float
    snapped: int = 0


@dataclass
class DSMLine:
    start: Point
    end: Point
    type: EdgeType  # ridge or valley
    length_px: int
    mean_elevation: float


@dataclass
class EdgeScore:
    confidence: float
    requires_review: bool
    samples: List[float] = field(default_factory=list)


class DSMRefiner:
    """
    Validate ridge/hip/valley lines against a DSM raster.

    Each edge is sampled along its length and compared with the elevation
    extremes of the window around it: ridges should sit near the local
    maximum, valleys near the local minimum, hips should slope monotonically.
    Ridge endpoints can be nudged onto the local maximum. Without a raster
    every edge gets a flat default confidence and is flagged for review.
    """

    def __init__(self, config: Optional[TopologyConfig] = None):
        self.config = config or TopologyConfig()

    # Raster addressing ------------------------------------------------------------

    def apply_roof_mask(self, raster: ElevationRaster, mask: Optional[RoofMask]) -> ElevationRaster:
        if mask is None:
            return raster
        return ElevationRaster(data=apply_mask(raster.data, mask.data), bounds=raster.bounds,
                               width=raster.width, height=raster.height, resolution=raster.resolution)

    def to_pixel(self, raster: ElevationRaster, p: Point) -> Tuple[float, float]:
        """Continuous (x, y) pixel coordinates; integer part is the pixel index."""
        b = raster.bounds
        x = (p[0] - b.min_lng) / b.lng_span * raster.width
        y = (b.max_lat - p[1]) / b.lat_span * raster.height
        return x, y

    def pixel_index(self, raster: ElevationRaster, p: Point) -> Optional[Tuple[int, int]]:
        x, y = self.to_pixel(raster, p)
        xi, yi = int(math.floor(x)), int(math.floor(y))
        if 0 <= xi < raster.width and 0 <= yi < raster.height:
            return xi, yi
        return None

    def pixel_center(self, raster: ElevationRaster, xi: int, yi: int) -> Point:
        b = raster.bounds
        return (b.min_lng + (xi + 0.5) / raster.width * b.lng_span,
                b.max_lat - (yi + 0.5) / raster.height * b.lat_span)

    def elevation_at(self, raster: ElevationRaster, p: Point) -> float:
        x, y = self.to_pixel(raster, p)
        return _bilinear_sample(raster.data, y - 0.5, x - 0.5)

    def sample_line(self, raster: ElevationRaster, a: Point, b: Point, n: Optional[int] = None) -> np.ndarray:
        n = n or self.config.dsm_samples
        ts = np.linspace(0.0, 1.0, max(2, n))
        return np.array([self.elevation_at(raster, (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)) for t in ts])

    def _window(self, raster: ElevationRaster, a: Point, b: Point) -> np.ndarray:
        r = self.config.dsm_snap_radius_px
        xa, ya = self.to_pixel(raster, a)
        xb, yb = self.to_pixel(raster, b)
        x0 = max(0, int(math.floor(min(xa, xb))) - r)
        x1 = min(raster.width - 1, int(math.floor(max(xa, xb))) + r)
        y0 = max(0, int(math.floor(min(ya, yb))) - r)
        y1 = min(raster.height - 1, int(math.floor(max(ya, yb))) + r)
        if x1 < x0 or y1 < y0:
            return np.empty((0, 0))
        return raster.data[y0:y1 + 1, x0:x1 + 1]

    # Scoring ----------------------------------------------------------------------

    def score_edge(self, raster: ElevationRaster, feature: LinearFeature) -> EdgeScore:
        cfg = self.config
        samples = self.sample_line(raster, feature.start, feature.end)
        valid = samples[np.isfinite(samples)]
        if valid.size < 3:
            return EdgeScore(confidence=0.5, requires_review=True, samples=[float(v) for v in samples])

        frac = 0.0
        if feature.type in (EdgeType.RIDGE, EdgeType.VALLEY):
            stats = window_stats(self._window(raster, feature.start, feature.end))
            rng = stats["range"]
            if rng >= cfg.dsm_min_relief_m:
                band = cfg.dsm_peak_band * rng
                if feature.type == EdgeType.RIDGE:
                    frac = float(np.count_nonzero(valid >= stats["max"] - band)) / valid.size
                else:
                    frac = float(np.count_nonzero(valid <= stats["min"] + band)) / valid.size
        elif feature.type == EdgeType.HIP:
            overall = float(valid[-1] - valid[0])
            if abs(overall) >= cfg.dsm_min_relief_m:
                steps = np.diff(valid)
                frac = float(np.count_nonzero(np.sign(steps) == np.sign(overall))) / max(1, steps.size)
        else:
            return EdgeScore(confidence=feature.confidence, requires_review=feature.requires_review)

        confidence = min(0.95, 0.5 + 0.45 * frac)
        return EdgeScore(confidence=confidence, requires_review=frac < cfg.dsm_agreement_ratio,
                         samples=[float(v) for v in samples])

    # Snapping ---------------------------------------------------------------------

    def snap_to_extremum(self, raster: ElevationRaster, p: Point, find_max: bool = True) -> Optional[Point]:
        """Pixel center of the extremum within the search radius, if it beats p itself."""
        idx = self.pixel_index(raster, p)
        if idx is None:
            return None
        xi, yi = idx
        r = self.config.dsm_snap_radius_px
        y0, y1 = max(0, yi - r), min(raster.height, yi + r + 1)
        x0, x1 = max(0, xi - r), min(raster.width, xi + r + 1)
        win = raster.data[y0:y1, x0:x1]
        if not np.isfinite(win).any():
            return None
        flat = np.nanargmax(win) if find_max else np.nanargmin(win)
        wy, wx = np.unravel_index(int(flat), win.shape)
        best = float(win[wy, wx])
        here = self.elevation_at(raster, p)
        if math.isfinite(here) and (best <= here if find_max else best >= here):
            return None
        return self.pixel_center(raster, x0 + int(wx), y0 + int(wy))

    def _snap_ridges(self, raster: ElevationRaster, features: Sequence[LinearFeature],
                     polygon_ll: Optional[Sequence[Point]]) -> Dict[Point, Point]:
        poly = to_polygon(polygon_ll) if polygon_ll and len(polygon_ll) >= 3 else None
        moves: Dict[Point, Point] = {}
        for f in features:
            if f.type != EdgeType.RIDGE:
                continue
            new_ends = []
            for p in (f.start, f.end):
                if p in moves:
                    new_ends.append(moves[p])
                    continue
                q = self.snap_to_extremum(raster, p, find_max=True)
                if q is not None and poly is not None and not point_in_polygon(poly, q, tol=1e-9):
                    q = None
                new_ends.append(q if q is not None else p)
            if new_ends[0] == new_ends[1]:
                # Snapping would collapse the ridge
                continue
            for old, new in zip((f.start, f.end), new_ends):
                if old != new and old not in moves:
                    moves[old] = new
        return moves

    # Public -----------------------------------------------------------------------

    def refine(self, features: Sequence[LinearFeature], raster: Optional[ElevationRaster] = None,
               mask: Optional[RoofMask] = None, polygon_ll: Optional[Sequence[Point]] = None,
               projection: Optional[LocalProjection] = None) -> RefinementResult:
        cfg = self.config
        if raster is None:
            out = [replace(f, confidence=cfg.no_raster_confidence, requires_review=True) for f in features]
            return RefinementResult(features=out, quality_score=0.0)

        raster = self.apply_roof_mask(raster, mask)
        moves: Dict[Point, Point] = {}
        if cfg.dsm_snap_endpoints:
            moves = self._snap_ridges(raster, features, polygon_ll)
        if moves:
            logger.debug(f"DSM snapped {len(moves)} ridge endpoints")

        out: List[LinearFeature] = []
        for f in features:
            start = moves.get(f.start, f.start)
            end = moves.get(f.end, f.end)
            if start == end:
                continue
            if (start, end) != (f.start, f.end):
                proj = projection or LocalProjection.from_points([start, end])
                f = replace(f, start=start, end=end, source=EdgeSource.DSM,
                            length_ft=m_to_ft(proj.degrees_to_meters(start, end)))
            score = self.score_edge(raster, f)
            out.append(replace(f, confidence=score.confidence, requires_review=score.requires_review))

        confidences = [f.confidence for f in out]
        mean_conf = sum(confidences) / len(confidences) if confidences else 0.5
        quality = max(0.0, min(1.0, mean_conf * raster.valid_ratio))
        return RefinementResult(features=out, quality_score=quality, snapped=len(moves))

    def estimate_pitch(self, raster: ElevationRaster, polygon_ll: Sequence[Point],
                       mask: Optional[RoofMask] = None, min_pixels: int = 6) -> Optional[PlaneFitResult]:
        """Plane fit over the raster pixels whose centers fall inside the polygon."""
        raster = self.apply_roof_mask(raster, mask)
        if len(polygon_ll) < 3:
            return None
        poly = to_polygon(polygon_ll)
        select = np.zeros((raster.height, raster.width), dtype=bool)
        xs = [self.to_pixel(raster, p)[0] for p in polygon_ll]
        ys = [self.to_pixel(raster, p)[1] for p in polygon_ll]
        x0, x1 = max(0, int(min(xs))), min(raster.width, int(max(xs)) + 1)
        y0, y1 = max(0, int(min(ys))), min(raster.height, int(max(ys)) + 1)
        b = raster.bounds
        if x1 > x0 and y1 > y0:
            xi, yi = np.meshgrid(np.arange(x0, x1), np.arange(y0, y1))
            lngs = b.min_lng + (xi + 0.5) / raster.width * b.lng_span
            lats = b.max_lat - (yi + 0.5) / raster.height * b.lat_span
            select[y0:y1, x0:x1] = shapely.intersects_xy(poly, lngs, lats)
        mid_lat = (b.min_lat + b.max_lat) / 2.0
        dx_m = b.lng_span / raster.width * 111_320.0 * math.cos(math.radians(mid_lat))
        dy_m = b.lat_span / raster.height * 111_320.0
        fit = fit_plane(raster.data, select, dx_m, dy_m)
        if fit is None or fit.pixel_count < min_pixels:
            return None
        return fit

    def detect_ridge_lines(self, raster: ElevationRaster, mask: Optional[RoofMask] = None) -> List[DSMLine]:
        """
        Find straight ridge/valley candidates directly in the DSM.

        A pixel is a ridge candidate when it is a local maximum across its row
        (north-south ridge) or across its column (east-west ridge) by at least
        the minimum relief; valleys use minima. Runs of candidates at least
        min_line_px long become lines.
        """
        raster = self.apply_roof_mask(raster, mask)
        z = raster.data
        relief = self.config.dsm_min_relief_m
        lines: List[DSMLine] = []
        for find_max, kind in ((True, EdgeType.RIDGE), (False, EdgeType.VALLEY)):
            sign = 1.0 if find_max else -1.0
            s = sign * z
            with np.errstate(invalid="ignore"):
                across_row = np.zeros_like(z, dtype=bool)
                across_row[:, 1:-1] = (s[:, 1:-1] - s[:, :-2] >= relief) & (s[:, 1:-1] - s[:, 2:] >= relief)
                across_col = np.zeros_like(z, dtype=bool)
                across_col[1:-1, :] = (s[1:-1, :] - s[:-2, :] >= relief) & (s[1:-1, :] - s[2:, :] >= relief)
            lines.extend(self._runs(raster, across_row, kind, vertical=True))
            lines.extend(self._runs(raster, across_col, kind, vertical=False))
        return lines

    def _runs(self, raster: ElevationRaster, hits: np.ndarray, kind: EdgeType, vertical: bool) -> List[DSMLine]:
        out: List[DSMLine] = []
        grid = hits.T if vertical else hits
        for k, row in enumerate(grid):
            start = None
            for i, v in enumerate(list(row) + [False]):
                if v and start is None:
                    start = i
                elif not v and start is not None:
                    if i - start >= self.config.min_line_px:
                        if vertical:
                            a = self.pixel_center(raster, k, start)
                            b = self.pixel_center(raster, k, i - 1)
                            vals = raster.data[start:i, k]
                        else:
                            a = self.pixel_center(raster, start, k)
                            b = self.pixel_center(raster, i - 1, k)
                            vals = raster.data[k, start:i]
                        out.append(DSMLine(start=a, end=b, type=kind, length_px=i - start,
                                           mean_elevation=float(np.nanmean(vals))))
                    start = None
        return out


__all__ = ["DSMRefiner", "RefinementResult", "DSMLine", "EdgeScore"]
