from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import math
import numpy as np


@dataclass
class PlaneFitResult:
    normal: tuple
    pitch_deg: float
    aspect_deg: float  # compass bearing of the downslope direction
    residual_rmse: float
    pixel_count: int


def window_stats(window: np.ndarray) -> Dict[str, float]:
    """NaN-aware min/max/mean of an elevation window."""
    arr = np.asarray(window, dtype=float)
    if arr.size == 0 or not np.isfinite(arr).any():
        return {"min": math.nan, "max": math.nan, "mean": math.nan, "range": 0.0}
    lo = float(np.nanmin(arr))
    hi = float(np.nanmax(arr))
    return {"min": lo, "max": hi, "mean": float(np.nanmean(arr)), "range": hi - lo}


def resample_mask(mask: np.ndarray, height: int, width: int) -> np.ndarray:
    """Nearest-neighbour resample of a boolean mask onto a height x width grid."""
    mh, mw = mask.shape
    rows = np.minimum((np.arange(height) * mh) // max(1, height), mh - 1)
    cols = np.minimum((np.arange(width) * mw) // max(1, width), mw - 1)
    return mask[np.ix_(rows, cols)]


def apply_mask(grid: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Return a copy of grid with non-roof pixels set to NaN."""
    out = np.array(grid, dtype=float, copy=True)
    m = resample_mask(np.asarray(mask, dtype=bool), out.shape[0], out.shape[1])
    out[~m] = np.nan
    return out


def fit_plane(grid: np.ndarray, select: np.ndarray, dx_m: float, dy_m: float) -> Optional[PlaneFitResult]:
    """
    Least-squares fit of z = a*east + b*north + c over the selected finite pixels.

    Row 0 is the northern edge of the grid, so north decreases with row index.
    Returns None when fewer than 3 usable pixels remain.
    """
    sel = np.asarray(select, dtype=bool) & np.isfinite(grid)
    ys, xs = np.nonzero(sel)
    if ys.size < 3:
        return None
    east = xs.astype(float) * dx_m
    north = -ys.astype(float) * dy_m
    z = grid[ys, xs].astype(float)
    A = np.column_stack([east, north, np.ones(ys.size)])
    coeffs, *_ = np.linalg.lstsq(A, z, rcond=None)
    a, b, c = (float(v) for v in coeffs)
    nx, ny, nz = -a, -b, 1.0
    norm = math.sqrt(nx * nx + ny * ny + nz * nz) or 1.0
    pitch = math.degrees(math.atan(math.hypot(a, b)))
    # Downslope points against the gradient
    aspect = math.degrees(math.atan2(-a, -b)) % 360.0
    resid = z - (A @ np.array([a, b, c]))
    rmse = float(math.sqrt(float(np.mean(resid * resid))))
    return PlaneFitResult(normal=(nx / norm, ny / norm, nz / norm), pitch_deg=pitch, aspect_deg=aspect,
                          residual_rmse=rmse, pixel_count=int(ys.size))


def _bilinear_sample(grid: np.ndarray, y: float, x: float) -> float:
    """Sample at fractional pixel-center coordinates; NaN outside or on masked pixels."""
    H, W = grid.shape
    if not (-0.5 <= x <= W - 0.5 and -0.5 <= y <= H - 0.5):
        return math.nan
    x = min(max(x, 0.0), W - 1.0)
    y = min(max(y, 0.0), H - 1.0)
    x0 = int(np.floor(x)); y0 = int(np.floor(y))
    x1 = min(x0 + 1, W - 1); y1 = min(y0 + 1, H - 1)
    dx = x - x0; dy = y - y0
    v00 = float(grid[y0, x0])
    v10 = float(grid[y0, x1])
    v01 = float(grid[y1, x0])
    v11 = float(grid[y1, x1])
    if not all(math.isfinite(v) for v in (v00, v10, v01, v11)):
        # Fall back to the nearest pixel next to masked neighbours
        return float(grid[int(round(y)), int(round(x))])
    v0 = v00 * (1 - dx) + v10 * dx
    v1 = v01 * (1 - dx) + v11 * dx
    return float(v0 * (1 - dy) + v1 * dy)


__all__ = ["PlaneFitResult", "window_stats", "resample_mask", "apply_mask", "fit_plane", "_bilinear_sample"]
