from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point as ShapelyPoint, Polygon


XY = Tuple[float, float]

M_PER_DEG_LAT = 111_320.0
M_PER_FT = 0.3048
SQFT_PER_M2 = 10.7639
PARALLEL_EPS = 1e-10

COMPASS_DIRECTIONS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def m_to_ft(meters: float) -> float:
    return meters / M_PER_FT


def ft_to_m(feet: float) -> float:
    return feet * M_PER_FT


@dataclass(frozen=True)
class LocalProjection:
    """Planar approximation around a reference latitude.

    Longitude is scaled by cos(mean latitude) so that local (x, y) are meters
    east and north of the origin. Valid for building-scale extents only.
    """
    origin_lng: float
    origin_lat: float
    m_per_deg_lng: float
    m_per_deg_lat: float = M_PER_DEG_LAT

    @classmethod
    def from_points(cls, points: Sequence[XY]) -> "LocalProjection":
        if not points:
            raise ValueError("LocalProjection needs at least one point")
        mean_lng = sum(p[0] for p in points) / len(points)
        mean_lat = sum(p[1] for p in points) / len(points)
        m_lng = M_PER_DEG_LAT * math.cos(math.radians(mean_lat))
        # Guard against polar latitudes collapsing the longitude scale
        if abs(m_lng) < 1e-6:
            m_lng = 1e-6
        return cls(origin_lng=mean_lng, origin_lat=mean_lat, m_per_deg_lng=m_lng)

    def to_local(self, p: XY) -> XY:
        return ((p[0] - self.origin_lng) * self.m_per_deg_lng, (p[1] - self.origin_lat) * self.m_per_deg_lat)

    def to_lonlat(self, p: XY) -> XY:
        return (self.origin_lng + p[0] / self.m_per_deg_lng, self.origin_lat + p[1] / self.m_per_deg_lat)

    def ring_to_local(self, ring: Sequence[XY]) -> List[XY]:
        return [self.to_local(p) for p in ring]

    def ring_to_lonlat(self, ring: Sequence[XY]) -> List[XY]:
        return [self.to_lonlat(p) for p in ring]

    def degrees_to_meters(self, a: XY, b: XY) -> float:
        return distance(self.to_local(a), self.to_local(b))


# Vector helpers ---------------------------------------------------------------

def sub(a: XY, b: XY) -> XY:
    return (a[0] - b[0], a[1] - b[1])


def add(a: XY, b: XY) -> XY:
    return (a[0] + b[0], a[1] + b[1])


def dot(a: XY, b: XY) -> float:
    return a[0] * b[0] + a[1] * b[1]


def cross(a: XY, b: XY) -> float:
    return a[0] * b[1] - a[1] * b[0]


def norm(a: XY) -> float:
    return math.hypot(a[0], a[1])


def normalize(a: XY) -> Optional[XY]:
    n = norm(a)
    if n < 1e-12:
        return None
    return (a[0] / n, a[1] / n)


def distance(a: XY, b: XY) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def midpoint(a: XY, b: XY) -> XY:
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)


def lerp(a: XY, b: XY, t: float) -> XY:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)


def centroid(points: Sequence[XY]) -> XY:
    """Vertex mean. Use polygon_centroid for the area-weighted centroid."""
    n = len(points)
    if n == 0:
        return (0.0, 0.0)
    return (sum(p[0] for p in points) / n, sum(p[1] for p in points) / n)


def signed_area(ring: Sequence[XY]) -> float:
    """Shoelace area of an open ring; positive for counter-clockwise winding."""
    n = len(ring)
    acc = 0.0
    for i in range(n):
        x0, y0 = ring[i]
        x1, y1 = ring[(i + 1) % n]
        acc += x0 * y1 - x1 * y0
    return acc / 2.0


def polygon_centroid(ring: Sequence[XY]) -> XY:
    a = signed_area(ring)
    if abs(a) < 1e-12:
        return centroid(ring)
    n = len(ring)
    cx = cy = 0.0
    for i in range(n):
        x0, y0 = ring[i]
        x1, y1 = ring[(i + 1) % n]
        f = x0 * y1 - x1 * y0
        cx += (x0 + x1) * f
        cy += (y0 + y1) * f
    return (cx / (6.0 * a), cy / (6.0 * a))


def turn_cross(prev: XY, curr: XY, nxt: XY) -> float:
    """Cross product of the incoming and outgoing edges; negative at a reflex vertex of a CCW ring."""
    return cross(sub(curr, prev), sub(nxt, curr))


def is_reflex(prev: XY, curr: XY, nxt: XY) -> bool:
    return turn_cross(prev, curr, nxt) < 0


def interior_angle(prev: XY, curr: XY, nxt: XY) -> float:
    """Interior angle in degrees [0, 360) at curr for a CCW ring."""
    a_prev = math.atan2(prev[1] - curr[1], prev[0] - curr[0])
    a_next = math.atan2(nxt[1] - curr[1], nxt[0] - curr[0])
    return math.degrees(a_prev - a_next) % 360.0


def interior_bisector(prev: XY, curr: XY, nxt: XY) -> XY:
    """Unit vector at curr pointing into a CCW polygon along the angle bisector."""
    u = normalize(sub(prev, curr))
    v = normalize(sub(nxt, curr))
    if u is None or v is None:
        return (0.0, 0.0)
    s = normalize(add(u, v))
    if s is None:
        # Straight vertex: inward normal of the outgoing edge
        return (-v[1], v[0])
    if is_reflex(prev, curr, nxt):
        return (-s[0], -s[1])
    return s


def line_intersection(p: XY, d: XY, q: XY, e: XY) -> Optional[XY]:
    """Intersection of the infinite lines p + t*d and q + s*e."""
    den = cross(d, e)
    if abs(den) < PARALLEL_EPS:
        return None
    t = cross(sub(q, p), e) / den
    return (p[0] + d[0] * t, p[1] + d[1] * t)


def segment_intersection(p1: XY, p2: XY, p3: XY, p4: XY, margin: float = 0.01) -> Optional[XY]:
    """Proper crossing point of two segments.

    Hits within `margin` (as a fraction of either segment) of an endpoint are
    ignored, so segments meeting at a shared vertex do not count as crossing.
    """
    d1 = sub(p2, p1)
    d2 = sub(p4, p3)
    den = cross(d1, d2)
    if abs(den) < PARALLEL_EPS:
        return None
    w = sub(p3, p1)
    t = cross(w, d2) / den
    u = cross(w, d1) / den
    if margin < t < 1.0 - margin and margin < u < 1.0 - margin:
        return (p1[0] + d1[0] * t, p1[1] + d1[1] * t)
    return None


def ray_segment_intersection(origin: XY, direction: XY, a: XY, b: XY) -> Optional[Tuple[float, XY]]:
    """Return (t, point) where the ray origin + t*direction meets segment a-b, t > 0."""
    seg = sub(b, a)
    den = cross(direction, seg)
    if abs(den) < PARALLEL_EPS:
        return None
    w = sub(a, origin)
    t = cross(w, seg) / den
    u = cross(w, direction) / den
    if t > 1e-9 and 0.0 <= u <= 1.0:
        return t, (origin[0] + direction[0] * t, origin[1] + direction[1] * t)
    return None


def project_onto(p: XY, origin: XY, direction: XY) -> float:
    """Signed scalar projection of p - origin onto a unit direction."""
    return dot(sub(p, origin), direction)


# Polygon helpers (shapely) ------------------------------------------------------

def to_polygon(ring: Sequence[XY]) -> Polygon:
    return Polygon(list(ring))


def point_in_polygon(polygon: Polygon, p: XY, tol: float = 1e-6) -> bool:
    """True when p is inside or within `tol` of the polygon boundary."""
    return polygon.distance(ShapelyPoint(p[0], p[1])) <= tol


def clip_segment(polygon: Polygon, a: XY, b: XY, tol: float = 1e-7) -> Optional[Tuple[XY, XY]]:
    """Clip segment a-b to the polygon.

    Returns the longest inside piece oriented from a towards b, or None when
    nothing of positive length remains. Endpoints that were already inside are
    returned unchanged so shared vertices stay bit-identical.
    """
    line = LineString([a, b])
    if polygon.covers(line):
        return a, b
    clipped = polygon.intersection(line)
    if clipped.is_empty:
        return None
    pieces: List[LineString] = []
    if clipped.geom_type == "LineString":
        pieces = [clipped]
    elif hasattr(clipped, "geoms"):
        pieces = [g for g in clipped.geoms if g.geom_type == "LineString"]
    pieces = [g for g in pieces if g.length > tol]
    if not pieces:
        return None
    best = max(pieces, key=lambda g: g.length)
    coords = list(best.coords)
    p0 = (float(coords[0][0]), float(coords[0][1]))
    p1 = (float(coords[-1][0]), float(coords[-1][1]))
    if distance(p0, a) + distance(p1, b) > distance(p1, a) + distance(p0, b):
        p0, p1 = p1, p0
    if distance(p0, a) <= tol:
        p0 = a
    if distance(p1, b) <= tol:
        p1 = b
    return p0, p1


def bbox(points: Sequence[XY]) -> Tuple[float, float, float, float]:
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return min(xs), min(ys), max(xs), max(ys)


def rotate(p: XY, angle_rad: float, about: XY = (0.0, 0.0)) -> XY:
    c = math.cos(angle_rad)
    s = math.sin(angle_rad)
    x = p[0] - about[0]
    y = p[1] - about[1]
    return (about[0] + x * c - y * s, about[1] + x * s + y * c)


# Compass ------------------------------------------------------------------------

def bearing_degrees(vec: XY) -> float:
    """Compass bearing of a local (east, north) vector; 0 = north, clockwise."""
    return math.degrees(math.atan2(vec[0], vec[1])) % 360.0


def bearing_vector(azimuth_deg: float) -> XY:
    r = math.radians(azimuth_deg)
    return (math.sin(r), math.cos(r))


def compass_direction(azimuth_deg: float) -> str:
    idx = int(round((azimuth_deg % 360.0) / 45.0)) % 8
    return COMPASS_DIRECTIONS[idx]


__all__ = [
    "XY",
    "M_PER_DEG_LAT",
    "SQFT_PER_M2",
    "LocalProjection",
    "m_to_ft",
    "ft_to_m",
    "distance",
    "midpoint",
    "centroid",
    "polygon_centroid",
    "signed_area",
    "interior_angle",
    "interior_bisector",
    "is_reflex",
    "line_intersection",
    "segment_intersection",
    "ray_segment_intersection",
    "point_in_polygon",
    "clip_segment",
    "bearing_degrees",
    "compass_direction",
]
