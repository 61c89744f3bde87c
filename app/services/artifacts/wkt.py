from __future__ import annotations

import re
from typing import List, Sequence, Tuple


LonLat = Tuple[float, float]

_LINESTRING_RE = re.compile(r"^\s*LINESTRING\s*\((?P<body>[^()]*)\)\s*$", re.IGNORECASE)
_POLYGON_RE = re.compile(r"^\s*POLYGON\s*\(\s*\((?P<body>[^()]*)\)\s*\)\s*$", re.IGNORECASE)


def _fmt(value: float) -> str:
    # repr keeps full float precision so a parse returns the same coordinate
    return repr(float(value))


def _ensure_ring_closed(ring: List[LonLat]) -> List[LonLat]:
    if not ring:
        return ring
    if ring[0] != ring[-1]:
        return [*ring, ring[0]]
    return ring


def _coord_list(points: Sequence[LonLat]) -> str:
    return ", ".join(f"{_fmt(lng)} {_fmt(lat)}" for lng, lat in points)


def linestring_wkt(start: LonLat, end: LonLat) -> str:
    return f"LINESTRING({_coord_list([start, end])})"


def polygon_wkt(ring: Sequence[LonLat]) -> str:
    """Encode a ring as WKT POLYGON, repeating the first vertex to close it."""
    closed = _ensure_ring_closed([(float(lng), float(lat)) for lng, lat in ring])
    return f"POLYGON(({_coord_list(closed)}))"


def _parse_body(body: str) -> List[LonLat]:
    points: List[LonLat] = []
    for chunk in body.split(","):
        parts = chunk.split()
        if len(parts) != 2:
            raise ValueError(f"Invalid WKT coordinate: {chunk.strip()!r}")
        points.append((float(parts[0]), float(parts[1])))
    return points


def parse_linestring(text: str) -> Tuple[LonLat, LonLat]:
    m = _LINESTRING_RE.match(text)
    if not m:
        raise ValueError("Expected WKT LINESTRING")
    points = _parse_body(m.group("body"))
    if len(points) != 2:
        raise ValueError("Expected a two-point LINESTRING")
    return points[0], points[1]


def parse_polygon(text: str) -> List[LonLat]:
    """Return the closed exterior ring of a WKT POLYGON (holes are not supported)."""
    m = _POLYGON_RE.match(text)
    if not m:
        raise ValueError("Expected WKT POLYGON with a single ring")
    points = _parse_body(m.group("body"))
    if len(points) < 4 or points[0] != points[-1]:
        raise ValueError("POLYGON ring must be closed and have at least 3 distinct vertices")
    return points


__all__ = ["linestring_wkt", "polygon_wkt", "parse_linestring", "parse_polygon"]
