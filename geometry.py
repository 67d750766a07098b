"""
geometry.py — planar projection and line geometry used by the matcher.

Coordinates come in as (lon, lat) degrees.  Everything the matcher measures
is done on planar (x, y) metres from a Projector fixed to one reference
latitude, so only compare points produced by the same Projector.
"""

import math

from config import EARTH_RADIUS_M

Coord = tuple[float, float]
PlanarPoint = tuple[float, float]

METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0


class Projector:
    """Equirectangular projection around a reference latitude.

    Good enough for metro-scale extents; this is not a geodesic model.
    """

    def __init__(self, reference_lat: float):
        self.reference_lat = reference_lat
        self._cos_lat = math.cos(math.radians(reference_lat))

    def to_planar(self, coord: Coord) -> PlanarPoint:
        lon, lat = coord[0], coord[1]
        x = math.radians(lon) * self._cos_lat * EARTH_RADIUS_M
        y = math.radians(lat) * EARTH_RADIUS_M
        return x, y

    def project(self, coords) -> list[PlanarPoint]:
        return [self.to_planar(c) for c in coords]

    def meters_to_degrees(self, meters: float) -> tuple[float, float]:
        """Return (lon_degrees, lat_degrees) spanned by *meters* at this latitude."""
        dlat = meters / METERS_PER_DEGREE
        if self._cos_lat <= 1e-12:
            return 360.0, dlat
        return dlat / self._cos_lat, dlat


# ── Primitives ───────────────────────────────────────────────────────

def point_segment_distance(p: PlanarPoint, a: PlanarPoint, b: PlanarPoint) -> float:
    """Distance from P to segment AB, clamped to the segment's endpoints."""
    px, py = p
    ax, ay = a
    bx, by = b
    dx, dy = bx - ax, by - ay
    seg_len_sq = dx * dx + dy * dy
    if seg_len_sq == 0:
        return math.hypot(px - ax, py - ay)
    t = ((px - ax) * dx + (py - ay) * dy) / seg_len_sq
    t = max(0.0, min(1.0, t))
    qx, qy = ax + t * dx, ay + t * dy
    return math.hypot(px - qx, py - qy)


def _orientation(a: PlanarPoint, b: PlanarPoint, c: PlanarPoint) -> int:
    cross = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
    if cross > 0:
        return 1
    if cross < 0:
        return -1
    return 0


def _on_segment(a: PlanarPoint, p: PlanarPoint, b: PlanarPoint) -> bool:
    """True if P (already collinear with AB) lies within AB's extent."""
    return (min(a[0], b[0]) <= p[0] <= max(a[0], b[0])
            and min(a[1], b[1]) <= p[1] <= max(a[1], b[1]))


def segments_intersect(a1: PlanarPoint, a2: PlanarPoint,
                       b1: PlanarPoint, b2: PlanarPoint) -> bool:
    """True if the segments cross, touch, or overlap collinearly."""
    o1 = _orientation(a1, a2, b1)
    o2 = _orientation(a1, a2, b2)
    o3 = _orientation(b1, b2, a1)
    o4 = _orientation(b1, b2, a2)

    if o1 != o2 and o3 != o4:
        return True
    if o1 == 0 and _on_segment(a1, b1, a2):
        return True
    if o2 == 0 and _on_segment(a1, b2, a2):
        return True
    if o3 == 0 and _on_segment(b1, a1, b2):
        return True
    if o4 == 0 and _on_segment(b1, a2, b2):
        return True
    return False


def segment_distance(a1: PlanarPoint, a2: PlanarPoint,
                     b1: PlanarPoint, b2: PlanarPoint) -> float:
    if segments_intersect(a1, a2, b1, b2):
        return 0.0
    return min(
        point_segment_distance(a1, b1, b2),
        point_segment_distance(a2, b1, b2),
        point_segment_distance(b1, a1, a2),
        point_segment_distance(b2, a1, a2),
    )


def segment_bearing(a: PlanarPoint, b: PlanarPoint) -> float | None:
    """Bearing of AB in radians, or None for a zero-length segment."""
    dx, dy = b[0] - a[0], b[1] - a[1]
    if dx == 0 and dy == 0:
        return None
    return math.atan2(dy, dx)


def bearing_delta(a: float, b: float) -> float:
    """Smallest angle between two bearings, ignoring direction of travel.

    Result is in [0, pi/2]: 10 degrees and 190 degrees compare as equal.
    """
    d = abs(a - b) % (2 * math.pi)
    if d > math.pi:
        d = 2 * math.pi - d
    return min(d, math.pi - d)


def overall_bearing(points: list[PlanarPoint]) -> float | None:
    """Bearing from the first point to the last point distinct from it."""
    if not points:
        return None
    first = points[0]
    for p in reversed(points[1:]):
        if p != first:
            return segment_bearing(first, p)
    return None


def line_segments(points: list[PlanarPoint]) -> list[tuple[PlanarPoint, PlanarPoint]]:
    """Consecutive point pairs; a single point becomes one zero-length segment."""
    if len(points) == 1:
        return [(points[0], points[0])]
    return list(zip(points, points[1:]))
