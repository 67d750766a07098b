"""
matcher.py — direction-aware nearest reference line lookup.

``nearest_match`` runs two passes over the same candidate set:

  Pass 1: find the smallest line-to-line distance among candidates that
          pass the overall-bearing and per-segment bearing filters.
  Pass 2: among candidates within ``min + priority_bias`` (and within
          ``max_distance``), take the numerically lowest priority, then
          the smallest distance.

The second pass credits a bike route to a faster-cleared street running
alongside it even when a slower one (e.g. a sidewalk) is a metre nearer.
"""

import math
from dataclasses import dataclass, replace

from config import (
    MAX_MATCH_METERS, MAX_OVERALL_ANGLE_DEG, MAX_SEGMENT_ANGLE_DEG, PRIORITY_BIAS_METERS,
)
from geometry import bearing_delta, line_segments, overall_bearing, segment_bearing, segment_distance
from spatial_index import BBox, SpatialIndex


@dataclass(frozen=True)
class MatchThresholds:
    max_distance: float = MAX_MATCH_METERS
    max_segment_angle: float = MAX_SEGMENT_ANGLE_DEG
    max_overall_angle: float = MAX_OVERALL_ANGLE_DEG
    priority_bias: float = PRIORITY_BIAS_METERS

    def __post_init__(self):
        if not self.max_distance > 0:
            raise ValueError(f"max_distance must be positive, got {self.max_distance}")
        for name in ("max_segment_angle", "max_overall_angle"):
            value = getattr(self, name)
            if not 0 <= value <= 180:
                raise ValueError(f"{name} must be within [0, 180] degrees, got {value}")

    def unbiased(self) -> "MatchThresholds":
        return replace(self, priority_bias=0.0)


@dataclass(frozen=True)
class MatchResult:
    priority: int = 0
    object_id: int = 0
    distance: float = math.inf
    found: bool = False


NO_MATCH = MatchResult()


def _line_distance(query_segments, query_bearings, candidate_segments, cand_bearings,
                   max_segment_angle) -> float:
    """Min segment-to-segment distance, skipping pairs that disagree in bearing.

    Pairs where either bearing is undefined are measured without an angle test.
    Returns inf if every pair was filtered out.
    """
    best = math.inf
    for (q1, q2), qb in zip(query_segments, query_bearings):
        for (c1, c2), cb in zip(candidate_segments, cand_bearings):
            if qb is not None and cb is not None and bearing_delta(qb, cb) > max_segment_angle:
                continue
            d = segment_distance(q1, q2, c1, c2)
            if d < best:
                best = d
                if best == 0.0:
                    return best
    return best


def nearest_match(index: SpatialIndex, query, thresholds: MatchThresholds) -> MatchResult:
    """Best reference line in *index* for the (lon, lat) polyline *query*."""
    if not query:
        return NO_MATCH

    dlon, dlat = index.projector.meters_to_degrees(thresholds.max_distance)
    window = BBox.of(query).expand(dlon, dlat)
    candidates = index.candidates(window)
    if not candidates:
        return NO_MATCH

    query_pts = index.projector.project(query)
    query_overall = overall_bearing(query_pts)
    query_segments = line_segments(query_pts)
    query_bearings = [segment_bearing(a, b) for a, b in query_segments]
    max_overall = math.radians(thresholds.max_overall_angle)
    max_segment = math.radians(thresholds.max_segment_angle)

    # Pass 1: global minimum distance over eligible candidates.
    eligible: list[tuple[int, float]] = []
    min_distance = math.inf
    for i in candidates:
        cand_overall = index.bearings[i]
        if (max_overall > 0 and query_overall is not None and cand_overall is not None
                and bearing_delta(query_overall, cand_overall) > max_overall):
            continue
        d = _line_distance(query_segments, query_bearings,
                           index.segments[i], index.segment_bearings[i], max_segment)
        if math.isinf(d):
            continue
        eligible.append((i, d))
        if d < min_distance:
            min_distance = d

    if not eligible or min_distance > thresholds.max_distance:
        return NO_MATCH

    # Pass 2: lowest priority value within the bias window, then nearest.
    cutoff = min_distance + max(thresholds.priority_bias, 0.0)
    best_i, best_d = None, math.inf
    for i, d in eligible:
        if d > cutoff or d > thresholds.max_distance:
            continue
        if best_i is None:
            best_i, best_d = i, d
            continue
        p, best_p = index.lines[i].priority, index.lines[best_i].priority
        if p < best_p or (p == best_p and d < best_d):
            best_i, best_d = i, d

    if best_i is None:
        return NO_MATCH
    line = index.lines[best_i]
    return MatchResult(priority=line.priority, object_id=line.object_id, distance=best_d, found=True)
