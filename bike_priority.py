"""
bike_priority.py — decide which bike routes get a winter priority, and which.

Each bike route is handled on its own, in input order:

  1. Routes flagged not plowed are dropped.
  2. Protected routes are checked against travelways that are not plowed; a
     match means the route sits beside an unplowed path and is dropped.
     Otherwise the nearest plowed travelway supplies the priority.
  3. Unprotected routes take their priority from the nearest ice route.
  4. With no match, the route's own WINT_LOS code is used if valid;
     otherwise it's dropped.

Every feature of every dataset gets exactly one Decision, so a run can be
audited after the fact.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field

from feature_bin import Dataset, OutputFeature
from ingest import EMPTY_GEOMETRY, BikeRecord, IceRecord, TravelwayRecord
from matcher import NO_MATCH, MatchThresholds, nearest_match
from spatial_index import ReferenceLine, SpatialIndex

logger = logging.getLogger(__name__)

# Exclusion reasons.
NOT_PLOWED = "not-plowed"
PRIVATE_OWNER = "private-owner"
SHADOWED = "shadowed-by-no-plow"
NO_MATCH_REASON = "no-match"
INVALID_PRIORITY = "invalid-priority"

EMITTED = "emitted"
EXCLUDED = "excluded"
INDEXED = "indexed"

# Priority given to no-plow lines whose own code is missing or invalid; the
# no-plow index only answers "is there one nearby", so the value is unused.
NO_PLOW_DEFAULT_PRIORITY = 3


@dataclass(frozen=True)
class Decision:
    dataset: str
    object_id: int
    title: str
    outcome: str
    reason: str = ""
    priority: int = 0
    source: str = ""
    matched_id: int = 0
    distance: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _source_name(source: Dataset) -> str:
    return source.name.lower()


@dataclass
class TravelwaySelection:
    outputs: list = field(default_factory=list)
    lines: list = field(default_factory=list)
    no_plow_lines: list = field(default_factory=list)
    titles: dict = field(default_factory=dict)
    decisions: list = field(default_factory=list)


@dataclass
class ReferenceSets:
    travelways: SpatialIndex | None = None
    no_plow: SpatialIndex | None = None
    ice: SpatialIndex | None = None
    travelway_titles: dict = field(default_factory=dict)


def build_index(lines, cols: int, rows: int) -> SpatialIndex | None:
    """SpatialIndex over *lines*, or None when there is nothing to index."""
    if not lines:
        return None
    return SpatialIndex(lines, cols=cols, rows=rows)


# ── Reference datasets ───────────────────────────────────────────────

def select_travelways(records: list[TravelwayRecord]) -> TravelwaySelection:
    """Split travelways into map output, the plowed index set and the no-plow set."""
    sel = TravelwaySelection()
    dataset = _source_name(Dataset.TRAVELWAYS)

    for rec in records:
        def exclude(reason):
            sel.decisions.append(Decision(dataset, rec.object_id, rec.title, EXCLUDED, reason))
            logger.debug(f"travelway {rec.object_id} ({rec.title}) excluded: {reason}")

        if not rec.coords:
            exclude(EMPTY_GEOMETRY)
            continue
        if not rec.plowed:
            sel.no_plow_lines.append(ReferenceLine(
                rec.coords, rec.priority or NO_PLOW_DEFAULT_PRIORITY, rec.object_id))
            exclude(NOT_PLOWED)
            continue
        if rec.private:
            exclude(PRIVATE_OWNER)
            continue
        if rec.priority is None:
            exclude(INVALID_PRIORITY)
            continue

        sel.outputs.append(OutputFeature(rec.title, rec.priority, Dataset.TRAVELWAYS, rec.coords))
        sel.lines.append(ReferenceLine(rec.coords, rec.priority, rec.object_id))
        if rec.object_id and rec.title:
            sel.titles[rec.object_id] = rec.title
        sel.decisions.append(Decision(dataset, rec.object_id, rec.title, EMITTED,
                                      priority=rec.priority, source=dataset))

    logger.info(f"Travelways: {len(sel.outputs)} plowed, {len(sel.no_plow_lines)} not plowed, "
                f"{len(records) - len(sel.outputs) - len(sel.no_plow_lines)} otherwise excluded")
    return sel


def select_ice(records: list[IceRecord]) -> tuple[list, list]:
    """Reference lines for ice routes with a valid priority, plus decisions."""
    lines, decisions = [], []
    dataset = _source_name(Dataset.ICE)
    for rec in records:
        title = f"#{rec.index}"
        if not rec.coords:
            decisions.append(Decision(dataset, rec.object_id, title, EXCLUDED, EMPTY_GEOMETRY))
        elif rec.priority is None:
            decisions.append(Decision(dataset, rec.object_id, title, EXCLUDED, INVALID_PRIORITY))
            logger.debug(f"ice route {title} has invalid priority {rec.priority_code!r}")
        else:
            lines.append(ReferenceLine(rec.coords, rec.priority, rec.object_id))
            decisions.append(Decision(dataset, rec.object_id, title, INDEXED, priority=rec.priority))
    logger.info(f"Ice routes: {len(lines)} indexed of {len(records)}")
    return lines, decisions


# ── Bike routes ──────────────────────────────────────────────────────

def _resolve_title(rec: BikeRecord, refs: ReferenceSets, matched_travelway: int,
                   thresholds: MatchThresholds) -> str:
    """Prefer the adjacent travelway's name over a generic type-derived title."""
    if not rec.title_from_type or not refs.travelway_titles:
        return rec.title
    tw_id = matched_travelway
    if not tw_id and refs.travelways is not None:
        lookup = nearest_match(refs.travelways, rec.coords, thresholds.unbiased())
        tw_id = lookup.object_id if lookup.found else 0
    return refs.travelway_titles.get(tw_id) or rec.title


def classify_bike_route(rec: BikeRecord, refs: ReferenceSets, thresholds: MatchThresholds,
                        shadow_only_when_closer: bool = False):
    """Return (OutputFeature or None, Decision) for one bike route."""
    dataset = _source_name(Dataset.BIKE)

    def excluded(reason, matched_id=0, distance=None):
        logger.debug(f"bike route {rec.object_id} ({rec.title}) excluded: {reason}")
        return None, Decision(dataset, rec.object_id, rec.title, EXCLUDED, reason,
                              matched_id=matched_id, distance=distance)

    if rec.geometry_issue:
        return excluded(rec.geometry_issue)
    if not rec.plowed:
        return excluded(NOT_PLOWED)

    match, source = NO_MATCH, None
    if rec.protected:
        shadow = NO_MATCH
        if refs.no_plow is not None:
            shadow = nearest_match(refs.no_plow, rec.coords, thresholds.unbiased())
        plowed = NO_MATCH
        if refs.travelways is not None and (not shadow.found or shadow_only_when_closer):
            plowed = nearest_match(refs.travelways, rec.coords, thresholds)
        if shadow.found and (not shadow_only_when_closer or not plowed.found
                             or shadow.distance <= plowed.distance):
            return excluded(SHADOWED, shadow.object_id, shadow.distance)
        if plowed.found:
            match, source = plowed, Dataset.TRAVELWAYS
    elif refs.ice is not None:
        ice = nearest_match(refs.ice, rec.coords, thresholds)
        if ice.found:
            match, source = ice, Dataset.ICE

    if match.found:
        priority = match.priority
    elif rec.fallback_priority is not None:
        priority, source = rec.fallback_priority, Dataset.BIKE
    elif rec.fallback_code is not None:
        return excluded(INVALID_PRIORITY)
    else:
        return excluded(NO_MATCH_REASON)

    matched_travelway = match.object_id if source == Dataset.TRAVELWAYS else 0
    title = _resolve_title(rec, refs, matched_travelway, thresholds)
    feature = OutputFeature(title, priority, source, rec.coords)
    decision = Decision(
        dataset, rec.object_id, title, EMITTED,
        priority=priority, source=_source_name(source),
        matched_id=match.object_id,
        distance=match.distance if match.found else None,
    )
    return feature, decision


def classify_bike_routes(records, refs: ReferenceSets, thresholds: MatchThresholds,
                         shadow_only_when_closer: bool = False) -> tuple[list, list]:
    outputs, decisions = [], []
    for rec in records:
        feature, decision = classify_bike_route(rec, refs, thresholds, shadow_only_when_closer)
        if feature is not None:
            outputs.append(feature)
        decisions.append(decision)

    reasons = Counter(d.reason for d in decisions if d.outcome == EXCLUDED)
    sources = Counter(d.source for d in decisions if d.outcome == EMITTED)
    logger.info(f"Bike routes: {len(outputs)} emitted {dict(sources)}, "
                f"{sum(reasons.values())} excluded {dict(reasons)}")
    return outputs, decisions
