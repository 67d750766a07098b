"""
ingest.py — turn GeoJSON feature collections into typed line records.

Geometries are read with shapely; a MultiLineString is flattened into one
polyline by concatenating its parts in order (joins are not checked).
Attribute maps are reduced here to the handful of fields the matcher needs,
so nothing downstream touches raw property dicts.
"""

import json
import logging
import re
from dataclasses import dataclass

from shapely.errors import ShapelyError
from shapely.geometry import shape

from config import (
    BIKE_TYPE_LABELS, DEFAULT_BIKE_TITLE, NOT_PLOWED, PRIORITY_PREFIX, PRIVATE_OWNER,
    PROTECTED_BIKE_TYPES, TITLE_RENAMES, TRIVIAL_PROTECTION, VALID_PRIORITIES,
)

logger = logging.getLogger(__name__)


class IngestError(ValueError):
    pass


# BikeRecord.geometry_issue values; each doubles as the exclusion reason.
MALFORMED_FEATURE = "malformed-feature"
UNSUPPORTED_GEOMETRY = "unsupported-geometry"
EMPTY_GEOMETRY = "empty-geometry"


@dataclass(frozen=True)
class TravelwayRecord:
    object_id: int
    coords: tuple
    title: str
    priority_code: str | None
    priority: int | None
    plowed: bool
    private: bool


@dataclass(frozen=True)
class BikeRecord:
    object_id: int
    coords: tuple
    title: str
    title_from_type: bool
    protected: bool
    plowed: bool
    fallback_code: str | None
    fallback_priority: int | None
    geometry_issue: str = ""


@dataclass(frozen=True)
class IceRecord:
    index: int
    coords: tuple
    priority_code: str | None
    priority: int | None
    object_id: int = 0


# ── Documents and geometry ───────────────────────────────────────────

def load_feature_collection(source) -> dict:
    """Parse a GeoJSON FeatureCollection from a path, bytes, or an already-parsed dict."""
    if isinstance(source, dict):
        data = source
    elif isinstance(source, (bytes, bytearray)):
        data = json.loads(source)
    else:
        with open(source, encoding="utf-8") as f:
            data = json.load(f)
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise IngestError("expected a GeoJSON FeatureCollection")
    features = data.get("features", [])
    if features is not None and not isinstance(features, list):
        raise IngestError("FeatureCollection 'features' must be a list")
    return data


def flatten_geometry(geometry: dict | None) -> tuple:
    """Return a GeoJSON line geometry as one (lon, lat) polyline.

    Empty or missing geometry gives an empty tuple.  Anything that isn't a
    LineString or MultiLineString raises IngestError.
    """
    if not geometry:
        return ()
    try:
        geom = shape(geometry)
    except (ShapelyError, ValueError, TypeError, KeyError, AttributeError, IndexError) as e:
        raise IngestError(f"malformed geometry: {e}") from e

    if geom.geom_type == "LineString":
        parts = [geom]
    elif geom.geom_type == "MultiLineString":
        parts = list(geom.geoms)
    else:
        raise IngestError(f"unknown geometry type: {geom.geom_type}")
    if geom.is_empty:
        return ()
    return tuple((c[0], c[1]) for part in parts for c in part.coords)


# ── Attribute helpers ────────────────────────────────────────────────

def _text(props: dict, key: str) -> str:
    value = props.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _object_id(props: dict) -> int:
    try:
        return int(props.get("OBJECTID") or 0)
    except (TypeError, ValueError):
        return 0


def parse_priority(code) -> int | None:
    """'PRI2', '2' or 2 -> 2.  Anything outside 1-3 is None."""
    if code is None:
        return None
    text = str(code).strip().upper()
    if text.startswith(PRIORITY_PREFIX):
        text = text[len(PRIORITY_PREFIX):]
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value in VALID_PRIORITIES else None


_WORD_RE = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)?")


def normalize_title(raw: str) -> str:
    """Apply street renames, then capitalize each word: 'CORNWALLIS ST' -> 'Nora Bernard St'."""
    title = " ".join(raw.split())
    if not title:
        return ""
    title = TITLE_RENAMES.get(title.upper(), title)
    return _WORD_RE.sub(lambda m: m.group(0).capitalize(), title.lower())


# ── Datasets ─────────────────────────────────────────────────────────

def _features(fc: dict) -> list:
    return fc.get("features") or []


def _feature_parts(feat) -> tuple[dict, dict | None]:
    """(properties, geometry) of one GeoJSON feature; IngestError if it isn't an object."""
    if not isinstance(feat, dict):
        raise IngestError(f"feature is not an object: {feat!r}")
    props = feat.get("properties")
    if props is None:
        props = {}
    if not isinstance(props, dict):
        raise IngestError(f"feature properties are not an object: {props!r}")
    return props, feat.get("geometry")


def parse_travelways(fc: dict) -> list[TravelwayRecord]:
    """Travelway records in input order.  Malformed features are fatal."""
    records = []
    for i, feat in enumerate(_features(fc)):
        try:
            props, geometry = _feature_parts(feat)
        except IngestError as e:
            raise IngestError(f"travelway #{i}: {e}") from e
        try:
            coords = flatten_geometry(geometry)
        except IngestError as e:
            raise IngestError(f"travelway {_object_id(props) or i}: {e}") from e
        code = props.get("WINT_LOS")
        records.append(TravelwayRecord(
            object_id=_object_id(props),
            coords=coords,
            title=normalize_title(_text(props, "LOCATION")),
            priority_code=None if code is None else str(code),
            priority=parse_priority(code),
            plowed=_text(props, "WINT_PLOW").upper() != NOT_PLOWED,
            private=_text(props, "OWNER").upper() == PRIVATE_OWNER,
        ))
    logger.info(f"Loaded {len(records)} travelways")
    return records


def parse_bike_routes(fc: dict) -> list[BikeRecord]:
    """Bike route records in input order.  Bad features are flagged, not fatal."""
    records = []
    for i, feat in enumerate(_features(fc)):
        issue = ""
        try:
            props, geometry = _feature_parts(feat)
        except IngestError as e:
            logger.debug(f"bike route #{i}: {e}")
            props, geometry, issue = {}, None, MALFORMED_FEATURE
        coords = ()
        if not issue:
            try:
                coords = flatten_geometry(geometry)
            except IngestError as e:
                logger.debug(f"bike route {_object_id(props) or i}: {e}")
                issue = UNSUPPORTED_GEOMETRY
        if not coords and not issue:
            issue = EMPTY_GEOMETRY

        bike_type = _text(props, "BIKETYPE").upper()
        protection = _text(props, "PROT_TYPE").upper()

        name = _text(props, "BIKE_NAME")
        street = _text(props, "STREETNAME")
        title_from_type = False
        if name:
            title = name
        elif street:
            title = normalize_title(street)
        else:
            title = BIKE_TYPE_LABELS.get(bike_type, DEFAULT_BIKE_TITLE)
            title_from_type = True

        code = props.get("WINT_LOS")
        records.append(BikeRecord(
            object_id=_object_id(props),
            coords=coords,
            title=title,
            title_from_type=title_from_type,
            protected=protection not in TRIVIAL_PROTECTION or bike_type in PROTECTED_BIKE_TYPES,
            plowed=_text(props, "WINT_PLOW").upper() != NOT_PLOWED,
            fallback_code=None if code is None else str(code),
            fallback_priority=parse_priority(code),
            geometry_issue=issue,
        ))
    logger.info(f"Loaded {len(records)} bike routes")
    return records


def parse_ice_routes(fc: dict) -> list[IceRecord]:
    """Ice route records in input order.  Malformed features are fatal."""
    records = []
    for i, feat in enumerate(_features(fc)):
        try:
            props, geometry = _feature_parts(feat)
            coords = flatten_geometry(geometry)
        except IngestError as e:
            raise IngestError(f"ice route #{i}: {e}") from e
        code = props.get("PRIORITY")
        records.append(IceRecord(
            index=i,
            coords=coords,
            priority_code=None if code is None else str(code),
            priority=parse_priority(code),
            object_id=_object_id(props),
        ))
    logger.info(f"Loaded {len(records)} ice routes")
    return records
