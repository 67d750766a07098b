"""
feature_bin.py — compact, spatially bucketed binary feature files.

Layout (little-endian throughout):

    uint32   segment count
    float64  base lon         (global bbox min)
    float64  base lat
    per segment:
      int32 x4  tight bbox (min lon, min lat, max lon, max lat) as 1e-6 deltas
      uint32    feature count
      per feature:
        uint8  title length, title bytes (UTF-8)
        uint8  priority
        uint8  source dataset (0 travelways, 1 bike, 2 ice)
        uint16 coordinate count
        int32 x2 per coordinate: lon/lat as 1e-6 deltas from the base

Every file carries the source dataset byte, travelways-only files included.

Features are bucketed on a fixed grid over the global bbox by their first
coordinate only; each segment's bbox is then recomputed from its members so
the renderer can cull whole segments against the viewport.
"""

import logging
import math
import struct
from dataclasses import dataclass, field
from enum import IntEnum

from config import COORD_SCALE, SEGMENT_GRID_COLS, SEGMENT_GRID_ROWS
from spatial_index import BBox

logger = logging.getLogger(__name__)

INT32_MIN, INT32_MAX = -(2 ** 31), 2 ** 31 - 1
UINT16_MAX = 2 ** 16 - 1
UINT32_MAX = 2 ** 32 - 1

_HEADER = struct.Struct("<Idd")
_SEGMENT = struct.Struct("<iiiiI")
_FEATURE_META = struct.Struct("<BBH")
_COORD = struct.Struct("<ii")


class EncodeError(ValueError):
    pass


class DecodeError(ValueError):
    pass


class Dataset(IntEnum):
    TRAVELWAYS = 0
    BIKE = 1
    ICE = 2


_SOURCES = {d.value for d in Dataset}


@dataclass(frozen=True)
class OutputFeature:
    title: str
    priority: int
    source: Dataset
    coords: tuple

    def __post_init__(self):
        object.__setattr__(self, "coords", tuple((c[0], c[1]) for c in self.coords))


@dataclass
class Segment:
    bbox: BBox
    features: list = field(default_factory=list)

    def intersects(self, viewport: BBox) -> bool:
        return self.bbox.intersects(viewport)


@dataclass
class DecodedFile:
    base_lon: float
    base_lat: float
    segments: list

    @property
    def features(self) -> list:
        return [f for seg in self.segments for f in seg.features]

    def visible_segments(self, viewport: BBox) -> list:
        return [seg for seg in self.segments if seg.intersects(viewport)]


# ── Encoding ─────────────────────────────────────────────────────────

def _fixed(value: float, base: float) -> int:
    """(value - base) in 1e-6 units, rounded half away from zero."""
    scaled = (value - base) * COORD_SCALE
    n = int(math.floor(abs(scaled) + 0.5))
    n = -n if scaled < 0 else n
    if not INT32_MIN <= n <= INT32_MAX:
        raise EncodeError(f"coordinate {value} is too far from base {base} for int32 deltas")
    return n


def _grid_cell(value: float, lo: float, hi: float, n: int) -> int:
    if hi <= lo:
        return 0
    i = int((value - lo) / (hi - lo) * n)
    return max(0, min(n - 1, i))


def _check_feature(f: OutputFeature) -> bytes:
    title = f.title.encode("utf-8")
    if len(title) > 255:
        raise EncodeError(f"title too long: {f.title!r} exceeds 255 bytes")
    if not 0 <= f.priority <= 255:
        raise EncodeError(f"priority {f.priority} does not fit in a byte")
    if not 0 <= int(f.source) <= 255:
        raise EncodeError(f"source dataset {f.source} does not fit in a byte")
    if not f.coords:
        raise EncodeError(f"feature {f.title!r} has no coordinates")
    if len(f.coords) > UINT16_MAX:
        raise EncodeError(f"too many coordinates in feature: {len(f.coords)} exceeds uint16 capacity")
    return title


def build_segments(features, cols: int = SEGMENT_GRID_COLS,
                   rows: int = SEGMENT_GRID_ROWS) -> tuple[BBox, list[Segment]]:
    """Bucket *features* into non-empty segments in row-major grid order."""
    if not features:
        raise EncodeError("no features")
    if cols < 1 or rows < 1:
        raise ValueError(f"segment grid must be positive, got {cols}x{rows}")

    bounds = None
    for f in features:
        if not f.coords:
            raise EncodeError(f"feature {f.title!r} has no coordinates")
        fb = BBox.of(f.coords)
        bounds = fb if bounds is None else bounds.union(fb)

    cells: list[list[OutputFeature]] = [[] for _ in range(cols * rows)]
    for f in features:
        lon, lat = f.coords[0]
        col = _grid_cell(lon, bounds.min_lon, bounds.max_lon, cols)
        row = _grid_cell(lat, bounds.min_lat, bounds.max_lat, rows)
        cells[row * cols + col].append(f)

    segments = []
    for members in cells:
        if not members:
            continue
        tight = BBox.of([c for f in members for c in f.coords])
        segments.append(Segment(bbox=tight, features=members))
    return bounds, segments


def encode_features(features, cols: int = SEGMENT_GRID_COLS,
                    rows: int = SEGMENT_GRID_ROWS) -> bytes:
    if len(features) > UINT32_MAX:
        raise EncodeError(f"too many features: {len(features)} exceeds uint32 capacity")
    bounds, segments = build_segments(features, cols, rows)
    base_lon, base_lat = bounds.min_lon, bounds.min_lat

    out = bytearray(_HEADER.pack(len(segments), base_lon, base_lat))
    for seg in segments:
        b = seg.bbox
        out += _SEGMENT.pack(
            _fixed(b.min_lon, base_lon), _fixed(b.min_lat, base_lat),
            _fixed(b.max_lon, base_lon), _fixed(b.max_lat, base_lat),
            len(seg.features),
        )
        for f in seg.features:
            title = _check_feature(f)
            out.append(len(title))
            out += title
            out += _FEATURE_META.pack(f.priority, int(f.source), len(f.coords))
            for lon, lat in f.coords:
                out += _COORD.pack(_fixed(lon, base_lon), _fixed(lat, base_lat))

    logger.debug(f"Encoded {len(features)} features in {len(segments)} segments ({len(out)} bytes)")
    return bytes(out)


# ── Decoding ─────────────────────────────────────────────────────────

def decode_features(data: bytes) -> DecodedFile:
    try:
        seg_count, base_lon, base_lat = _HEADER.unpack_from(data, 0)
        pos = _HEADER.size

        def delta(n: int, base: float) -> float:
            return base + n / COORD_SCALE

        segments = []
        for _ in range(seg_count):
            dmin_lon, dmin_lat, dmax_lon, dmax_lat, feat_count = _SEGMENT.unpack_from(data, pos)
            pos += _SEGMENT.size
            bbox = BBox(delta(dmin_lon, base_lon), delta(dmin_lat, base_lat),
                        delta(dmax_lon, base_lon), delta(dmax_lat, base_lat))
            feats = []
            for _ in range(feat_count):
                title_len = data[pos]
                pos += 1
                title = bytes(data[pos:pos + title_len])
                if len(title) != title_len:
                    raise DecodeError("truncated title")
                pos += title_len
                priority, source, coord_count = _FEATURE_META.unpack_from(data, pos)
                pos += _FEATURE_META.size
                coords = []
                for _ in range(coord_count):
                    dlon, dlat = _COORD.unpack_from(data, pos)
                    pos += _COORD.size
                    coords.append((delta(dlon, base_lon), delta(dlat, base_lat)))
                if source not in _SOURCES:
                    raise DecodeError(f"unknown source dataset {source}")
                feats.append(OutputFeature(title.decode("utf-8", errors="replace"),
                                           priority, Dataset(source), coords))
            segments.append(Segment(bbox=bbox, features=feats))
    except (struct.error, IndexError) as e:
        raise DecodeError(f"truncated feature file: {e}") from e

    if pos != len(data):
        raise DecodeError(f"{len(data) - pos} trailing bytes after last segment")
    return DecodedFile(base_lon, base_lat, segments)
