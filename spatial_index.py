"""
spatial_index.py — fixed-resolution grid over a set of reference lines.

The index is a pre-filter: ``candidates(bbox)`` returns the lines whose
bounding boxes touch the cells under the query window.  Exact distances are
the matcher's job.
"""

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

from config import INDEX_GRID_COLS, INDEX_GRID_ROWS
from geometry import Projector, line_segments, overall_bearing, segment_bearing

logger = logging.getLogger(__name__)


class BBox(NamedTuple):
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def of(cls, coords) -> "BBox":
        lons = [c[0] for c in coords]
        lats = [c[1] for c in coords]
        return cls(min(lons), min(lats), max(lons), max(lats))

    def union(self, other: "BBox") -> "BBox":
        return BBox(
            min(self.min_lon, other.min_lon), min(self.min_lat, other.min_lat),
            max(self.max_lon, other.max_lon), max(self.max_lat, other.max_lat),
        )

    def expand(self, dlon: float, dlat: float) -> "BBox":
        return BBox(self.min_lon - dlon, self.min_lat - dlat,
                    self.max_lon + dlon, self.max_lat + dlat)

    def intersects(self, other: "BBox") -> bool:
        return not (other.min_lon > self.max_lon or other.max_lon < self.min_lon
                    or other.min_lat > self.max_lat or other.max_lat < self.min_lat)

    @property
    def mid_lat(self) -> float:
        return (self.min_lat + self.max_lat) / 2.0


@dataclass(frozen=True)
class ReferenceLine:
    """A maintained line a bike route can be matched against.

    ``priority`` is 1 (cleared first) to 3; ``object_id`` 0 means the source
    dataset has no identifier for the line.
    """
    coords: tuple
    priority: int
    object_id: int = 0
    bbox: BBox = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.coords:
            raise ValueError("reference line has no coordinates")
        if self.priority <= 0:
            raise ValueError(f"reference line priority must be positive, got {self.priority}")
        object.__setattr__(self, "coords", tuple((c[0], c[1]) for c in self.coords))
        object.__setattr__(self, "bbox", BBox.of(self.coords))


class SpatialIndex:
    """Grid of ``cols x rows`` cells over the union bbox of *lines*.

    Each cell lists, in input order, the index of every line whose bbox
    overlaps it.  Lines are borrowed; the index never mutates them.
    """

    def __init__(self, lines, cols: int = INDEX_GRID_COLS, rows: int = INDEX_GRID_ROWS):
        if cols < 1 or rows < 1:
            raise ValueError(f"grid resolution must be positive, got {cols}x{rows}")
        if not lines:
            raise ValueError("cannot index an empty reference set")

        self.lines = lines
        self.cols = cols
        self.rows = rows

        bounds = lines[0].bbox
        for line in lines[1:]:
            bounds = bounds.union(line.bbox)
        self.bounds = bounds
        self.projector = Projector(bounds.mid_lat)

        # Projection-dependent data, parallel to self.lines.
        self.planar = []
        self.bearings = []
        self.segments = []
        self.segment_bearings = []
        for line in lines:
            pts = self.projector.project(line.coords)
            segs = line_segments(pts)
            self.planar.append(pts)
            self.bearings.append(overall_bearing(pts))
            self.segments.append(segs)
            self.segment_bearings.append([segment_bearing(a, b) for a, b in segs])

        self._cell_w = (bounds.max_lon - bounds.min_lon) / cols
        self._cell_h = (bounds.max_lat - bounds.min_lat) / rows
        self.cells: list[list[int]] = [[] for _ in range(cols * rows)]
        for i, line in enumerate(lines):
            c0, r0, c1, r1 = self._cell_range(line.bbox)
            for r in range(r0, r1 + 1):
                for c in range(c0, c1 + 1):
                    self.cells[r * cols + c].append(i)

        logger.debug(f"Indexed {len(lines)} lines into a {cols}x{rows} grid")

    def __len__(self) -> int:
        return len(self.lines)

    def _col(self, lon: float) -> int:
        if self._cell_w <= 0:
            return 0
        col = int((lon - self.bounds.min_lon) / self._cell_w)
        return max(0, min(self.cols - 1, col))

    def _row(self, lat: float) -> int:
        if self._cell_h <= 0:
            return 0
        row = int((lat - self.bounds.min_lat) / self._cell_h)
        return max(0, min(self.rows - 1, row))

    def _cell_range(self, bbox: BBox) -> tuple[int, int, int, int]:
        return (self._col(bbox.min_lon), self._row(bbox.min_lat),
                self._col(bbox.max_lon), self._row(bbox.max_lat))

    def candidates(self, bbox: BBox) -> list[int]:
        """Indices of lines in the cells overlapping *bbox*, ascending.

        The caller expands *bbox* by its search radius beforehand.
        """
        if not self.bounds.intersects(bbox):
            return []
        c0, r0, c1, r1 = self._cell_range(bbox)
        seen: set[int] = set()
        for r in range(r0, r1 + 1):
            for c in range(c0, c1 + 1):
                seen.update(self.cells[r * self.cols + c])
        return sorted(seen)
