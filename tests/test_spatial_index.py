"""Tests for spatial_index.py"""

import math

import pytest

from spatial_index import BBox, ReferenceLine, SpatialIndex


def _line(coords, priority=1, object_id=0):
    return ReferenceLine(coords, priority, object_id)


class TestBBox:
    def test_of(self):
        assert BBox.of([(1, 5), (-2, 3), (4, 0)]) == BBox(-2, 0, 4, 5)

    def test_union(self):
        assert BBox(0, 0, 1, 1).union(BBox(2, -1, 3, 0.5)) == BBox(0, -1, 3, 1)

    def test_expand(self):
        assert BBox(0, 0, 1, 1).expand(0.5, 0.25) == BBox(-0.5, -0.25, 1.5, 1.25)

    def test_intersects(self):
        assert BBox(0, 0, 1, 1).intersects(BBox(1, 1, 2, 2))
        assert not BBox(0, 0, 1, 1).intersects(BBox(1.1, 0, 2, 1))


class TestReferenceLine:
    def test_bbox_computed(self):
        line = _line([(0, 0), (0.5, 1)])
        assert line.bbox == BBox(0, 0, 0.5, 1)

    def test_empty_coords_rejected(self):
        with pytest.raises(ValueError):
            _line([])

    def test_priority_must_be_positive(self):
        with pytest.raises(ValueError):
            _line([(0, 0), (1, 0)], priority=0)

    def test_drops_extra_dimensions(self):
        assert _line([(0, 0, 5), (1, 0, 5)]).coords == ((0, 0), (1, 0))


class TestSpatialIndexConstruction:
    def test_empty_reference_set(self):
        with pytest.raises(ValueError):
            SpatialIndex([])

    def test_zero_resolution(self):
        with pytest.raises(ValueError):
            SpatialIndex([_line([(0, 0), (1, 0)])], cols=0, rows=4)

    def test_negative_resolution(self):
        with pytest.raises(ValueError):
            SpatialIndex([_line([(0, 0), (1, 0)])], cols=4, rows=-1)

    def test_projector_at_mid_latitude(self):
        index = SpatialIndex([_line([(0, 40), (1, 40)]), _line([(0, 44), (1, 44)])])
        assert index.projector.reference_lat == pytest.approx(42.0)

    def test_precomputed_bearings(self):
        index = SpatialIndex([_line([(0, 0), (1, 0)]), _line([(0, 0), (0, 0)])])
        assert index.bearings[0] == pytest.approx(0.0)
        assert index.bearings[1] is None
        assert index.segment_bearings[1] == [None]

    def test_len(self):
        assert len(SpatialIndex([_line([(0, 0), (1, 0)])] * 3)) == 3


class TestCandidates:
    def setup_method(self):
        self.lines = [
            _line([(0, 0), (1, 0)]),          # spans the bottom row
            _line([(0, 1), (0.01, 1)]),       # top-left corner
            _line([(0.95, 0.95), (1, 1)]),    # top-right corner
        ]
        self.index = SpatialIndex(self.lines, cols=4, rows=4)

    def test_line_registered_in_every_overlapped_cell(self):
        assert self.index.cells[0] == [0]
        assert self.index.cells[3] == [0]

    def test_query_near_far_end_of_long_line(self):
        assert self.index.candidates(BBox(0.9, -0.01, 0.95, 0.01)) == [0]

    def test_query_corner(self):
        assert self.index.candidates(BBox(-0.01, 0.99, 0.02, 1.01)) == [1]

    def test_whole_extent_deduplicated_and_ordered(self):
        assert self.index.candidates(BBox(-1, -1, 2, 2)) == [0, 1, 2]

    def test_query_outside_bounds(self):
        assert self.index.candidates(BBox(5, 5, 6, 6)) == []

    def test_degenerate_extent(self):
        index = SpatialIndex([_line([(3, 3)]), _line([(3, 3)])])
        assert index.candidates(BBox(2.9, 2.9, 3.1, 3.1)) == [0, 1]

    def test_deterministic_across_builds(self):
        again = SpatialIndex(self.lines, cols=4, rows=4)
        assert again.cells == self.index.cells
        assert math.isclose(again.projector.reference_lat, self.index.projector.reference_lat)
