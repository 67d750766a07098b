"""Tests for ingest.py"""

import json
import os
import tempfile

import pytest

from ingest import (
    MALFORMED_FEATURE, IngestError, flatten_geometry, load_feature_collection, normalize_title,
    parse_bike_routes, parse_ice_routes, parse_priority, parse_travelways,
)


# --- Helpers -------------------------------------------------------------- #

def _line(coords):
    return {"type": "LineString", "coordinates": coords}


def _fc(*features):
    return {"type": "FeatureCollection", "features": list(features)}


def _feat(props, geometry=None):
    return {"type": "Feature", "properties": props,
            "geometry": geometry or _line([[0, 0], [0.001, 0]])}


# --- Tests ---------------------------------------------------------------- #

class TestFlattenGeometry:
    def test_linestring(self):
        assert flatten_geometry(_line([[0, 0], [1, 1]])) == ((0, 0), (1, 1))

    def test_multilinestring_parts_concatenated(self):
        geom = {"type": "MultiLineString",
                "coordinates": [[[0, 0], [1, 0]], [[2, 0], [3, 0]]]}
        assert flatten_geometry(geom) == ((0, 0), (1, 0), (2, 0), (3, 0))

    def test_drops_elevation(self):
        assert flatten_geometry(_line([[0, 0, 12], [1, 1, 14]])) == ((0, 0), (1, 1))

    def test_missing_geometry(self):
        assert flatten_geometry(None) == ()

    def test_empty_linestring(self):
        assert flatten_geometry(_line([])) == ()

    def test_point_rejected(self):
        with pytest.raises(IngestError):
            flatten_geometry({"type": "Point", "coordinates": [0, 0]})

    def test_polygon_rejected(self):
        with pytest.raises(IngestError):
            flatten_geometry({"type": "Polygon",
                              "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]})

    def test_malformed_rejected(self):
        with pytest.raises(IngestError):
            flatten_geometry({"type": "LineString", "coordinates": [[0, 0]]})


class TestParsePriority:
    @pytest.mark.parametrize("code,expected", [
        ("PRI1", 1), ("PRI2", 2), ("pri3", 3), (" PRI2 ", 2),
        ("2", 2), (3, 3),
        ("PRI4", None), ("PRI0", None), ("PRI", None), ("high", None), (None, None),
    ])
    def test_codes(self, code, expected):
        assert parse_priority(code) == expected


class TestNormalizeTitle:
    def test_rename(self):
        assert normalize_title("CORNWALLIS ST") == "Nora Bernard St"

    def test_title_case_and_whitespace(self):
        assert normalize_title("  BARRINGTON   ST ") == "Barrington St"

    def test_apostrophe_and_digits(self):
        assert normalize_title("ST. MARGARET'S BAY RD") == "St. Margaret's Bay Rd"
        assert normalize_title("HWY 102") == "Hwy 102"

    def test_blank(self):
        assert normalize_title("   ") == ""


class TestLoadFeatureCollection:
    def setup_method(self):
        fd, self.path = tempfile.mkstemp(suffix=".geojson")
        with os.fdopen(fd, "w") as f:
            json.dump(_fc(_feat({"OBJECTID": 1})), f)

    def teardown_method(self):
        os.unlink(self.path)

    def test_from_path(self):
        assert len(load_feature_collection(self.path)["features"]) == 1

    def test_from_bytes(self):
        data = json.dumps(_fc()).encode()
        assert load_feature_collection(data)["type"] == "FeatureCollection"

    def test_from_dict(self):
        fc = _fc()
        assert load_feature_collection(fc) is fc

    def test_wrong_type(self):
        with pytest.raises(IngestError):
            load_feature_collection({"type": "Feature"})

    def test_features_not_a_list(self):
        with pytest.raises(IngestError):
            load_feature_collection({"type": "FeatureCollection", "features": {}})

    @pytest.mark.parametrize("features", ["", 0, False, "oops"])
    def test_falsy_and_scalar_features_rejected(self, features):
        with pytest.raises(IngestError):
            load_feature_collection({"type": "FeatureCollection", "features": features})

    def test_null_features_is_empty(self):
        fc = load_feature_collection({"type": "FeatureCollection", "features": None})
        assert parse_travelways(fc) == []


class TestParseTravelways:
    def test_attributes(self):
        fc = _fc(_feat({"OBJECTID": 12, "LOCATION": "CORNWALLIS ST", "WINT_LOS": "PRI2",
                        "WINT_PLOW": "Y", "OWNER": "HRM"}))
        [rec] = parse_travelways(fc)
        assert rec.object_id == 12
        assert rec.title == "Nora Bernard St"
        assert rec.priority == 2
        assert rec.plowed and not rec.private
        assert rec.coords == ((0, 0), (0.001, 0))

    def test_flags(self):
        fc = _fc(_feat({"OBJECTID": 1, "WINT_PLOW": "n"}), _feat({"OBJECTID": 2, "OWNER": "PRIV"}))
        no_plow, private = parse_travelways(fc)
        assert not no_plow.plowed
        assert private.private and private.plowed

    def test_missing_priority(self):
        [rec] = parse_travelways(_fc(_feat({"OBJECTID": 1})))
        assert rec.priority_code is None
        assert rec.priority is None

    def test_unsupported_geometry_is_fatal(self):
        fc = _fc(_feat({"OBJECTID": 1}, {"type": "Point", "coordinates": [0, 0]}))
        with pytest.raises(IngestError):
            parse_travelways(fc)

    def test_null_feature_is_fatal(self):
        with pytest.raises(IngestError):
            parse_travelways(_fc(None))

    def test_non_object_properties_are_fatal(self):
        with pytest.raises(IngestError):
            parse_travelways(_fc(_feat("oops")))

    def test_null_properties_are_empty(self):
        [rec] = parse_travelways(_fc(_feat(None)))
        assert rec.object_id == 0
        assert rec.priority is None


class TestParseBikeRoutes:
    def test_name_preferred_over_street(self):
        fc = _fc(_feat({"BIKE_NAME": "Harbourfront Trail", "STREETNAME": "LOWER WATER ST"}))
        [rec] = parse_bike_routes(fc)
        assert rec.title == "Harbourfront Trail"
        assert not rec.title_from_type

    def test_street_title_normalized(self):
        [rec] = parse_bike_routes(_fc(_feat({"STREETNAME": "CORNWALLIS ST"})))
        assert rec.title == "Nora Bernard St"

    def test_title_from_type(self):
        [rec] = parse_bike_routes(_fc(_feat({"BIKETYPE": "PROTBL"})))
        assert rec.title == "Protected Bike Lane"
        assert rec.title_from_type

    def test_unknown_type_gets_default_title(self):
        [rec] = parse_bike_routes(_fc(_feat({"BIKETYPE": "XYZ"})))
        assert rec.title == "Bike Route"

    def test_protection(self):
        fc = _fc(
            _feat({"BIKETYPE": "ONSTREET", "PROT_TYPE": "CURB"}),
            _feat({"BIKETYPE": "PROTBL", "PROT_TYPE": "NONE"}),
            _feat({"BIKETYPE": "ONSTREET", "PROT_TYPE": "NONE"}),
            _feat({"BIKETYPE": "BL"}),
        )
        assert [r.protected for r in parse_bike_routes(fc)] == [True, True, False, False]

    def test_fallback_priority(self):
        fc = _fc(_feat({"WINT_LOS": "PRI2"}), _feat({"WINT_LOS": "PRI7"}), _feat({}))
        good, bad, missing = parse_bike_routes(fc)
        assert (good.fallback_code, good.fallback_priority) == ("PRI2", 2)
        assert (bad.fallback_code, bad.fallback_priority) == ("PRI7", None)
        assert (missing.fallback_code, missing.fallback_priority) == (None, None)

    def test_bad_geometry_is_flagged(self):
        fc = _fc(
            _feat({"OBJECTID": 1}, {"type": "Point", "coordinates": [0, 0]}),
            _feat({"OBJECTID": 2}, _line([])),
        )
        unsupported, empty = parse_bike_routes(fc)
        assert unsupported.geometry_issue == "unsupported-geometry"
        assert empty.geometry_issue == "empty-geometry"
        assert unsupported.coords == () and empty.coords == ()

    def test_not_plowed(self):
        [rec] = parse_bike_routes(_fc(_feat({"WINT_PLOW": "N"})))
        assert not rec.plowed

    def test_malformed_features_are_flagged(self):
        fc = _fc(None, _feat("oops"), ["not", "a", "feature"], _feat({"OBJECTID": 4}))
        records = parse_bike_routes(fc)
        assert [r.geometry_issue for r in records] == [
            MALFORMED_FEATURE, MALFORMED_FEATURE, MALFORMED_FEATURE, ""]
        assert records[0].coords == ()
        assert records[3].object_id == 4


class TestParseIceRoutes:
    def test_priorities(self):
        fc = _fc(_feat({"PRIORITY": "2"}), _feat({"PRIORITY": "PRI3"}), _feat({"PRIORITY": "7"}))
        assert [r.priority for r in parse_ice_routes(fc)] == [2, 3, None]

    def test_index_is_input_position(self):
        fc = _fc(_feat({"PRIORITY": "1"}), _feat({"PRIORITY": "1"}))
        assert [r.index for r in parse_ice_routes(fc)] == [0, 1]

    def test_unsupported_geometry_is_fatal(self):
        fc = _fc(_feat({"PRIORITY": "1"}, {"type": "Point", "coordinates": [0, 0]}))
        with pytest.raises(IngestError):
            parse_ice_routes(fc)

    def test_object_id(self):
        fc = _fc(_feat({"OBJECTID": 31, "PRIORITY": "1"}), _feat({"PRIORITY": "1"}))
        assert [r.object_id for r in parse_ice_routes(fc)] == [31, 0]

    def test_malformed_feature_is_fatal(self):
        with pytest.raises(IngestError):
            parse_ice_routes(_fc(_feat({"PRIORITY": "1"}), None))
        with pytest.raises(IngestError):
            parse_ice_routes(_fc(_feat(["PRIORITY"])))
