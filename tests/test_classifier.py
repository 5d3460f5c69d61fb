"""
Tests for tag-driven feature classification.

Each rule is exercised in isolation through FeatureClassifier with the
default rule table, plus the vocabulary helpers it relies on.
"""

import math

import pytest

from osm2bundle.domain.enums import (
    Category,
    GeometryKind,
    RoundaboutType,
    SurfaceCategory,
    TrafficCalmingType,
)
from osm2bundle.domain.models import FeatureId, GeographicFeature
from osm2bundle.pipeline.transform import (
    DEFAULT_RULES,
    MINI_ROUNDABOUT_RADIUS_M,
    TRAFFIC_CALMING_TYPES,
    ClassificationRule,
    FeatureClassifier,
    extract_relevant_tags,
    map_traffic_calming,
    normalize_surface,
)
from osm2bundle.utils import haversine_m


def point(lon=25.28, lat=54.68, feature_id=None, **tags):
    return GeographicFeature(GeometryKind.POINT, (lon, lat), tags, feature_id)


def line(coords, feature_id=None, kind=GeometryKind.LINESTRING, **tags):
    flat = tuple(v for pair in coords for v in pair)
    return GeographicFeature(kind, flat, tags, feature_id)


@pytest.fixture
def classifier():
    return FeatureClassifier()


class TestTrafficCalming:
    """Tests for point traffic calming classification."""

    @pytest.mark.parametrize("value,expected", sorted(TRAFFIC_CALMING_TYPES.items()))
    def test_synonym_table(self, classifier, value, expected):
        """Every recognized value yields exactly one record of the mapped type."""
        records = classifier.classify(point(traffic_calming=value))

        assert len(records) == 1
        assert records[0].category == Category.TRAFFIC_CALMING
        assert records[0].type == expected

    def test_hump_is_speed_bump(self, classifier):
        (record,) = classifier.classify(point(traffic_calming="hump"))
        assert record.type == TrafficCalmingType.SPEED_BUMP
        assert record.to_bundle() == {"lat": 54.68, "lon": 25.28, "type": "speed_bump"}

    def test_dip(self, classifier):
        (record,) = classifier.classify(point(traffic_calming="double_dip"))
        assert record.type == TrafficCalmingType.DIP

    @pytest.mark.parametrize("value", ["chicane", "choker", "yes", "island", ""])
    def test_unrecognized_values_are_skipped(self, classifier, value):
        assert classifier.classify(point(traffic_calming=value)) == []

    def test_line_geometry_is_ignored(self, classifier):
        feature = line([(25.0, 54.0), (25.1, 54.1)], traffic_calming="hump")
        assert classifier.classify(feature) == []

    def test_map_traffic_calming(self):
        assert map_traffic_calming("table") == TrafficCalmingType.SPEED_BUMP
        assert map_traffic_calming("chicane") is None
        assert map_traffic_calming(None) is None

    def test_relevant_tags_subset(self, classifier):
        feature = point(traffic_calming="bump", name="Main", maxspeed="30", lit="yes", ref="A1")
        (record,) = classifier.classify(feature)
        assert record.tags == {"name": "Main", "maxspeed": "30", "ref": "A1"}

    def test_tags_absent_when_none_relevant(self, classifier):
        (record,) = classifier.classify(point(traffic_calming="bump", lit="yes"))
        assert record.tags is None
        assert "tags" not in record.to_bundle()

    def test_extract_relevant_tags(self):
        assert extract_relevant_tags({"surface": "asphalt", "foo": "bar"}) == {"surface": "asphalt"}
        assert extract_relevant_tags({"foo": "bar"}) is None
        assert extract_relevant_tags({"name": ""}) is None


class TestSpeedCameras:
    """Tests for speed camera and enforcement points."""

    def test_speed_camera_node(self, classifier):
        (record,) = classifier.classify(point(highway="speed_camera", maxspeed="50"))
        assert record.type == TrafficCalmingType.SPEED_CAMERA
        assert record.tags == {"maxspeed": "50", "highway": "speed_camera"}

    def test_enforcement_node(self, classifier):
        (record,) = classifier.classify(point(enforcement="maxspeed"))
        assert record.type == TrafficCalmingType.SPEED_CAMERA


class TestRoundabouts:
    """Tests for roundabout and mini roundabout classification."""

    def test_mini_roundabout(self, classifier):
        (record,) = classifier.classify(point(highway="mini_roundabout"))
        assert record.category == Category.ROUNDABOUTS
        assert record.type == RoundaboutType.MINI_ROUNDABOUT
        assert record.radius == MINI_ROUNDABOUT_RADIUS_M == 3

    def test_roundabout_ring_center_and_radius(self, classifier):
        ring = [(25.0, 55.0), (25.002, 55.0), (25.002, 55.002), (25.0, 55.002), (25.0, 55.0)]
        (record,) = classifier.classify(line(ring, junction="roundabout"))

        center_lon, center_lat = 25.001, 55.001
        farthest = max(haversine_m(center_lat, center_lon, lat, lon) for lon, lat in ring)
        expected = math.floor(farthest + 0.5)

        assert record.type == RoundaboutType.ROUNDABOUT
        assert record.lat == pytest.approx(center_lat)
        assert record.lon == pytest.approx(center_lon)
        assert record.radius == expected

    def test_roundabout_polygon(self, classifier):
        ring = [(25.0, 55.0), (25.002, 55.0), (25.002, 55.002), (25.0, 55.002), (25.0, 55.0)]
        records = classifier.classify(line(ring, kind=GeometryKind.POLYGON, junction="roundabout"))
        assert [r.category for r in records] == [Category.ROUNDABOUTS]

    def test_roundabout_with_surface_is_not_a_road_surface(self, classifier):
        ring = [(25.0, 55.0), (25.002, 55.0), (25.002, 55.002), (25.0, 55.0)]
        records = classifier.classify(line(ring, junction="roundabout", surface="asphalt"))
        assert [r.category for r in records] == [Category.ROUNDABOUTS]


class TestBridgesAndTunnels:
    """Tests for linear structures."""

    def test_bridge_endpoints_and_way_id(self, classifier):
        feature = line([(25.0, 54.0), (25.05, 54.05), (25.1, 54.1)], FeatureId("way", 42), bridge="yes")
        (record,) = classifier.classify(feature)

        assert record.type == TrafficCalmingType.BRIDGE
        assert (record.lat, record.lon) == (54.0, 25.0)
        assert (record.end_lat, record.end_lon) == (54.1, 25.1)
        assert record.way_id == 42
        assert record.to_bundle()["wayId"] == 42
        assert record.to_bundle()["endLat"] == 54.1

    def test_tunnel(self, classifier):
        (record,) = classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], tunnel="yes"))
        assert record.type == TrafficCalmingType.TUNNEL
        assert record.way_id is None
        assert "wayId" not in record.to_bundle()

    def test_bridge_wins_over_tunnel(self, classifier):
        (record,) = classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], bridge="yes", tunnel="yes"))
        assert record.type == TrafficCalmingType.BRIDGE

    def test_node_id_is_not_a_way_id(self, classifier):
        feature = line([(25.0, 54.0), (25.1, 54.1)], FeatureId("relation", 9), bridge="yes")
        (record,) = classifier.classify(feature)
        assert record.way_id is None

    def test_bridge_value_other_than_yes(self, classifier):
        assert classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], bridge="viaduct")) == []


class TestRoadSurfaces:
    """Tests for surface classification and normalization."""

    @pytest.mark.parametrize("value,expected", [
        ("asphalt", SurfaceCategory.ASPHALT),
        ("concrete:plates", SurfaceCategory.CONCRETE),
        ("paving_stones", SurfaceCategory.PAVED),
        ("sett", SurfaceCategory.COBBLESTONE),
        ("fine_gravel", SurfaceCategory.GRAVEL),
        ("compacted", SurfaceCategory.COMPACTED),
        ("ground", SurfaceCategory.DIRT),
        ("grass", SurfaceCategory.GRASS),
        ("unpaved", SurfaceCategory.UNPAVED),
        ("Asphalt", SurfaceCategory.ASPHALT),
        ("asphalt;gravel", SurfaceCategory.ASPHALT),
        ("lava", SurfaceCategory.UNKNOWN),
        ("", SurfaceCategory.UNKNOWN),
        (None, SurfaceCategory.UNKNOWN),
    ])
    def test_normalize_surface_is_total(self, value, expected):
        assert normalize_surface(value) == expected

    def test_surface_coords_are_rounded(self, classifier):
        feature = line([(25.123456789, 54.987654321), (25.2, 54.9)], surface="gravel")
        (record,) = classifier.classify(feature)

        assert record.category == Category.ROAD_SURFACES
        assert record.surface == SurfaceCategory.GRAVEL
        assert record.coords == [25.1234568, 54.9876543, 25.2, 54.9]
        assert record.to_bundle() == {"surface": "gravel", "coords": record.coords}

    def test_unknown_surface_is_kept(self, classifier):
        (record,) = classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], surface="lava"))
        assert record.surface == SurfaceCategory.UNKNOWN

    def test_single_point_line_is_rejected(self, classifier):
        records = classifier.classify(line([(25.0, 54.0)], surface="asphalt"))
        assert records == []
        assert classifier.rejected == 1


class TestRoadWays:
    """Tests for highway way classification."""

    @pytest.mark.parametrize("highway", [
        "primary", "primary_link", "secondary", "tertiary_link",
        "residential", "unclassified", "living_street", "service",
    ])
    def test_recognized_highways(self, classifier, highway):
        (record,) = classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], highway=highway))
        assert record.category == Category.ROAD_WAYS
        assert record.highway == highway

    @pytest.mark.parametrize("highway", ["motorway", "footway", "track", "path"])
    def test_other_highways_are_ignored(self, classifier, highway):
        assert classifier.classify(line([(25.0, 54.0), (25.1, 54.1)], highway=highway)) == []

    def test_full_vertex_density(self, classifier):
        coords = [(25.123456789, 54.0), (25.1, 54.05), (25.2, 54.1)]
        (record,) = classifier.classify(line(coords, highway="residential"))
        assert record.coords == [25.123456789, 54.0, 25.1, 54.05, 25.2, 54.1]


class TestClassifier:
    """Tests for rule evaluation and counters."""

    def test_one_feature_many_categories(self, classifier):
        feature = line(
            [(25.0, 54.0), (25.1, 54.1)], FeatureId("way", 7),
            bridge="yes", surface="asphalt", highway="primary",
        )
        records = classifier.classify(feature)

        assert [r.category for r in records] == [
            Category.TRAFFIC_CALMING, Category.ROAD_SURFACES, Category.ROAD_WAYS,
        ]
        assert classifier.rule_counts == {"bridge_tunnel": 1, "road_surface": 1, "road_way": 1}

    def test_untagged_feature(self, classifier):
        assert classifier(point()) == []

    def test_classify_all_preserves_order(self, classifier):
        features = [point(lat=1.0, traffic_calming="bump"), point(), point(lat=2.0, traffic_calming="dip")]
        records = list(classifier.classify_all(features))
        assert [r.lat for r in records] == [1.0, 2.0]

    def test_custom_rule_table(self):
        rules = [r for r in DEFAULT_RULES if r.name == "mini_roundabout"]
        classifier = FeatureClassifier(rules)
        assert classifier.classify(point(traffic_calming="bump")) == []
        assert len(classifier.classify(point(highway="mini_roundabout"))) == 1

    def test_rule_applies_to(self):
        rule = ClassificationRule(
            "test", frozenset({GeometryKind.POINT}), lambda tags: "x" in tags, lambda f: None,
        )
        assert rule.applies_to(point(x="1")) is True
        assert rule.applies_to(point()) is False
