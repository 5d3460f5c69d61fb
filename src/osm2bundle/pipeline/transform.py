"""
FeatureClassifier - Tag-driven Feature Classification

Maps one GeographicFeature to zero or more typed bundle records. Each rule is
a pure (geometry kinds, tag predicate, builder) triple; rules are evaluated
independently, so one feature can produce records in several categories.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Optional

from ..domain.enums import GeometryKind, RoundaboutType, SurfaceCategory, TrafficCalmingType
from ..domain.models import (
    BundleRecord,
    GeographicFeature,
    RoadSurfaceRecord,
    RoadWayRecord,
    RoundaboutRecord,
    TrafficCalmingRecord,
)
from ..utils import centroid, max_radius_m, round_coords, round_half_up

logger = logging.getLogger(__name__)

# traffic_calming values we keep, collapsed to simplified types
TRAFFIC_CALMING_TYPES = {
    'bump': TrafficCalmingType.SPEED_BUMP,
    'mini_bumps': TrafficCalmingType.SPEED_BUMP,
    'hump': TrafficCalmingType.SPEED_BUMP,
    'table': TrafficCalmingType.SPEED_BUMP,
    'cushion': TrafficCalmingType.SPEED_BUMP,
    'dynamic_bump': TrafficCalmingType.SPEED_BUMP,
    'dip': TrafficCalmingType.DIP,
    'double_dip': TrafficCalmingType.DIP,
}

# Tags copied onto traffic calming records, in output order
RELEVANT_TAG_KEYS = ('name', 'maxspeed', 'surface', 'highway', 'ref')

# Mini roundabouts are mapped as a single node, too small to estimate
MINI_ROUNDABOUT_RADIUS_M = 3

SURFACE_VOCABULARY = {
    # Paved
    'asphalt': SurfaceCategory.ASPHALT,
    'chipseal': SurfaceCategory.ASPHALT,
    'concrete': SurfaceCategory.CONCRETE,
    'concrete:plates': SurfaceCategory.CONCRETE,
    'concrete:lanes': SurfaceCategory.CONCRETE,
    'paved': SurfaceCategory.PAVED,
    'paving_stones': SurfaceCategory.PAVED,
    'paving_stones:lanes': SurfaceCategory.PAVED,
    'metal': SurfaceCategory.PAVED,
    'wood': SurfaceCategory.PAVED,
    'rubber': SurfaceCategory.PAVED,
    'cobblestone': SurfaceCategory.COBBLESTONE,
    'cobblestone:flattened': SurfaceCategory.COBBLESTONE,
    'sett': SurfaceCategory.COBBLESTONE,
    'unhewn_cobblestone': SurfaceCategory.COBBLESTONE,
    'bricks': SurfaceCategory.COBBLESTONE,
    # Unpaved
    'gravel': SurfaceCategory.GRAVEL,
    'fine_gravel': SurfaceCategory.GRAVEL,
    'pebblestone': SurfaceCategory.GRAVEL,
    'rock': SurfaceCategory.GRAVEL,
    'compacted': SurfaceCategory.COMPACTED,
    'dirt': SurfaceCategory.DIRT,
    'earth': SurfaceCategory.DIRT,
    'ground': SurfaceCategory.DIRT,
    'mud': SurfaceCategory.DIRT,
    'sand': SurfaceCategory.DIRT,
    'grass': SurfaceCategory.GRASS,
    'grass_paver': SurfaceCategory.GRASS,
    'unpaved': SurfaceCategory.UNPAVED,
}

HIGHWAY_CLASSES = frozenset({
    'primary', 'primary_link',
    'secondary', 'secondary_link',
    'tertiary', 'tertiary_link',
    'residential',
    'unclassified',
    'living_street',
    'service',
})


# =============================================================================
# Vocabulary helpers
# =============================================================================

def map_traffic_calming(value: Optional[str]) -> Optional[TrafficCalmingType]:
    """Simplified type for a traffic_calming tag value, None if not kept."""
    if value is None:
        return None
    return TRAFFIC_CALMING_TYPES.get(value)


def normalize_surface(value: Optional[str]) -> SurfaceCategory:
    """
    Normalize a surface tag value. Total: unrecognized values map to UNKNOWN.

    Multi-valued tags ("asphalt;gravel") use their first value.
    """
    if not value:
        return SurfaceCategory.UNKNOWN
    first = value.split(';', 1)[0].strip().lower()
    return SURFACE_VOCABULARY.get(first, SurfaceCategory.UNKNOWN)


def extract_relevant_tags(tags: Mapping[str, str]) -> Optional[dict[str, str]]:
    """Allow-listed subset of tags, or None when none of them are present."""
    relevant = {key: tags[key] for key in RELEVANT_TAG_KEYS if tags.get(key)}
    return relevant or None


def is_roundabout_junction(tags: Mapping[str, str]) -> bool:
    return tags.get('junction') == 'roundabout'


# =============================================================================
# Record builders
# =============================================================================

def _point(feature: GeographicFeature) -> tuple[float, float]:
    lon, lat = feature.vertex(0)
    return lat, lon


def build_traffic_calming(feature: GeographicFeature) -> Optional[BundleRecord]:
    calming_type = map_traffic_calming(feature.tags.get('traffic_calming'))
    if calming_type is None:
        return None
    lat, lon = _point(feature)
    return TrafficCalmingRecord(
        lat=lat, lon=lon, type=calming_type, tags=extract_relevant_tags(feature.tags)
    )


def build_speed_camera(feature: GeographicFeature) -> BundleRecord:
    lat, lon = _point(feature)
    return TrafficCalmingRecord(
        lat=lat, lon=lon, type=TrafficCalmingType.SPEED_CAMERA,
        tags=extract_relevant_tags(feature.tags),
    )


def build_mini_roundabout(feature: GeographicFeature) -> BundleRecord:
    lat, lon = _point(feature)
    return RoundaboutRecord(
        lat=lat, lon=lon, type=RoundaboutType.MINI_ROUNDABOUT, radius=MINI_ROUNDABOUT_RADIUS_M
    )


def build_roundabout(feature: GeographicFeature) -> BundleRecord:
    center = centroid(feature.coords)
    radius = max_radius_m(feature.coords, center)
    return RoundaboutRecord(
        lat=center[1], lon=center[0], type=RoundaboutType.ROUNDABOUT, radius=round_half_up(radius)
    )


def build_bridge_or_tunnel(feature: GeographicFeature) -> BundleRecord:
    start_lon, start_lat = feature.vertex(0)
    end_lon, end_lat = feature.vertex(-1)
    structure = (
        TrafficCalmingType.BRIDGE if feature.tags.get('bridge') == 'yes'
        else TrafficCalmingType.TUNNEL
    )
    way_id = feature.feature_id.ref if feature.feature_id and feature.feature_id.is_way else None
    return TrafficCalmingRecord(
        lat=start_lat, lon=start_lon, type=structure,
        tags=extract_relevant_tags(feature.tags),
        end_lat=end_lat, end_lon=end_lon, way_id=way_id,
    )


def build_road_surface(feature: GeographicFeature) -> BundleRecord:
    return RoadSurfaceRecord(
        surface=normalize_surface(feature.tags.get('surface')),
        coords=round_coords(feature.coords),
    )


def build_road_way(feature: GeographicFeature) -> BundleRecord:
    return RoadWayRecord(highway=feature.tags['highway'], coords=list(feature.coords))


# =============================================================================
# Rule table
# =============================================================================

@dataclass(frozen=True)
class ClassificationRule:
    """One independent classification rule."""
    name: str
    kinds: frozenset
    predicate: Callable[[Mapping[str, str]], bool]
    build: Callable[[GeographicFeature], Optional[BundleRecord]]

    def applies_to(self, feature: GeographicFeature) -> bool:
        return feature.kind in self.kinds and self.predicate(feature.tags)


POINT = frozenset({GeometryKind.POINT})
LINE = frozenset({GeometryKind.LINESTRING})
LINE_OR_POLYGON = frozenset({GeometryKind.LINESTRING, GeometryKind.POLYGON})

DEFAULT_RULES = (
    ClassificationRule(
        'traffic_calming', POINT,
        lambda tags: tags.get('traffic_calming') in TRAFFIC_CALMING_TYPES,
        build_traffic_calming,
    ),
    ClassificationRule(
        'speed_camera', POINT,
        lambda tags: tags.get('highway') == 'speed_camera' or tags.get('enforcement') == 'maxspeed',
        build_speed_camera,
    ),
    ClassificationRule(
        'mini_roundabout', POINT,
        lambda tags: tags.get('highway') == 'mini_roundabout',
        build_mini_roundabout,
    ),
    ClassificationRule(
        'roundabout', LINE_OR_POLYGON,
        is_roundabout_junction,
        build_roundabout,
    ),
    ClassificationRule(
        'bridge_tunnel', LINE,
        lambda tags: tags.get('bridge') == 'yes' or tags.get('tunnel') == 'yes',
        build_bridge_or_tunnel,
    ),
    # A roundabout ring is already represented by its RoundaboutRecord
    ClassificationRule(
        'road_surface', LINE,
        lambda tags: bool(tags.get('surface')) and not is_roundabout_junction(tags),
        build_road_surface,
    ),
    ClassificationRule(
        'road_way', LINE,
        lambda tags: tags.get('highway') in HIGHWAY_CLASSES,
        build_road_way,
    ),
)


class FeatureClassifier:
    """
    Classify features into bundle records using a rule table.

    Builder failures (degenerate geometry, invalid values) drop only the
    record for that rule; other rules still run for the same feature.
    """

    def __init__(self, rules: Iterable[ClassificationRule] = DEFAULT_RULES):
        self.rules = tuple(rules)
        self.rule_counts: Counter = Counter()
        self.rejected = 0

    def classify(self, feature: GeographicFeature) -> list[BundleRecord]:
        """
        Classify one feature.

        Returns:
            Records in rule order; empty if no rule applies
        """
        records: list[BundleRecord] = []
        for rule in self.rules:
            if not rule.applies_to(feature):
                continue
            try:
                record = rule.build(feature)
            except ValueError as e:
                self.rejected += 1
                logger.debug(f"Rule {rule.name} rejected {feature.feature_id or feature.kind.value}: {e}")
                continue
            if record is not None:
                self.rule_counts[rule.name] += 1
                records.append(record)
        return records

    __call__ = classify

    def classify_all(self, features: Iterable[GeographicFeature]) -> Iterator[BundleRecord]:
        """Classify a stream of features, preserving encounter order."""
        for feature in features:
            yield from self.classify(feature)
